# Marks entry
from .scores import mark_entry

# Overview pages
from .overview import (
    marks_overview,
    yearly_overview,
    promotion_list,
)

# Report cards
from .reports import (
    student_report,
    student_report_print,
    class_report_cards,
)

# Excel export
from .import_export import (
    marks_export,
    import_template,
)
