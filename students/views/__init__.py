# Student views
from .students import (
    index,
    student_create,
    student_edit,
    student_delete,
    student_detail,
)

# Marks import views
from .bulk_import import (
    marks_import,
    marks_import_status,
)
