import logging

from django.contrib.auth.decorators import login_required
from django.http import HttpResponse, Http404
from django.views.decorators.http import require_GET

from core.choices import SchoolClass
from .base import form_error_response, get_store
from ..forms import CohortForm
from ..importer import build_import_template, build_marks_export

logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _workbook_response(wb, filename):
    response = HttpResponse(content_type=XLSX_CONTENT_TYPE)
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    wb.save(response)
    return response


@login_required
@require_GET
def marks_export(request):
    """Download a class/year/term cohort as an Excel workbook in the import layout."""
    form = CohortForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    class_name = form.cleaned_data['class_name']
    year = form.cleaned_data['year']
    term = form.cleaned_data['term']

    marks = get_store().get_cohort_marks(class_name, year, term)
    logger.info(f"Exporting {len(marks)} mark(s) for {class_name} {year} {term}")

    wb = build_marks_export(class_name, marks)
    filename = f"marks_{class_name}_{year}_{term.replace(' ', '')}.xlsx"
    return _workbook_response(wb, filename)


@login_required
@require_GET
def import_template(request, class_name):
    """Download a blank marks import template for a class."""
    if class_name not in SchoolClass.values:
        raise Http404(f"Unknown class {class_name}")
    return _workbook_response(build_import_template(class_name), f"marks_template_{class_name}.xlsx")
