import logging

from django.contrib.auth.decorators import login_required
from django.http import Http404, JsonResponse
from django.shortcuts import get_object_or_404, render
from django.views.decorators.http import require_GET

from core.choices import SchoolClass
from students.models import Student
from .base import error_response, get_store
from .. import config
from ..exceptions import ReportCardNotFound
from ..reports import build_class_report_cards, build_report_card

logger = logging.getLogger(__name__)


def _requested_year(request):
    year = request.GET.get('year', '')
    return year if year in config.ACADEMIC_YEARS else None


@login_required
@require_GET
def student_report(request, student_id):
    """Report card data for one student and ?year=, as JSON."""
    student = get_object_or_404(Student, pk=student_id)
    year = _requested_year(request)
    if year is None:
        return error_response('Select a valid academic year.')

    try:
        card = build_report_card(get_store(), student.pk, year)
    except ReportCardNotFound as e:
        return error_response(str(e), status=404)

    return JsonResponse({'success': True, 'report': card})


@login_required
@require_GET
def student_report_print(request, student_id):
    """Printable HTML report card for one student."""
    student = get_object_or_404(Student, pk=student_id)
    year = _requested_year(request)
    if year is None:
        raise Http404('Select a valid academic year.')

    try:
        card = build_report_card(get_store(), student.pk, year)
    except ReportCardNotFound as e:
        raise Http404(str(e))

    return render(request, 'gradebook/report_card.html', {
        'cards': [card],
        'year': year,
    })


@login_required
@require_GET
def class_report_cards(request, class_name):
    """Printable report cards for a whole class; students without marks are listed as skipped."""
    if class_name not in SchoolClass.values:
        raise Http404(f"Unknown class {class_name}")
    year = _requested_year(request)
    if year is None:
        raise Http404('Select a valid academic year.')

    cards, skipped = build_class_report_cards(get_store(), class_name, year)
    return render(request, 'gradebook/report_card.html', {
        'cards': cards,
        'skipped': skipped,
        'year': year,
        'class_name': class_name,
    })
