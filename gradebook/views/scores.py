import logging

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_http_methods

from students.models import Student
from .base import admin_required, error_response, form_error_response, get_store
from ..aggregation import format_score
from ..forms import MarkEntryForm

logger = logging.getLogger(__name__)


@login_required
@require_http_methods(['GET', 'POST'])
def mark_entry(request, student_id):
    """
    GET: the student's subjects with any scores already entered for
    ?year=&term=. POST: save scores for one term and re-rank the class.
    """
    student = get_object_or_404(Student, pk=student_id)
    store = get_store()

    if request.method == 'POST':
        return _save_marks(request, student, store)

    year = request.GET.get('year', '')
    term = request.GET.get('term', '')
    mark = store.get_mark(student.pk, year, term) if year and term else None
    entered = mark.subjects if mark else {}

    return JsonResponse({
        'student': student.to_dict(),
        'year': year,
        'term': term,
        'subjects': [
            {'code': code, 'name': name, 'score': entered.get(code)}
            for code, name in student.subjects
        ],
        'mark': mark.to_dict() if mark else None,
    })


@admin_required
def _save_marks(request, student, store):
    form = MarkEntryForm(request.POST, class_name=student.class_name)
    if not form.is_valid():
        return form_error_response(form)

    year = form.cleaned_data['year']
    term = form.cleaned_data['term']
    subjects = form.entered_subjects()
    if not subjects:
        return error_response('Enter at least one subject score.')

    mark = store.save_entered_marks(student.pk, year, term, subjects)
    logger.info(f"{request.user} saved {len(subjects)} score(s) for {student.name} {year} {term}")

    data = mark.to_dict()
    data['average_display'] = format_score(mark.average)
    return JsonResponse({'success': True, 'mark': data})
