"""
Read-only marks pages: the ranked cohort listing, the yearly overview of a
class category and the end-of-year promotion list.
"""
import logging

from django.contrib.auth.decorators import login_required
from django.http import Http404, JsonResponse
from django.views.decorators.http import require_GET

from core.choices import SchoolClass, Term, classes_in_category, subjects_for_class
from .base import error_response, form_error_response, get_store
from .. import config
from ..aggregation import (
    format_score, rank_students, rank_term, subject_averages, yearly_average
)
from ..forms import CohortForm, YearlyOverviewForm
from ..promotion import evaluate_promotion, promotion_threshold

logger = logging.getLogger(__name__)


@login_required
@require_GET
def marks_overview(request):
    """Ranked marks of one class/year/term with per-subject averages."""
    form = CohortForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    class_name = form.cleaned_data['class_name']
    year = form.cleaned_data['year']
    term = form.cleaned_data['term']

    marks = get_store().get_cohort_marks(class_name, year, term)
    averages = subject_averages(marks)

    rows = []
    for mark in marks:
        row = mark.to_dict()
        row['average_display'] = format_score(mark.average)
        rows.append(row)

    return JsonResponse({
        'class': class_name,
        'year': year,
        'term': term,
        'subjects': [
            {
                'code': code,
                'name': name,
                'average': averages.get(code),
                'average_display': format_score(averages.get(code)),
            }
            for code, name in subjects_for_class(class_name)
        ],
        'marks': rows,
    })


@login_required
@require_GET
def yearly_overview(request):
    """
    Yearly ranking of every student in a class category (e.g. S1 covers
    S1A-S1E), with each student's rank within every term they sat.
    """
    form = YearlyOverviewForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    year = form.cleaned_data['year']
    category = form.cleaned_data['category']
    store = get_store()

    yearly_marks = []
    for class_name in classes_in_category(category):
        yearly_marks.extend(store.get_yearly_student_marks(year, class_name))
    ranked = rank_students(yearly_marks)

    term_ranks = {
        term: {student.id: rank for rank, student in rank_term(ranked, term)}
        for term in Term.values
    }

    students = []
    for student in ranked:
        average = yearly_average(student)
        students.append({
            'id': student.id,
            'name': student.name,
            'sex': student.sex,
            'stream': student.stream,
            'rank': student.rank,
            'yearly_average': average,
            'yearly_average_display': format_score(average),
            'terms': {
                term: {
                    'average': mark.average,
                    'average_display': format_score(mark.average),
                    'rank': term_ranks[term].get(student.id),
                }
                for term, mark in student.terms.items()
            },
        })

    return JsonResponse({
        'year': year,
        'category': category,
        'terms': list(Term.values),
        'students': students,
    })


@login_required
@require_GET
def promotion_list(request, class_name):
    """Promotion decision for every student of a class with marks in ?year=."""
    if class_name not in SchoolClass.values:
        raise Http404(f"Unknown class {class_name}")

    year = request.GET.get('year', '')
    if year not in config.ACADEMIC_YEARS:
        return error_response(f"Invalid academic year: {year}")

    ranked = rank_students(get_store().get_yearly_student_marks(year, class_name))

    students = []
    for student in ranked:
        decision = evaluate_promotion(class_name, yearly_average(student))
        students.append({
            'id': student.id,
            'name': student.name,
            'rank': student.rank,
            'yearly_average': decision.yearly_average,
            'yearly_average_display': format_score(decision.yearly_average),
            'promoted': decision.promoted,
            'next_class': decision.next_class,
        })

    promoted = sum(1 for s in students if s['promoted'])
    logger.info(f"Promotion list for {class_name} {year}: {promoted}/{len(students)} promoted")

    return JsonResponse({
        'class': class_name,
        'year': year,
        'threshold': promotion_threshold(class_name),
        'promoted': promoted,
        'retained': len(students) - promoted,
        'students': students,
    })
