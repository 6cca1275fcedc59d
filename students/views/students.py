import logging

from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST

from core.choices import SchoolClass
from gradebook.views.base import get_store
from students.forms import StudentForm
from students.models import Student
from .utils import admin_required, form_errors, student_form_data

logger = logging.getLogger(__name__)


@admin_required
@require_GET
def index(request):
    """Students of ?class=, or the whole school when no class is given."""
    class_name = request.GET.get('class', '')
    if class_name:
        if class_name not in SchoolClass.values:
            return JsonResponse({'success': False, 'error': f'Unknown class {class_name}'}, status=400)
        students = get_store().get_students_by_class(class_name)
    else:
        students = Student.objects.all()

    return JsonResponse({'students': [student.to_dict() for student in students]})


@admin_required
@require_POST
def student_create(request):
    form = StudentForm(request.POST)
    if not form.is_valid():
        return form_errors(form)

    student_id = get_store().add_student(form.cleaned_data)
    student = Student.objects.get(pk=student_id)
    return JsonResponse({'success': True, 'student': student.to_dict()}, status=201)


@admin_required
@require_GET
def student_detail(request, pk):
    """A student with every mark on record, oldest term first."""
    student = get_object_or_404(Student, pk=pk)
    marks = student.marks.order_by('year', 'term')
    return JsonResponse({
        'student': student.to_dict(),
        'subjects': [{'code': code, 'name': name} for code, name in student.subjects],
        'marks': [mark.to_dict() for mark in marks],
    })


@admin_required
@require_POST
def student_edit(request, pk):
    """Update a student; fields left out of the request keep their stored values."""
    student = get_object_or_404(Student, pk=pk)
    form = StudentForm(student_form_data(student, request.POST), instance=student)
    if not form.is_valid():
        return form_errors(form)

    student = get_store().update_student(student.pk, form.cleaned_data)
    return JsonResponse({'success': True, 'student': student.to_dict()})


@admin_required
@require_POST
def student_delete(request, pk):
    """Delete a student along with all of their marks."""
    student = get_object_or_404(Student, pk=pk)
    name = student.name
    get_store().delete_student(student.pk)
    logger.info(f"{request.user} deleted student {name}")
    return JsonResponse({'success': True})
