"""
Marks workbook upload.

The upload is validated and saved under MEDIA_ROOT, then imported by the
import_marks_workbook Celery task; clients poll the status endpoint.
"""
import logging
import os
import uuid

from celery.result import AsyncResult
from django.core.files.storage import default_storage
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from gradebook import config
from gradebook.tasks import import_marks_workbook
from students.forms import MarksImportForm
from .utils import admin_required, form_errors

logger = logging.getLogger(__name__)


def _save_upload(file):
    """Store the uploaded file and return its absolute path."""
    name = os.path.join(config.IMPORT_UPLOAD_DIR, f"{uuid.uuid4().hex}_{os.path.basename(file.name)}")
    saved = default_storage.save(name, file)
    return default_storage.path(saved)


@admin_required
@require_POST
def marks_import(request):
    """Queue an import of a marks workbook for one class, year and term."""
    form = MarksImportForm(request.POST, request.FILES)
    if not form.is_valid():
        return form_errors(form)

    data = form.cleaned_data
    file_path = _save_upload(data['file'])
    task = import_marks_workbook.delay(
        file_path,
        data['class_name'],
        data['year'],
        data['term'],
        data['sheets'] or None,
    )
    logger.info(
        f"{request.user} queued marks import {task.id} for "
        f"{data['class_name']} {data['year']} {data['term']}"
    )
    return JsonResponse({'success': True, 'task_id': task.id}, status=202)


@admin_required
@require_GET
def marks_import_status(request, task_id):
    """
    Progress or outcome of a queued import.

    state is PENDING, STARTED, PROGRESS (with current/total), SUCCESS (with
    the import result) or FAILURE.
    """
    result = AsyncResult(task_id)
    response = {'task_id': task_id, 'state': result.state}

    if result.state == 'PROGRESS':
        response.update(result.info or {})
    elif result.state == 'SUCCESS':
        response['result'] = result.result
    elif result.state == 'FAILURE':
        response['error'] = str(result.result)

    return JsonResponse(response)
