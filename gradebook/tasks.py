"""
Celery tasks for gradebook app.
Runs bulk mark imports in the background with progress reporting.
"""
import logging
import os

from celery import shared_task
from django.apps import apps
from django.db import InterfaceError, OperationalError

from . import config
from .exceptions import ImportConfigurationError, WorkbookError


logger = logging.getLogger(__name__)

# Transient database errors that should trigger retry
RETRYABLE_EXCEPTIONS = (OperationalError, InterfaceError)


def _remove_upload(file_path):
    if os.path.exists(file_path):
        os.remove(file_path)


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
    time_limit=config.IMPORT_TASK_TIME_LIMIT,
)
def import_marks_workbook(self, file_path, class_name, year, term, sheets=None):
    """
    Import a saved marks workbook for one class, year and term.

    Progress is published as PROGRESS state with {'current', 'total'} meta
    after every row. Transient database errors are retried with exponential
    backoff; rows are written with update-or-create, so a retry re-imports
    the rows already saved without duplicating them. The uploaded file is
    removed once the import finishes or gives up.

    Args:
        file_path: Absolute path of the uploaded .xlsx file
        class_name: Class code the rows belong to
        year: Academic year, e.g. '2024'
        term: 'Term 1', 'Term 2' or 'Term 3'
        sheets: Optional list of sheet names to import (default: all)

    Returns:
        dict: {'success': bool, 'uploaded', 'updated', 'skipped', 'errors'}
              or {'success': False, 'error': str} on a fatal error
    """
    from .importer import import_marks_from_excel

    store = apps.get_app_config('gradebook').store

    def report_progress(current, total):
        self.update_state(
            state='PROGRESS',
            meta={'current': current, 'total': total},
        )

    try:
        with open(file_path, 'rb') as f:
            result = import_marks_from_excel(
                f, class_name, year, term,
                sheets=sheets,
                on_progress=report_progress,
                store=store,
            )
    except (ImportConfigurationError, WorkbookError) as e:
        logger.error(f"Marks import for {class_name} {year} {term} aborted: {e}")
        _remove_upload(file_path)
        return {'success': False, 'error': str(e)}
    except RETRYABLE_EXCEPTIONS as e:
        if self.request.retries >= self.max_retries:
            logger.error(f"Marks import for {class_name} {year} {term} failed after retries: {e}")
            _remove_upload(file_path)
            raise
        # Keep the upload for the next attempt
        logger.warning(f"Retryable error importing marks for {class_name} {year} {term}: {e}")
        raise self.retry(exc=e, countdown=config.TASK_RETRY_DELAY * (2 ** self.request.retries))

    _remove_upload(file_path)
    return {'success': True, **result.to_dict()}
