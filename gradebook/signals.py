"""
Signals that keep the cohort marks cache in step with the database.

The store invalidates its own writes; these receivers cover rows changed
through the admin or plain ORM calls.
"""
import logging

from django.apps import apps
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from students.models import Student
from .models import Mark

logger = logging.getLogger(__name__)


def _store():
    return apps.get_app_config('gradebook').store


@receiver([post_save, post_delete], sender=Mark)
def invalidate_cohort_on_mark_change(sender, instance, **kwargs):
    """Drop the cached listing of the cohort the mark belongs to."""
    store = _store()
    try:
        class_name = instance.student.class_name
    except Student.DoesNotExist:
        # Removed along with its student
        store.cache.clear()
        return
    key = store.cohort_key(class_name, instance.year, instance.term)
    store.cache.invalidate(key)
    logger.debug(f"Invalidated cohort cache {key}")


@receiver([post_save, post_delete], sender=Student)
def invalidate_cohorts_on_student_change(sender, instance, **kwargs):
    """A student's name, sex or class appears in every cohort listing they are in."""
    _store().cache.clear()
