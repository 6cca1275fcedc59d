import math
import uuid

from django.core.exceptions import ValidationError
from django.db import models

from core.choices import Term, subject_codes_for_class
from students.models import Student


def validate_subject_codes(class_name, subjects):
    """
    Ensure a subjects map only uses codes defined for the class.

    Raises ValidationError listing the offending codes.
    """
    allowed = set(subject_codes_for_class(class_name))
    unknown = sorted(code for code in subjects if code not in allowed)
    if unknown:
        raise ValidationError(
            f"Subjects not offered in {class_name}: {', '.join(unknown)}"
        )


def _finite_or_none(value):
    if value is None:
        return None
    value = float(value)
    return None if math.isnan(value) else value


class Mark(models.Model):
    """
    A student's marks for one term of one academic year.

    The summary fields are normally derived from `subjects`, except for
    spreadsheet imports which keep the totals the sheet already carries.
    """
    class Status(models.TextChoices):
        PASS = 'PASS', 'Pass'
        FAIL = 'FAIL', 'Fail'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='marks',
        db_index=True
    )
    year = models.CharField(max_length=4, help_text='Academic year, e.g. 2024')
    term = models.CharField(max_length=10, choices=Term.choices)

    subjects = models.JSONField(
        default=dict,
        blank=True,
        help_text='Subject code to score mapping'
    )
    total = models.FloatField(null=True, blank=True, help_text='Sum of entered subject scores')
    average = models.FloatField(
        null=True,
        blank=True,
        help_text='Total divided by the number of entered subjects'
    )
    rank = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        help_text='Position within the class for this year and term'
    )
    status = models.CharField(max_length=10, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'student_mark'
        ordering = ['year', 'term']
        verbose_name = 'Mark'
        verbose_name_plural = 'Marks'
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'year', 'term'],
                name='unique_mark_per_student_term'
            ),
        ]
        indexes = [
            models.Index(fields=['year', 'term'], name='mark_year_term_idx'),
        ]

    def __str__(self):
        return f"{self.student} - {self.year} {self.term}: {self.average}"

    def clean(self):
        if self.student_id:
            validate_subject_codes(self.student.class_name, self.subjects or {})

    def save(self, *args, **kwargs):
        self.total = _finite_or_none(self.total)
        self.average = _finite_or_none(self.average)
        super().save(*args, **kwargs)

    def to_dict(self):
        return {
            'id': str(self.pk),
            'student': str(self.student_id),
            'year': self.year,
            'term': self.term,
            'subjects': dict(self.subjects or {}),
            'total': self.total,
            'average': self.average,
            'rank': self.rank,
            'status': self.status,
        }
