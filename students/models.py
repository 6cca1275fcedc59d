import uuid

from django.db import models

from core.choices import SchoolClass, Sex, subjects_for_class


class Student(models.Model):
    """
    Represents a student enrolled in the school.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200, db_index=True)
    class_name = models.CharField(
        max_length=10,
        choices=SchoolClass.choices,
        db_index=True,
        help_text="Class code, e.g. S1A or PREP-A"
    )
    sex = models.CharField(max_length=1, choices=Sex.choices)
    photo = models.CharField(
        max_length=500,
        blank=True,
        default='',
        help_text="URL or storage path of the student's photo"
    )

    # Metadata
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['class_name', 'name']
        verbose_name = "Student"
        verbose_name_plural = "Students"
        indexes = [
            models.Index(fields=['name', 'class_name'], name='student_name_class_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.class_name})"

    @property
    def subjects(self):
        """Ordered (code, name) subject list for the student's class."""
        return subjects_for_class(self.class_name)

    def to_dict(self):
        return {
            'id': str(self.pk),
            'name': self.name,
            'class': self.class_name,
            'sex': self.sex,
            'photo': self.photo,
        }
