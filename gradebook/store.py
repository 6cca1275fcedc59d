"""
Mark record store.

The one place that reads and writes Student and Mark rows for the gradebook
services. Class listings are fetched in bulk (one query per listing) and the
ranked cohort listing is cached per class/year/term.
"""
import logging
from collections import defaultdict
from dataclasses import replace

from django.db import transaction
from django.db.models import Count

from core.cache import ExpiringCache
from core.choices import Term
from students.models import Student
from . import config
from .aggregation import rank_cohort, summarize_subjects
from .models import Mark, validate_subject_codes
from .records import ReportCardMark, StudentMark, YearlyStudentMark

logger = logging.getLogger(__name__)

TERM_ORDER = {term: index for index, term in enumerate(Term.values)}

COHORT_CACHE_PREFIX = 'gradebook:cohorts'


def _student_mark(mark, student=None):
    student = student or mark.student
    return StudentMark(
        id=str(student.pk),
        name=student.name,
        sex=student.sex,
        class_name=student.class_name,
        subjects=dict(mark.subjects or {}),
        total=mark.total,
        average=mark.average,
        rank=mark.rank,
        status=mark.status,
    )


def _report_card_mark(mark, student):
    return ReportCardMark(
        id=str(student.pk),
        class_name=student.class_name,
        year=mark.year,
        term=mark.term,
        subjects=dict(mark.subjects or {}),
        total=mark.total,
        average=mark.average,
        rank=mark.rank,
        status=mark.status,
    )


class MarkStore:
    """
    Student and Mark persistence for the gradebook.

    Args:
        cache: ExpiringCache for ranked cohort listings. When omitted the
            store uses the shared cohort cache in the default Django cache,
            so stores in web and worker processes see each other's writes.
    """

    def __init__(self, cache=None):
        if cache is None:
            cache = ExpiringCache(COHORT_CACHE_PREFIX, default_ttl=config.MARKS_CACHE_TTL)
        self.cache = cache

    # ============ Students ============

    def get_students_by_class(self, class_name):
        if not class_name:
            logger.warning("No class name provided to get_students_by_class")
            return []
        return list(Student.objects.filter(class_name=class_name).order_by('name'))

    def get_student(self, student_id):
        """Return the student or raise Student.DoesNotExist."""
        return Student.objects.get(pk=student_id)

    def get_student_by_name(self, name, class_name=None):
        """
        Exact-name lookup, narrowed to a class when one is given.

        Returns None when nothing matches. Names are not unique across the
        school, so callers that can should pass class_name.
        """
        students = Student.objects.filter(name=name)
        if class_name is not None:
            students = students.filter(class_name=class_name)
        return students.order_by('created_at').first()

    def add_student(self, data):
        student = Student.objects.create(
            name=data['name'],
            class_name=data['class_name'],
            sex=data['sex'],
            photo=data.get('photo', ''),
        )
        logger.info(f"Created student {student.name} in {student.class_name}")
        return student.pk

    def update_student(self, student_id, data):
        """Merge `data` onto the student's stored fields."""
        student = self.get_student(student_id)
        for field in ('name', 'class_name', 'sex', 'photo'):
            if field in data:
                setattr(student, field, data[field])
        student.save()
        self.cache.clear()
        return student

    def delete_student(self, student_id):
        student = self.get_student(student_id)
        student.delete()
        self.cache.clear()
        logger.info(f"Deleted student {student_id}")

    # ============ Marks ============

    def get_mark(self, student_id, year, term):
        return Mark.objects.filter(student_id=student_id, year=year, term=term).first()

    def set_mark(self, student_id, year, term, mark):
        """
        Write the Mark for one (year, term), replacing only that term.

        `mark` is a dict with subjects, total, average, rank and status.
        Other terms and years of the student are left untouched.
        """
        student = self.get_student(student_id)
        subjects = dict(mark.get('subjects') or {})
        validate_subject_codes(student.class_name, subjects)

        rank = mark.get('rank')
        record, created = Mark.objects.update_or_create(
            student=student,
            year=str(year),
            term=term,
            defaults={
                'subjects': subjects,
                'total': mark.get('total'),
                'average': mark.get('average'),
                'rank': int(rank) if rank is not None else None,
                'status': mark.get('status') or '',
            }
        )
        self.cache.invalidate(self.cohort_key(student.class_name, year, term))
        logger.debug(
            f"{'Created' if created else 'Updated'} mark for {student.name} {year} {term}"
        )
        return record

    def save_entered_marks(self, student_id, year, term, subjects):
        """
        Save hand-entered scores and re-rank the student's cohort.

        Total, average and status are derived from the scores; the rank of
        every mark in the cohort is rewritten from a fresh read.
        """
        student = self.get_student(student_id)
        summary = summarize_subjects(subjects)
        with transaction.atomic():
            record = self.set_mark(student.pk, year, term, {
                'subjects': {code: score for code, score in subjects.items() if score is not None},
                'total': summary.total,
                'average': summary.average,
                'status': summary.status,
            })
            self.rerank_cohort(student.class_name, year, term)
        record.refresh_from_db()
        return record

    def rerank_cohort(self, class_name, year, term):
        """Recompute and persist rank for every mark of a class/year/term."""
        marks = list(
            Mark.objects.filter(
                student__class_name=class_name, year=str(year), term=term
            ).select_related('student')
        )
        by_student = {str(m.student_id): m for m in marks}
        ranked = rank_cohort([_student_mark(m) for m in marks])

        updates = []
        for entry in ranked:
            mark = by_student[entry.id]
            if mark.rank != entry.rank:
                mark.rank = entry.rank
                updates.append(mark)
        if updates:
            Mark.objects.bulk_update(updates, ['rank'])
        self.cache.invalidate(self.cohort_key(class_name, year, term))
        return ranked

    def get_all_terms_for_student(self, student_id, year):
        """All of a student's marks for a year, in term order."""
        student = self.get_student(student_id)
        marks = Mark.objects.filter(student=student, year=str(year))
        cards = [_report_card_mark(mark, student) for mark in marks]
        cards.sort(key=lambda card: TERM_ORDER.get(card.term, len(TERM_ORDER)))
        return cards

    def get_cohort_marks(self, class_name, year, term):
        """
        Ranked StudentMark listing for a class/year/term.

        Rank is recomputed from the marks read, not taken from storage.
        Cached listings come back from the backend as fresh copies.
        """
        key = self.cohort_key(class_name, year, term)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cohort marks served from cache: {key}")
            return [replace(entry, subjects=dict(entry.subjects)) for entry in cached]

        marks = Mark.objects.filter(
            student__class_name=class_name, year=str(year), term=term
        ).select_related('student')
        ranked = rank_cohort([_student_mark(m) for m in marks])
        self.cache.put(key, tuple(ranked))
        return ranked

    def get_yearly_student_marks(self, year, class_name):
        """One YearlyStudentMark per student of the class who has marks for the year."""
        marks = Mark.objects.filter(
            student__class_name=class_name, year=str(year)
        ).select_related('student')

        terms_by_student = defaultdict(dict)
        students = {}
        for mark in marks:
            students[mark.student_id] = mark.student
            terms_by_student[mark.student_id][mark.term] = _student_mark(mark)

        return [
            YearlyStudentMark(
                id=str(student.pk),
                name=student.name,
                sex=student.sex,
                stream=student.class_name,
                terms=terms_by_student[student_pk],
            )
            for student_pk, student in students.items()
        ]

    def cohort_sizes(self, class_name, year):
        """Number of marks per term for a class/year, e.g. {'Term 1': 32}."""
        rows = (
            Mark.objects.filter(student__class_name=class_name, year=str(year))
            .values('term')
            .annotate(count=Count('id'))
        )
        return {row['term']: row['count'] for row in rows}

    # ============ Cache helpers ============

    @staticmethod
    def cohort_key(class_name, year, term):
        # Backends such as memcached reject spaces in keys
        return f"marks_{class_name}_{year}_{term}".replace(' ', '')

