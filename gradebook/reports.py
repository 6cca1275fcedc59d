"""
Report card assembly.

Builds the data a report card template lays out: one column per term the
student sat, one row per subject of the class, grade letters, and the
end-of-year promotion decision.
"""
import logging

from students.models import Student
from .aggregation import format_score, is_missing, yearly_average
from .exceptions import ReportCardNotFound
from .promotion import evaluate_promotion
from .records import StudentMark, YearlyStudentMark

logger = logging.getLogger(__name__)


# (minimum score, letter), checked from the top
GRADE_SCALE = [
    (80, 'A'),
    (75, 'A-'),
    (70, 'B+'),
    (65, 'B'),
    (60, 'B-'),
    (55, 'C+'),
    (50, 'C'),
    (45, 'C-'),
    (40, 'D+'),
    (35, 'D'),
    (30, 'D-'),
]
LOWEST_GRADE = 'E'


def grade_for_score(score):
    """Letter grade for a 0-100 score; None when no score was entered."""
    if is_missing(score):
        return None
    score = float(score)
    for minimum, letter in GRADE_SCALE:
        if score >= minimum:
            return letter
    return LOWEST_GRADE


def grade_key():
    """Rows for the grading key printed on the card, e.g. ('A-', '75-79')."""
    rows = []
    upper = 100
    for minimum, letter in GRADE_SCALE:
        rows.append((letter, f"{minimum}-{upper}"))
        upper = minimum - 1
    rows.append((LOWEST_GRADE, f"<{GRADE_SCALE[-1][0]}"))
    return rows


def _yearly_mark(student, term_marks):
    return YearlyStudentMark(
        id=str(student.pk),
        name=student.name,
        sex=student.sex,
        stream=student.class_name,
        terms={
            card.term: StudentMark(
                id=card.id,
                name=student.name,
                subjects=card.subjects,
                total=card.total,
                average=card.average,
                rank=card.rank,
                status=card.status,
            )
            for card in term_marks
        },
    )


def build_report_card(store, student_id, year, cohort_sizes=None):
    """
    Assemble a student's report card for a year.

    Each term summary carries `out_of`, the number of students of the class
    with marks for that term. `cohort_sizes` ({term: count}) is read from
    the store when not given.

    Raises Student.DoesNotExist for an unknown student and
    ReportCardNotFound when no term has any subject marks.
    """
    student = store.get_student(student_id)
    term_marks = [
        card for card in store.get_all_terms_for_student(student.pk, year)
        if card.subjects
    ]
    if not term_marks:
        raise ReportCardNotFound(f"No marks recorded for {student.name} in {year}")

    if cohort_sizes is None:
        cohort_sizes = store.cohort_sizes(student.class_name, year)

    terms = [card.term for card in term_marks]
    rows = []
    for code, subject_name in student.subjects:
        cells = []
        for card in term_marks:
            score = card.subjects.get(code)
            cells.append({
                'term': card.term,
                'score': score,
                'display': format_score(score, places=0) if score is not None else '-',
                'grade': grade_for_score(score),
            })
        rows.append({'code': code, 'subject': subject_name, 'cells': cells})

    summaries = [
        {
            'term': card.term,
            'total': card.total,
            'average': card.average,
            'average_display': format_score(card.average),
            'rank': card.rank,
            'out_of': cohort_sizes.get(card.term),
            'status': card.status,
        }
        for card in term_marks
    ]

    year_average = yearly_average(_yearly_mark(student, term_marks))
    promotion = evaluate_promotion(student.class_name, year_average)

    return {
        'student': student.to_dict(),
        'year': str(year),
        'terms': terms,
        'rows': rows,
        'summaries': summaries,
        'yearly_average': year_average,
        'yearly_average_display': format_score(year_average),
        'promotion': promotion.to_dict(),
        'grade_key': grade_key(),
    }


def build_class_report_cards(store, class_name, year):
    """
    Report cards for every student of a class, skipping students without marks.

    Returns (cards, skipped_names).
    """
    students = store.get_students_by_class(class_name)
    cohort_sizes = store.cohort_sizes(class_name, year)
    cards = []
    skipped = []
    for student in students:
        try:
            cards.append(build_report_card(store, student.pk, year, cohort_sizes=cohort_sizes))
        except ReportCardNotFound:
            skipped.append(student.name)
        except Student.DoesNotExist:
            logger.warning(f"Student {student.pk} disappeared while building report cards")
            skipped.append(student.name)
    logger.info(
        f"Built {len(cards)} report cards for {class_name} {year}, {len(skipped)} without marks"
    )
    return cards, skipped
