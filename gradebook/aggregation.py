"""
Mark aggregation and ranking.

Term level: total, average and pass/fail status from a subject -> score map,
and rank within a class/year/term cohort.

Year level: a student's yearly average across the terms they sat, the
yearly ranking and the per-term ranking used by the yearly overview.

Everything here is a pure function of its arguments.
"""
import math
from collections import namedtuple

from . import config
from .models import Mark


MarkSummary = namedtuple('MarkSummary', ['total', 'average', 'status'])


def is_missing(value):
    """True for scores/averages that were never entered or are undefined."""
    if value is None:
        return True
    try:
        return math.isnan(float(value))
    except (TypeError, ValueError):
        return True


def entered_scores(subjects):
    """Drop subjects that have no score entered."""
    return {
        code: float(score)
        for code, score in (subjects or {}).items()
        if not is_missing(score)
    }


def status_for_average(average):
    """
    Per-term PASS/FAIL status.

    This is the fixed term status policy, unrelated to the class-dependent
    promotion threshold in gradebook.promotion.
    """
    if is_missing(average):
        return Mark.Status.FAIL
    return Mark.Status.PASS if average >= config.STATUS_PASS_MARK else Mark.Status.FAIL


def summarize_subjects(subjects):
    """
    Compute total, average and status for one term's subject scores.

    Only entered scores count towards the average's denominator. An empty
    map yields NaN for the average, which callers render as N/A.
    """
    scores = entered_scores(subjects)
    total = sum(scores.values())
    average = total / len(scores) if scores else math.nan
    return MarkSummary(total=total, average=average, status=status_for_average(average))


def _ranking_key(average, student_id):
    # Undefined averages sink to the bottom; equal averages order by id
    if is_missing(average):
        return (1, 0.0, str(student_id))
    return (0, -float(average), str(student_id))


def rank_cohort(marks):
    """
    Rank the marks of one class/year/term cohort.

    Sorted by average descending and numbered 1..N by position, so tied
    averages receive distinct consecutive ranks. Returns new records.
    """
    ordered = sorted(marks, key=lambda m: _ranking_key(m.average, m.id))
    return [mark.with_rank(position) for position, mark in enumerate(ordered, 1)]


def subject_averages(marks):
    """Mean score per subject over the students who have that subject entered."""
    totals = {}
    counts = {}
    for mark in marks:
        for code, score in entered_scores(mark.subjects).items():
            totals[code] = totals.get(code, 0.0) + score
            counts[code] = counts.get(code, 0) + 1
    return {code: totals[code] / counts[code] for code in totals}


def format_score(value, places=2):
    """Format a score/average for display; undefined values become N/A."""
    if is_missing(value):
        return 'N/A'
    return f"{float(value):.{places}f}"


# ============ Yearly aggregation ============

def yearly_average(yearly_mark):
    """
    Mean of the term averages a student has for the year.

    Terms that were not sat are left out of the denominator. A student with
    no terms at all gets 0.
    """
    averages = [
        float(term.average)
        for term in yearly_mark.terms.values()
        if not is_missing(term.average)
    ]
    if not averages:
        return 0
    return sum(averages) / len(averages)


def rank_students(yearly_marks):
    """Rank students by yearly average, highest first; returns new records."""
    ordered = sorted(
        yearly_marks,
        key=lambda s: _ranking_key(yearly_average(s), s.id)
    )
    return [student.with_rank(position) for position, student in enumerate(ordered, 1)]


def rank_term(yearly_marks, term):
    """
    Rank only the students who sat `term`, by that term's average.

    Independent of the yearly rank. Returns (rank, yearly_mark) pairs.
    """
    sat_term = [s for s in yearly_marks if term in s.terms]
    ordered = sorted(
        sat_term,
        key=lambda s: _ranking_key(s.terms[term].average, s.id)
    )
    return list(enumerate(ordered, 1))
