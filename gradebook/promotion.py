"""
End-of-year promotion decisions.

The promotion threshold depends on the class tier and is a separate policy
from the per-term PASS/FAIL status mark.
"""
import logging

from core.choices import SchoolClass
from . import config
from .records import PromotionDecision

logger = logging.getLogger(__name__)


# Class each class moves up to; final-year classes map to None
CLASS_HIERARCHY = {
    SchoolClass.PREP_A.value: 'S1',
    SchoolClass.PREP_B.value: 'S1',
    SchoolClass.S1A.value: 'S2',
    SchoolClass.S1B.value: 'S2',
    SchoolClass.S1C.value: 'S2',
    SchoolClass.S1D.value: 'S2',
    SchoolClass.S1E.value: 'S2',
    SchoolClass.S2A.value: 'S3',
    SchoolClass.S2B.value: 'S3',
    SchoolClass.S3A.value: 'S4A',
    SchoolClass.S3B.value: 'S4B',
    SchoolClass.S4A.value: None,
    SchoolClass.S4B.value: None,
}


def promotion_threshold(class_name):
    """Minimum yearly average needed to leave `class_name`."""
    for prefix, threshold in config.PROMOTION_THRESHOLDS:
        if class_name.startswith(prefix):
            return threshold
    return config.DEFAULT_PROMOTION_THRESHOLD


def next_class(class_name):
    """Label of the class above `class_name`, or None for final-year classes."""
    return CLASS_HIERARCHY.get(class_name)


def evaluate_promotion(class_name, yearly_average):
    """
    Decide whether a student in `class_name` is promoted.

    A retained student has no next class.
    """
    threshold = promotion_threshold(class_name)
    promoted = yearly_average >= threshold
    decision = PromotionDecision(
        class_name=class_name,
        yearly_average=yearly_average,
        threshold=threshold,
        promoted=promoted,
        next_class=next_class(class_name) if promoted else None,
    )
    logger.debug(
        f"Promotion for {class_name}: average {yearly_average:.2f} "
        f"vs threshold {threshold} -> {'promoted' if promoted else 'retained'}"
    )
    return decision
