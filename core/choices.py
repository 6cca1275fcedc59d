from django.db import models
from django.utils.translation import gettext_lazy as _


class Sex(models.TextChoices):
    MALE = 'M', _('Male')
    FEMALE = 'F', _('Female')


class Term(models.TextChoices):
    TERM_1 = 'Term 1', _('Term 1')
    TERM_2 = 'Term 2', _('Term 2')
    TERM_3 = 'Term 3', _('Term 3')


class SchoolClass(models.TextChoices):
    PREP_A = 'PREP-A', _('PREP-A')
    PREP_B = 'PREP-B', _('PREP-B')
    S1A = 'S1A', _('S1A')
    S1B = 'S1B', _('S1B')
    S1C = 'S1C', _('S1C')
    S1D = 'S1D', _('S1D')
    S1E = 'S1E', _('S1E')
    S2A = 'S2A', _('S2A')
    S2B = 'S2B', _('S2B')
    S3A = 'S3A', _('S3A')
    S3B = 'S3B', _('S3B')
    S4A = 'S4A', _('S4A')
    S4B = 'S4B', _('S4B')


# Class categories used to group classes in the yearly overview
CLASS_CATEGORIES = ['PREP', 'S1', 'S2', 'S3', 'S4']


PREP_SUBJECTS = [
    ('ENG', 'English'),
    ('MATH', 'Mathematics'),
    ('CRE', 'Christian Religious Education'),
    ('CHEM', 'Chemistry'),
    ('BIOS', 'Biology'),
    ('PHY', 'Physics'),
]

LOWER_SECONDARY_SUBJECTS = [
    ('ENG', 'English'),
    ('MATH', 'Mathematics'),
    ('CRE', 'Christian Religious Education'),
    ('C/SHIP', 'Citizenship'),
    ('CHEM', 'Chemistry'),
    ('BIOS', 'Biology'),
    ('PHY', 'Physics'),
    ('AGRI', 'Agriculture'),
    ('GEO', 'Geography'),
    ('HIST', 'History'),
    ('COMM', 'Commerce'),
    ('ARA', 'Arabic'),
    ('COMP', 'Computer'),
    ('P.O.A', 'Physical Education'),
]

UPPER_SCIENCE_SUBJECTS = [
    ('ENG', 'English'),
    ('MATH', 'Mathematics'),
    ('CRE', 'Christian Religious Education'),
    ('C/SHIP', 'Citizenship'),
    ('CHEM', 'Chemistry'),
    ('BIOS', 'Biology'),
    ('PHY', 'Physics'),
    ('AGRI', 'Agriculture'),
    ('ADD MATH', 'Additional Maths'),
    ('COMP', 'Computer'),
]

UPPER_ARTS_SUBJECTS = [
    ('ENG', 'English'),
    ('MATH', 'Mathematics'),
    ('CRE', 'Christian Religious Education'),
    ('C/SHIP', 'Citizenship'),
    ('GEO', 'Geography'),
    ('HIST', 'History'),
    ('COMM', 'Commerce'),
    ('LIT', 'Literature'),
    ('COMP', 'Computer'),
    ('P.O.A', 'Physical Education'),
]

CLASS_SUBJECTS = {
    SchoolClass.PREP_A.value: PREP_SUBJECTS,
    SchoolClass.PREP_B.value: PREP_SUBJECTS,
    SchoolClass.S1A.value: LOWER_SECONDARY_SUBJECTS,
    SchoolClass.S1B.value: LOWER_SECONDARY_SUBJECTS,
    SchoolClass.S1C.value: LOWER_SECONDARY_SUBJECTS,
    SchoolClass.S1D.value: LOWER_SECONDARY_SUBJECTS,
    SchoolClass.S1E.value: LOWER_SECONDARY_SUBJECTS,
    SchoolClass.S2A.value: LOWER_SECONDARY_SUBJECTS,
    SchoolClass.S2B.value: LOWER_SECONDARY_SUBJECTS,
    SchoolClass.S3A.value: UPPER_SCIENCE_SUBJECTS,
    SchoolClass.S3B.value: UPPER_ARTS_SUBJECTS,
    SchoolClass.S4A.value: UPPER_SCIENCE_SUBJECTS,
    SchoolClass.S4B.value: UPPER_ARTS_SUBJECTS,
}


def subjects_for_class(class_name):
    """
    Return the ordered (code, name) subject list for a class code.

    Raises KeyError for a class that is not in the catalogue.
    """
    if class_name not in SchoolClass.values:
        raise KeyError(f'Unknown class: {class_name}')
    return CLASS_SUBJECTS[class_name]


def subject_codes_for_class(class_name):
    """Return just the subject codes for a class, in display order."""
    return [code for code, _name in subjects_for_class(class_name)]


def classes_in_category(category):
    """Return the class codes whose name starts with a category prefix (e.g. 'S1')."""
    return [value for value in SchoolClass.values if value.startswith(category)]


def normalize_sex(value):
    """Map spreadsheet/form spellings of sex onto Sex values, or '' if unrecognised."""
    value = (value or '').strip().upper()
    if value in ('M', 'MALE'):
        return Sex.MALE
    if value in ('F', 'FEMALE'):
        return Sex.FEMALE
    return ''
