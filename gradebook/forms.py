from django import forms

from core.choices import CLASS_CATEGORIES, SchoolClass, Term, subjects_for_class
from . import config


def year_choices():
    return [(year, year) for year in config.ACADEMIC_YEARS]


class YearTermForm(forms.Form):
    """Academic year and term selection shared by the marks forms."""
    year = forms.ChoiceField()
    term = forms.ChoiceField(choices=Term.choices)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Years come from settings, so they are resolved per form instance
        self.fields['year'].choices = year_choices()


class CohortForm(YearTermForm):
    """Selects one class/year/term cohort (overview and export pages)."""
    class_name = forms.ChoiceField(choices=SchoolClass.choices)


class YearlyOverviewForm(forms.Form):
    year = forms.ChoiceField()
    category = forms.ChoiceField(choices=[(c, c) for c in CLASS_CATEGORIES])

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['year'].choices = year_choices()


class MarkEntryForm(YearTermForm):
    """
    Score entry for one student and term.

    One optional score field is added per subject of the student's class,
    named by subject code. Blank fields mean the subject was not entered.
    """

    def __init__(self, *args, class_name, **kwargs):
        super().__init__(*args, **kwargs)
        self.class_name = class_name
        self.subject_codes = []
        for code, subject_name in subjects_for_class(class_name):
            self.fields[code] = forms.FloatField(
                label=subject_name,
                required=False,
                min_value=0,
                max_value=100,
                widget=forms.NumberInput(attrs={'min': '0', 'max': '100', 'step': '0.01'}),
            )
            self.subject_codes.append(code)

    def entered_subjects(self):
        """Subject code -> score for the subjects that were filled in."""
        return {
            code: self.cleaned_data[code]
            for code in self.subject_codes
            if self.cleaned_data.get(code) is not None
        }
