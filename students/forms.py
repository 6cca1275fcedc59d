from django import forms

from core.choices import SchoolClass, Term, normalize_sex
from gradebook import config
from gradebook.forms import year_choices
from .models import Student


class StudentForm(forms.ModelForm):
    """Form for creating/editing individual students."""

    # Accepts M, F, MALE or FEMALE in any case
    sex = forms.CharField(max_length=10)

    class Meta:
        model = Student
        fields = ['name', 'class_name', 'sex', 'photo']
        widgets = {
            'name': forms.TextInput(attrs={'placeholder': 'Full name'}),
            'photo': forms.TextInput(attrs={'placeholder': 'Photo URL (optional)'}),
        }

    def clean_name(self):
        name = self.cleaned_data['name'].strip()
        if not name:
            raise forms.ValidationError('Name is required.')
        return name

    def clean_sex(self):
        sex = normalize_sex(self.cleaned_data.get('sex'))
        if not sex:
            raise forms.ValidationError('Sex must be M or F.')
        return sex


class MarksImportForm(forms.Form):
    """Upload form for a class marks workbook."""
    file = forms.FileField(
        help_text="Upload an Excel (.xlsx) workbook"
    )
    class_name = forms.ChoiceField(choices=SchoolClass.choices)
    year = forms.ChoiceField()
    term = forms.ChoiceField(choices=Term.choices)
    sheets = forms.CharField(
        required=False,
        help_text="Comma-separated sheet names; leave blank to import every sheet"
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['year'].choices = year_choices()

    def clean_file(self):
        file = self.cleaned_data.get('file')
        if file:
            ext = file.name.split('.')[-1].lower()
            if ext != 'xlsx':
                raise forms.ValidationError("Only .xlsx files are supported.")

            if file.size > config.MAX_FILE_SIZE:
                max_mb = config.MAX_FILE_SIZE / (1024 * 1024)
                raise forms.ValidationError(f'File size must be under {max_mb:.0f} MB.')
        return file

    def clean_sheets(self):
        sheets = self.cleaned_data.get('sheets') or ''
        return [name.strip() for name in sheets.split(',') if name.strip()]
