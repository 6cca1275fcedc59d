"""
Bulk mark import from Excel workbooks.

A workbook holds one row per student for a single class, year and term:
NAME, SEX, one column per subject code of the class, and the summary
columns TOT, AVE, RANK and STATUS the school's spreadsheet already computes.

Each row is matched to an existing student of the class by exact name (or
a new student is created) and its Mark is written. Rows are processed one
at a time; a bad row is recorded in the result and the batch carries on.
"""
import logging

import openpyxl
import pandas as pd
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from django.db import transaction

from core.choices import SchoolClass, Term, normalize_sex, subject_codes_for_class
from . import config
from .exceptions import ImportConfigurationError, RowValidationError, WorkbookError
from .records import ExcelRow, ImportResult
from .store import MarkStore

logger = logging.getLogger(__name__)

NAME_COLUMN = 'NAME'
SEX_COLUMN = 'SEX'
SUMMARY_COLUMNS = ['TOT', 'AVE', 'RANK', 'STATUS']


# ============ Cell helpers ============

def clean_value(value):
    """Clean a cell value, handling NaN and empty strings."""
    if value is None:
        return ''
    if isinstance(value, float) and pd.isna(value):
        return ''
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def clean_number(value):
    """Parse a numeric cell; blank, NaN and non-numeric cells become None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(number) else number


def clean_rank(value):
    number = clean_number(value)
    return int(number) if number is not None else None


# ============ Parsing ============

def read_workbook(file, sheets=None):
    """
    Read the rows of the selected sheets (all sheets when none are given).

    Returns a list of (sheet_name, row_number, raw_row) where raw_row maps
    upper-cased header names to cell values and row_number is the Excel row.
    Raises WorkbookError when the file cannot be read or a sheet is missing.
    """
    try:
        frames = pd.read_excel(file, sheet_name=None, engine='openpyxl')
    except Exception as e:
        logger.exception("Error reading marks workbook")
        raise WorkbookError(f"Could not read workbook: {e}") from e

    selected = list(sheets) if sheets else list(frames.keys())
    missing = [name for name in selected if name not in frames]
    if missing:
        raise WorkbookError(f"Sheet(s) not found in workbook: {', '.join(missing)}")

    rows = []
    for sheet_name in selected:
        df = frames[sheet_name]
        df.columns = [str(column).strip().upper() for column in df.columns]
        for idx, row in df.iterrows():
            raw = row.to_dict()
            if all(clean_value(value) == '' for value in raw.values()):
                continue
            rows.append((sheet_name, idx + 2, raw))
    return rows


def parse_row(raw, subject_codes, row_number=None, sheet=''):
    """
    Validate one spreadsheet row into an ExcelRow.

    Raises RowValidationError when NAME or SEX is missing or SEX is not
    recognised. Subjects without a score are listed in missing_subjects;
    they never cause the row to be rejected.
    """
    name = clean_value(raw.get(NAME_COLUMN))
    sex_value = clean_value(raw.get(SEX_COLUMN))
    if not name or not sex_value:
        raise RowValidationError('missing Name or Sex', row_number=row_number, raw=raw)

    sex = normalize_sex(sex_value)
    if not sex:
        raise RowValidationError(f"invalid Sex '{sex_value}' for {name}", row_number=row_number, raw=raw)

    scores = {}
    missing = []
    for code in subject_codes:
        score = clean_number(raw.get(code))
        if score is None:
            missing.append(code)
        else:
            scores[code] = score

    return ExcelRow(
        row_number=row_number,
        name=name,
        sex=sex,
        scores=scores,
        missing_subjects=missing,
        total=clean_number(raw.get('TOT')),
        average=clean_number(raw.get('AVE')),
        rank=clean_rank(raw.get('RANK')),
        status=clean_value(raw.get('STATUS')).upper(),
        sheet=sheet,
    )


# ============ Reconciliation ============

class MarksImporter:
    """
    Reconciles parsed spreadsheet rows against the student records.

    Existing students are matched on (name, class) and left as they are;
    unmatched rows create a new student. Either way the row's Mark is
    written for the selected year and term.
    """

    def __init__(self, store=None):
        self.store = store or MarkStore()

    def run(self, rows, class_name, year, term, on_progress=None):
        """
        Import rows of (sheet, row_number, raw) for one class/year/term.

        on_progress(processed, total) is called after every row. Returns an
        ImportResult; per-row failures end up in its errors list.
        """
        subject_codes = subject_codes_for_class(class_name)
        result = ImportResult()
        total_rows = len(rows)

        for processed, (sheet, row_number, raw) in enumerate(rows, 1):
            try:
                row = parse_row(raw, subject_codes, row_number=row_number, sheet=sheet)
                created = self._import_row(row, class_name, year, term, result)
                if created:
                    result.uploaded += 1
                else:
                    result.updated += 1
            except RowValidationError as e:
                logger.warning(f"Skipping {sheet} row {row_number}: {e.reason}")
                result.errors.append(f"Row skipped ({sheet} row {row_number}): {e.reason}")
                result.skipped += 1
            except Exception as e:
                name = clean_value(raw.get(NAME_COLUMN)) or f"row {row_number}"
                logger.exception(f"Error processing {sheet} row {row_number}")
                result.errors.append(f"Error processing student {name}: {e}")
                result.skipped += 1

            if on_progress:
                on_progress(processed, total_rows)

        logger.info(
            f"Import complete for {class_name} {year} {term}: "
            f"{result.uploaded} uploaded, {result.updated} updated, {result.skipped} skipped"
        )
        if result.errors:
            logger.warning(f"{len(result.errors)} problem(s) during import of {class_name}")
        return result

    def _import_row(self, row, class_name, year, term, result):
        """Match or create the student and write the mark; True if created."""
        for code in row.missing_subjects:
            logger.warning(f"Missing mark for subject {code} in {row.sheet} row {row.row_number}")
            result.errors.append(f"Missing mark for subject {code} for student {row.name}")

        # Student creation and mark write succeed or fail together
        with transaction.atomic():
            existing = self.store.get_student_by_name(row.name, class_name=class_name)
            if existing is not None:
                student_id = existing.pk
                created = False
            else:
                student_id = self.store.add_student({
                    'name': row.name,
                    'class_name': class_name,
                    'sex': row.sex,
                    'photo': '',
                })
                created = True

            self.store.set_mark(student_id, year, term, row.mark_data())
        return created


def validate_import_target(class_name, year, term):
    """Raise ImportConfigurationError unless class, year and term are known."""
    if class_name not in SchoolClass.values:
        raise ImportConfigurationError(f"Class configuration not found for {class_name}")
    if term not in Term.values:
        raise ImportConfigurationError(f"Unknown term: {term}")
    year = str(year)
    if not (len(year) == 4 and year.isdigit()):
        raise ImportConfigurationError(f"Invalid academic year: {year}")


def import_marks_from_excel(file, class_name, year, term, sheets=None, on_progress=None, store=None):
    """
    Import a marks workbook for one class, year and term.

    Configuration and workbook errors are raised before any row is touched.
    """
    validate_import_target(class_name, year, term)
    rows = read_workbook(file, sheets=sheets)
    logger.info(f"Importing {len(rows)} row(s) into {class_name} {year} {term}")
    return MarksImporter(store).run(rows, class_name, str(year), term, on_progress=on_progress)


# ============ Template and export ============

def import_columns(class_name):
    return [NAME_COLUMN, SEX_COLUMN] + subject_codes_for_class(class_name) + SUMMARY_COLUMNS


THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)


def _new_sheet(class_name):
    """Workbook whose active sheet carries the styled import header row."""
    headers = import_columns(class_name)

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = class_name

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color=config.EXCEL_HEADER_COLOR, end_color=config.EXCEL_HEADER_COLOR, fill_type="solid")

    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal='center')
        cell.border = THIN_BORDER

    ws.column_dimensions['A'].width = 30
    for col in range(2, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 10
    return wb, ws


def build_import_template(class_name):
    """Blank workbook with the header row the importer expects for a class."""
    wb, _ws = _new_sheet(class_name)
    return wb


def build_marks_export(class_name, marks):
    """
    Workbook of a ranked cohort listing in the import layout.

    The result can be edited and uploaded again; missing scores are left blank.
    """
    wb, ws = _new_sheet(class_name)
    codes = subject_codes_for_class(class_name)

    for row, mark in enumerate(marks, 2):
        values = [mark.name, mark.sex]
        values += [mark.subjects.get(code) for code in codes]
        values += [mark.total, mark.average, mark.rank, mark.status]
        for col, value in enumerate(values, 1):
            if isinstance(value, float) and pd.isna(value):
                value = None
            cell = ws.cell(row=row, column=col, value=value)
            cell.border = THIN_BORDER
            if col > 2:
                cell.alignment = Alignment(horizontal='center')
    return wb
