"""Exceptions raised by the gradebook services."""


class GradebookError(Exception):
    """Base class for gradebook errors."""


class ImportConfigurationError(GradebookError):
    """The import cannot start: unknown class, year or term."""


class WorkbookError(GradebookError):
    """The uploaded workbook could not be read."""


class RowValidationError(GradebookError):
    """
    A spreadsheet row failed validation and must be skipped.

    Carries the sheet row number and a short reason so the importer can
    report it without aborting the batch.
    """

    def __init__(self, reason, row_number=None, raw=None):
        self.reason = reason
        self.row_number = row_number
        self.raw = raw or {}
        super().__init__(reason)

    def __str__(self):
        if self.row_number is None:
            return self.reason
        return f"Row {self.row_number}: {self.reason}"


class ReportCardNotFound(GradebookError):
    """The student has no marks recorded for the requested year."""
