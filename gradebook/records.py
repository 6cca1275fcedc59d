"""
Plain records passed between the store, the aggregators and the views.

These carry data read from the database; they hold no ORM state and can be
cached, ranked and serialized freely.
"""
from dataclasses import dataclass, field, asdict, replace
from typing import Dict, List, Optional


@dataclass
class StudentMark:
    """One student's mark in a class/year/term listing."""
    id: str
    name: str
    sex: str = ''
    class_name: str = ''
    subjects: Dict[str, float] = field(default_factory=dict)
    total: Optional[float] = None
    average: Optional[float] = None
    rank: Optional[int] = None
    status: str = ''

    def with_rank(self, rank):
        return replace(self, rank=rank)

    def to_dict(self):
        return asdict(self)


@dataclass
class ReportCardMark:
    """A Mark flattened with the key it is stored under."""
    id: str
    class_name: str
    year: str
    term: str
    subjects: Dict[str, float] = field(default_factory=dict)
    total: Optional[float] = None
    average: Optional[float] = None
    rank: Optional[int] = None
    status: str = ''

    def to_dict(self):
        return asdict(self)


@dataclass
class YearlyStudentMark:
    """A student's term marks for one academic year."""
    id: str
    name: str
    sex: str = ''
    stream: str = ''
    terms: Dict[str, StudentMark] = field(default_factory=dict)
    rank: Optional[int] = None

    def with_rank(self, rank):
        return replace(self, rank=rank)

    def to_dict(self):
        return asdict(self)


@dataclass
class PromotionDecision:
    class_name: str
    yearly_average: float
    threshold: float
    promoted: bool
    next_class: Optional[str] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class ExcelRow:
    """A spreadsheet row that passed validation."""
    row_number: int
    name: str
    sex: str
    scores: Dict[str, float] = field(default_factory=dict)
    missing_subjects: List[str] = field(default_factory=list)
    total: Optional[float] = None
    average: Optional[float] = None
    rank: Optional[int] = None
    status: str = ''
    sheet: str = ''

    def mark_data(self):
        """The Mark document this row writes; summary fields come from the sheet."""
        return {
            'subjects': dict(self.scores),
            'total': self.total,
            'average': self.average,
            'rank': self.rank,
            'status': self.status,
        }


@dataclass
class ImportResult:
    uploaded: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)
