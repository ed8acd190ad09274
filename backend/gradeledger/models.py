"""Fixed-shape records passed between the upload and consolidation stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple

QUARTERS = ("Q1", "Q2", "Q3", "Q4")
COMBINED_VIEW = "Combined"

_QUARTER_LABELS = {
    "1ST QUARTER": "Q1",
    "2ND QUARTER": "Q2",
    "3RD QUARTER": "Q3",
    "4TH QUARTER": "Q4",
}


def normalize_quarter(value: Any) -> str | None:
    """Map ``1``, ``"1"``, ``"q1"`` or ``"1st Quarter"`` to ``"Q1"``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)

    text = str(value).strip().upper()
    if text in _QUARTER_LABELS:
        return _QUARTER_LABELS[text]
    if text.startswith("Q"):
        text = text[1:]
    if text.isdigit() and 1 <= int(text) <= 4:
        return f"Q{int(text)}"
    return None


def format_student_name(document: Dict[str, Any]) -> str:
    """Build ``"Last, First Middle Suffix"`` from a student document."""

    def part(key: str) -> str:
        value = document.get(key)
        return str(value).strip() if value is not None else ""

    given = " ".join(p for p in (part("first_name"), part("middle_name"), part("suffix")) if p)
    last = part("last_name")
    if last and given:
        return f"{last}, {given}"
    return last or given


class GradeKey(NamedTuple):
    """Identity of a GradeRecord; the ledger holds at most one per key."""

    lrn: str
    subject_id: str
    quarter: str
    school_year_id: str


@dataclass
class UploadRow:
    row_number: int
    lrn: str | None
    grade: int | None
    raw_grade: Any
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EnrollmentRecord:
    lrn: str
    name: str
    sex: str | None
    grade_level: str | None
    section_id: str | None
    section_name: str | None


@dataclass
class SubjectAssignment:
    subject_id: str
    subject_name: str
    teacher_id: str | None
    grade_level: str | None
    section_id: str | None
    section_name: str | None


@dataclass
class GradeCandidate:
    key: GradeKey
    grade: int
    teacher_id: str

    @property
    def lrn(self) -> str:
        return self.key.lrn


@dataclass
class LedgerRow:
    lrn: str
    name: str
    sex: str | None
    section_id: str | None
    section_name: str | None
    subject_name: str
    quarter: str
    grade: float | None


@dataclass
class ConsolidatedStudent:
    lrn: str
    name: str
    sex: str | None
    section_id: str | None
    section_name: str | None
    grades: Dict[str, Dict[str, float | None]] = field(
        default_factory=lambda: {quarter: {} for quarter in QUARTERS}
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lrn": self.lrn,
            "name": self.name,
            "sex": self.sex,
            "section_id": self.section_id,
            "section_name": self.section_name,
            "grades": {quarter: dict(self.grades[quarter]) for quarter in QUARTERS},
        }


__all__ = [
    "QUARTERS",
    "COMBINED_VIEW",
    "normalize_quarter",
    "format_student_name",
    "GradeKey",
    "UploadRow",
    "EnrollmentRecord",
    "SubjectAssignment",
    "GradeCandidate",
    "LedgerRow",
    "ConsolidatedStudent",
]
