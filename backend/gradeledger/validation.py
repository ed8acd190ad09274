"""Business-rule checks applied to each uploaded grade row."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .models import EnrollmentRecord, GradeCandidate, GradeKey, SubjectAssignment, UploadRow

MISSING_IDENTIFIER = "missing_identifier"
INVALID_GRADE = "invalid_grade"
UNKNOWN_STUDENT = "unknown_student"
ENROLLMENT_MISMATCH = "enrollment_mismatch"
DUPLICATE = "duplicate"
PERSISTENCE_ERROR = "persistence_error"

MIN_GRADE = 0
MAX_GRADE = 100


@dataclass
class RowFailure:
    kind: str
    lrn: str | None
    detail: str | None = None


def _display_raw(value: Any) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return "blank"
    return str(value)


class RowValidator:
    """Classify rows for one subject, quarter and school year.

    ``assignments`` are the sections where the uploading teacher handles the
    subject; a row is accepted for the one matching the student's section.
    Checks run in a fixed order and stop at the first failure, so every row
    lands in exactly one category.
    """

    def __init__(
        self,
        assignments: Sequence[SubjectAssignment],
        enrollments: Mapping[str, EnrollmentRecord],
        *,
        quarter: str,
        school_year_id: str,
        teacher_id: str,
    ) -> None:
        if not assignments:
            raise ValueError("At least one subject assignment is required")
        self.assignments = list(assignments)
        self.enrollments = enrollments
        self.quarter = quarter
        self.school_year_id = school_year_id
        self.teacher_id = teacher_id

    def _mismatch_detail(self, student: EnrollmentRecord) -> str:
        prefix = f"Student with LRN {student.lrn}"

        levels = []
        for item in self.assignments:
            if item.grade_level not in levels:
                levels.append(item.grade_level)
        if student.grade_level not in levels:
            return (
                f"{prefix} is in grade {student.grade_level}, "
                f"not grade {' or '.join(str(level) for level in levels)}"
            )

        sections = " or ".join(
            item.section_name or str(item.section_id) for item in self.assignments
        )
        return (
            f"{prefix} is enrolled in section "
            f"{student.section_name or student.section_id}, not section {sections}"
        )

    def validate(self, row: UploadRow) -> GradeCandidate | RowFailure:
        lrn = row.lrn
        if not lrn:
            return RowFailure(MISSING_IDENTIFIER, None)

        if row.grade is None or not MIN_GRADE <= row.grade <= MAX_GRADE:
            return RowFailure(
                INVALID_GRADE,
                lrn,
                f"{lrn} (invalid grade value: {_display_raw(row.raw_grade)})",
            )

        student = self.enrollments.get(lrn)
        if student is None:
            return RowFailure(
                UNKNOWN_STUDENT, lrn, f"Student with LRN {lrn} is not enrolled"
            )

        expected = next(
            (item for item in self.assignments if item.section_id == student.section_id),
            None,
        )
        if expected is None:
            return RowFailure(ENROLLMENT_MISMATCH, lrn, self._mismatch_detail(student))

        return GradeCandidate(
            key=GradeKey(lrn, expected.subject_id, self.quarter, self.school_year_id),
            grade=row.grade,
            teacher_id=self.teacher_id,
        )


__all__ = [
    "MISSING_IDENTIFIER",
    "INVALID_GRADE",
    "UNKNOWN_STUDENT",
    "ENROLLMENT_MISMATCH",
    "DUPLICATE",
    "PERSISTENCE_ERROR",
    "MIN_GRADE",
    "MAX_GRADE",
    "RowFailure",
    "RowValidator",
]
