"""Reshape the flat grade ledger into one record per student."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from .models import QUARTERS, ConsolidatedStudent, LedgerRow, SubjectAssignment

MALE = "Male"


def section_subjects(
    ledger: Sequence[LedgerRow], assignments: Iterable[SubjectAssignment]
) -> Dict[str | None, List[str]]:
    """Return the ordered subject names taught in each section.

    Assigned subjects come first. Subjects that only appear in the ledger
    (for example after an assignment was removed) are appended so no
    recorded grade disappears from the table.
    """

    subjects: Dict[str | None, List[str]] = {}
    for assignment in assignments:
        names = subjects.setdefault(assignment.section_id, [])
        if assignment.subject_name not in names:
            names.append(assignment.subject_name)

    for row in ledger:
        names = subjects.setdefault(row.section_id, [])
        if row.subject_name not in names:
            names.append(row.subject_name)

    return subjects


def _sex_rank(student: ConsolidatedStudent) -> int:
    return 0 if student.sex == MALE else 1


def consolidate(
    ledger: Sequence[LedgerRow],
    assignments: Iterable[SubjectAssignment],
    section_ids: Iterable[str] | None = None,
) -> List[ConsolidatedStudent]:
    """Group ledger rows per student with every quarter and subject present.

    ``section_ids`` restricts the result to students in those sections; it
    is applied after grouping so subject discovery still sees the whole
    ledger. ``None`` means no restriction.
    """

    subjects_by_section = section_subjects(ledger, assignments)
    students: Dict[str, ConsolidatedStudent] = {}

    for row in ledger:
        student = students.get(row.lrn)
        if student is None:
            student = ConsolidatedStudent(
                lrn=row.lrn,
                name=row.name,
                sex=row.sex,
                section_id=row.section_id,
                section_name=row.section_name,
            )
            for quarter in QUARTERS:
                for subject in subjects_by_section.get(row.section_id, []):
                    student.grades[quarter][subject] = None
            students[row.lrn] = student

        if row.quarter in student.grades:
            student.grades[row.quarter][row.subject_name] = row.grade

    ordered = sorted(students.values(), key=_sex_rank)

    if section_ids is not None:
        scope = set(section_ids)
        ordered = [student for student in ordered if student.section_id in scope]

    return ordered


def search_students(
    students: Iterable[ConsolidatedStudent], query: str | None
) -> List[ConsolidatedStudent]:
    """Keep students whose LRN, name or sex contains ``query`` (any case)."""

    needle = (query or "").strip().lower()
    if not needle:
        return list(students)
    return [
        student
        for student in students
        if needle in student.lrn.lower()
        or needle in (student.name or "").lower()
        or needle in (student.sex or "").lower()
    ]


__all__ = ["section_subjects", "consolidate", "search_students"]
