"""Averages and performance extremes over consolidated grades.

A *view* is one of the real quarters (``Q1``–``Q4``) or the synthetic
``Combined`` view, where each subject cell is the mean of whichever quarters
have a grade. Averages that have nothing to average report the placeholder
``"-"`` instead of a number.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple, Union

from .models import COMBINED_VIEW, QUARTERS, ConsolidatedStudent

PLACEHOLDER = "-"

Average = Union[float, str]


def normalize_view(value: str | None, default: str = "Q1") -> str | None:
    """Return ``Q1``..``Q4`` or ``Combined`` for a query value, else ``None``."""

    cleaned = (value or "").strip()
    if not cleaned:
        return default
    if cleaned.lower() == COMBINED_VIEW.lower():
        return COMBINED_VIEW
    upper = cleaned.upper()
    return upper if upper in QUARTERS else None


def _mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def _rounded(value: float | None) -> Average:
    return PLACEHOLDER if value is None else round(value, 2)


def _subjects_of(student: ConsolidatedStudent) -> List[str]:
    subjects: List[str] = []
    for quarter in QUARTERS:
        for subject in student.grades.get(quarter, {}):
            if subject not in subjects:
                subjects.append(subject)
    return subjects


def combined_grades(student: ConsolidatedStudent) -> Dict[str, float | None]:
    """Average each subject over the quarters that have a grade.

    Cells keep full precision so later averages are taken over raw values;
    rounding happens only in :func:`view_rows`.
    """

    combined: Dict[str, float | None] = {}
    for subject in _subjects_of(student):
        values = [
            student.grades[quarter][subject]
            for quarter in QUARTERS
            if student.grades.get(quarter, {}).get(subject) is not None
        ]
        combined[subject] = _mean(values)
    return combined


def view_grades(student: ConsolidatedStudent, view: str) -> Dict[str, float | None]:
    if view == COMBINED_VIEW:
        return combined_grades(student)
    return dict(student.grades.get(view, {}))


def student_average(grades: Mapping[str, float | None]) -> Average:
    return _rounded(_mean([value for value in grades.values() if value is not None]))


def _view_table(
    students: Iterable[ConsolidatedStudent], view: str
) -> Tuple[List[str], List[Dict[str, float | None]]]:
    subjects: List[str] = []
    table: List[Dict[str, float | None]] = []
    for student in students:
        grades = view_grades(student, view)
        table.append(grades)
        for subject in grades:
            if subject not in subjects:
                subjects.append(subject)
    return subjects, table


def subject_averages(
    students: Iterable[ConsolidatedStudent], view: str
) -> Dict[str, Average]:
    """Class average per subject for the view, in subject discovery order."""

    subjects, table = _view_table(students, view)
    return _subject_averages(subjects, table)


def _subject_averages(
    subjects: Sequence[str], table: Sequence[Mapping[str, float | None]]
) -> Dict[str, Average]:
    averages: Dict[str, Average] = {}
    for subject in subjects:
        values = [row[subject] for row in table if row.get(subject) is not None]
        averages[subject] = _rounded(_mean(values))
    return averages


def _numeric(averages: Mapping[str, Average]) -> List[Tuple[str, float]]:
    return [
        (subject, value)
        for subject, value in averages.items()
        if not isinstance(value, str)
    ]


def overall_average(averages: Mapping[str, Average]) -> Average:
    """Mean of the per-subject class averages, not of every individual grade."""

    return _rounded(_mean([value for _, value in _numeric(averages)]))


def performance_extremes(
    averages: Mapping[str, Average],
) -> Tuple[Dict[str, Any] | None, Dict[str, Any] | None]:
    """Return the highest and lowest performing subjects.

    Ties go to the subject name that sorts first, so the answer does not
    depend on the order subjects were discovered in.
    """

    entries = _numeric(averages)
    if not entries:
        return None, None

    highest = min(entries, key=lambda entry: (-entry[1], entry[0]))
    lowest = min(entries, key=lambda entry: (entry[1], entry[0]))
    return (
        {"subject": highest[0], "average": highest[1]},
        {"subject": lowest[0], "average": lowest[1]},
    )


def view_rows(
    students: Iterable[ConsolidatedStudent], view: str
) -> List[Dict[str, Any]]:
    """Per-student rows for display: identity, the view's grades, average."""

    rows = []
    for student in students:
        grades = view_grades(student, view)
        rows.append(
            {
                "lrn": student.lrn,
                "name": student.name,
                "sex": student.sex,
                "section_name": student.section_name,
                "grades": {
                    subject: round(value, 2) if value is not None else None
                    for subject, value in grades.items()
                },
                "studentAverage": student_average(grades),
            }
        )
    return rows


def summarize(students: Sequence[ConsolidatedStudent], view: str) -> Dict[str, Any]:
    subjects, table = _view_table(students, view)
    averages = _subject_averages(subjects, table)
    highest, lowest = performance_extremes(averages)
    return {
        "view": view,
        "subjects": subjects,
        "subjectAverages": averages,
        "overallAverage": overall_average(averages),
        "highestSubject": highest,
        "lowestSubject": lowest,
        "studentAverages": {
            student.lrn: student_average(grades)
            for student, grades in zip(students, table)
        },
    }


__all__ = [
    "PLACEHOLDER",
    "normalize_view",
    "combined_grades",
    "view_grades",
    "student_average",
    "subject_averages",
    "overall_average",
    "performance_extremes",
    "view_rows",
    "summarize",
]
