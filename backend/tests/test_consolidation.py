"""Per-student consolidation of the grade ledger."""

from __future__ import annotations

import sys
import unittest
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from gradeledger.consolidation import consolidate, search_students, section_subjects
from gradeledger.models import LedgerRow, SubjectAssignment


def _ledger(lrn, name, sex, section_id, subject, quarter, grade):
    return LedgerRow(
        lrn=lrn,
        name=name,
        sex=sex,
        section_id=section_id,
        section_name={"SEC5A": "Matayaga", "SEC5B": "Mabini"}[section_id],
        subject_name=subject,
        quarter=quarter,
        grade=grade,
    )


def _assignment(subject, section_id):
    return SubjectAssignment(
        subject_id=subject.upper(),
        subject_name=subject,
        teacher_id="T1",
        grade_level="5",
        section_id=section_id,
        section_name=None,
    )


ASSIGNMENTS = [
    _assignment("Mathematics", "SEC5A"),
    _assignment("Science", "SEC5A"),
    _assignment("Filipino", "SEC5B"),
]

LEDGER = [
    _ledger("002", "Santos, Maria", "Female", "SEC5A", "Mathematics", "Q1", 90.0),
    _ledger("001", "Dela Cruz, Juan", "Male", "SEC5A", "Mathematics", "Q1", 85.0),
    _ledger("001", "Dela Cruz, Juan", "Male", "SEC5A", "Mathematics", "Q2", 88.0),
    _ledger("003", "Reyes, Ana", "Female", "SEC5B", "Filipino", "Q1", 92.0),
]


class ConsolidateTestCase(unittest.TestCase):
    def test_every_quarter_lists_every_section_subject(self) -> None:
        students = {student.lrn: student for student in consolidate(LEDGER, ASSIGNMENTS)}

        juan = students["001"]
        self.assertEqual(
            {
                "Q1": {"Mathematics": 85.0, "Science": None},
                "Q2": {"Mathematics": 88.0, "Science": None},
                "Q3": {"Mathematics": None, "Science": None},
                "Q4": {"Mathematics": None, "Science": None},
            },
            juan.grades,
        )
        self.assertEqual({"Filipino": None}, students["003"].grades["Q4"])

    def test_males_first_then_original_order(self) -> None:
        students = consolidate(LEDGER, ASSIGNMENTS)

        self.assertEqual(["001", "002", "003"], [student.lrn for student in students])

    def test_scope_is_applied_after_grouping(self) -> None:
        students = consolidate(LEDGER, ASSIGNMENTS, section_ids=["SEC5B"])

        self.assertEqual(["003"], [student.lrn for student in students])

    def test_empty_scope_returns_no_students(self) -> None:
        self.assertEqual([], consolidate(LEDGER, ASSIGNMENTS, section_ids=[]))

    def test_ledger_only_subject_is_kept(self) -> None:
        ledger = LEDGER + [
            _ledger("001", "Dela Cruz, Juan", "Male", "SEC5A", "Music", "Q3", 95.0)
        ]

        students = {student.lrn: student for student in consolidate(ledger, ASSIGNMENTS)}

        self.assertEqual(95.0, students["001"].grades["Q3"]["Music"])
        self.assertIsNone(students["002"].grades["Q3"]["Music"])

    def test_section_subjects_order(self) -> None:
        subjects = section_subjects(LEDGER, ASSIGNMENTS)

        self.assertEqual(["Mathematics", "Science"], subjects["SEC5A"])
        self.assertEqual(["Filipino"], subjects["SEC5B"])

    def test_to_dict(self) -> None:
        student = consolidate(LEDGER, ASSIGNMENTS)[0]

        payload = student.to_dict()

        self.assertEqual("001", payload["lrn"])
        self.assertEqual("Matayaga", payload["section_name"])
        self.assertEqual(["Q1", "Q2", "Q3", "Q4"], list(payload["grades"]))


class SearchStudentsTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.students = consolidate(LEDGER, ASSIGNMENTS)

    def test_matches_name_case_insensitively(self) -> None:
        self.assertEqual(["002"], [s.lrn for s in search_students(self.students, "SANTOS")])

    def test_matches_lrn_and_sex(self) -> None:
        self.assertEqual(["003"], [s.lrn for s in search_students(self.students, "003")])
        self.assertEqual(
            ["002", "003"], [s.lrn for s in search_students(self.students, "female")]
        )

    def test_blank_query_keeps_everyone(self) -> None:
        self.assertEqual(3, len(search_students(self.students, "  ")))


if __name__ == "__main__":
    unittest.main()
