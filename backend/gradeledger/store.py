"""Record-oriented access to the grade ledger and its reference data.

Reads that fail with a MongoDB error propagate ``PyMongoError`` so the HTTP
layer can answer 503. The two per-row calls used by the upload pipeline
(:meth:`MongoGradeStore.grade_exists` and :meth:`MongoGradeStore.insert_grade`)
raise :class:`StoreError` instead, which the pipeline turns into row outcomes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from .db import ensure_indexes, get_db
from .models import (
    EnrollmentRecord,
    GradeCandidate,
    GradeKey,
    LedgerRow,
    SubjectAssignment,
    format_student_name,
)

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when a single ledger read or write fails."""


class DuplicateGradeError(StoreError):
    """Raised when the ledger's unique index rejects an insert."""


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _key_filter(key: GradeKey) -> Dict[str, Any]:
    return {
        "lrn": key.lrn,
        "subject_id": key.subject_id,
        "quarter": key.quarter,
        "school_year_id": key.school_year_id,
    }


def _lookup(source: str, local_field: str, alias: str) -> List[Dict[str, Any]]:
    return [
        {
            "$lookup": {
                "from": source,
                "localField": local_field,
                "foreignField": "_id",
                "as": alias,
            }
        },
        {"$unwind": {"path": f"${alias}", "preserveNullAndEmptyArrays": True}},
    ]


_STUDENT_NAME_FIELDS = {
    "first_name": "$student.first_name",
    "middle_name": "$student.middle_name",
    "last_name": "$student.last_name",
    "suffix": "$student.suffix",
}


class MongoGradeStore:
    """Grade ledger operations over a pymongo ``Database``."""

    def __init__(self, database: Database) -> None:
        self.database = database

    @property
    def grades(self):
        return self.database["grades"]

    @property
    def students(self):
        return self.database["students"]

    @property
    def sections(self):
        return self.database["sections"]

    @property
    def assignments(self):
        return self.database["subject_assignments"]

    @property
    def school_years(self):
        return self.database["school_years"]

    @property
    def audits(self):
        return self.database["audits"]

    # Reference data ---------------------------------------------------------

    def find_enrollments(self, lrns: Iterable[str]) -> Dict[str, EnrollmentRecord]:
        """Return enrollment records for every known LRN in two queries."""

        unique_lrns = sorted({lrn for lrn in lrns if lrn})
        if not unique_lrns:
            return {}

        students = list(self.students.find({"_id": {"$in": unique_lrns}}))
        section_ids = sorted({doc["section_id"] for doc in students if doc.get("section_id")})
        sections = {
            doc["_id"]: doc
            for doc in self.sections.find({"_id": {"$in": section_ids}})
        } if section_ids else {}

        enrollments: Dict[str, EnrollmentRecord] = {}
        for doc in students:
            section = sections.get(doc.get("section_id"), {})
            lrn = str(doc["_id"])
            enrollments[lrn] = EnrollmentRecord(
                lrn=lrn,
                name=format_student_name(doc),
                sex=_clean(doc.get("sex")),
                grade_level=_clean(section.get("grade_level")),
                section_id=_clean(doc.get("section_id")),
                section_name=_clean(section.get("section_name")),
            )
        return enrollments

    def _assignment_pipeline(self, match: Dict[str, Any]) -> List[Dict[str, Any]]:
        pipeline: List[Dict[str, Any]] = []
        if match:
            pipeline.append({"$match": match})
        pipeline.extend(_lookup("subjects", "subject_id", "subject"))
        pipeline.extend(_lookup("sections", "section_id", "section"))
        pipeline.extend(
            [
                {
                    "$project": {
                        "_id": 0,
                        "subject_id": 1,
                        "teacher_id": 1,
                        "section_id": 1,
                        "subject_name": {"$ifNull": ["$subject.subject_name", "$subject_id"]},
                        "grade_level": {"$ifNull": ["$grade_level", "$section.grade_level"]},
                        "section_name": "$section.section_name",
                    }
                },
                {"$sort": {"subject_name": ASCENDING, "subject_id": ASCENDING}},
            ]
        )
        return pipeline

    @staticmethod
    def _to_assignment(doc: Dict[str, Any]) -> SubjectAssignment:
        return SubjectAssignment(
            subject_id=str(doc.get("subject_id")),
            subject_name=str(doc.get("subject_name")),
            teacher_id=_clean(doc.get("teacher_id")),
            grade_level=_clean(doc.get("grade_level")),
            section_id=_clean(doc.get("section_id")),
            section_name=_clean(doc.get("section_name")),
        )

    def find_teacher_assignments(
        self, subject_id: str, teacher_id: str, section_id: str | None = None
    ) -> List[SubjectAssignment]:
        """Return the sections where ``teacher_id`` teaches ``subject_id``."""

        match = {"subject_id": subject_id, "teacher_id": teacher_id}
        if section_id:
            match["section_id"] = section_id
        return [
            self._to_assignment(doc)
            for doc in self.assignments.aggregate(self._assignment_pipeline(match))
        ]

    def fetch_assignments(self) -> List[SubjectAssignment]:
        return [self._to_assignment(doc) for doc in self.assignments.aggregate(self._assignment_pipeline({}))]

    def get_active_school_year(self) -> Dict[str, Any] | None:
        doc = self.school_years.find_one({"status": "Active"})
        if not doc:
            return None
        return {"_id": str(doc["_id"]), "school_year": doc.get("school_year")}

    def adviser_section_ids(self, adviser_id: str) -> List[str]:
        cursor = self.sections.find({"adviser_id": adviser_id}, projection={"_id": 1})
        return [str(doc["_id"]) for doc in cursor]

    # Ledger -----------------------------------------------------------------

    def grade_exists(self, key: GradeKey) -> bool:
        try:
            return self.grades.find_one(_key_filter(key), projection={"_id": 1}) is not None
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def insert_grade(self, candidate: GradeCandidate) -> str:
        document = _key_filter(candidate.key)
        document.update(
            {
                "teacher_id": candidate.teacher_id,
                "grade": candidate.grade,
                "created_at": datetime.now(timezone.utc),
            }
        )
        try:
            result = self.grades.insert_one(document)
        except DuplicateKeyError as exc:
            raise DuplicateGradeError(str(exc)) from exc
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return str(result.inserted_id)

    def fetch_ledger(self, school_year_id: str | None = None) -> List[LedgerRow]:
        """Read every grade joined with its student, section and subject."""

        pipeline: List[Dict[str, Any]] = []
        if school_year_id:
            pipeline.append({"$match": {"school_year_id": school_year_id}})
        pipeline.append({"$sort": {"_id": ASCENDING}})
        pipeline.extend(_lookup("students", "lrn", "student"))
        pipeline.extend(_lookup("sections", "student.section_id", "section"))
        pipeline.extend(_lookup("subjects", "subject_id", "subject"))
        pipeline.append(
            {
                "$project": {
                    "_id": 0,
                    "lrn": 1,
                    "quarter": 1,
                    "grade": 1,
                    "sex": "$student.sex",
                    "section_id": "$student.section_id",
                    "section_name": "$section.section_name",
                    "subject_name": {"$ifNull": ["$subject.subject_name", "$subject_id"]},
                    **_STUDENT_NAME_FIELDS,
                }
            }
        )

        rows: List[LedgerRow] = []
        for doc in self.grades.aggregate(pipeline):
            grade = doc.get("grade")
            rows.append(
                LedgerRow(
                    lrn=str(doc.get("lrn")),
                    name=format_student_name(doc),
                    sex=_clean(doc.get("sex")),
                    section_id=_clean(doc.get("section_id")),
                    section_name=_clean(doc.get("section_name")),
                    subject_name=str(doc.get("subject_name")),
                    quarter=str(doc.get("quarter")),
                    grade=float(grade) if grade is not None else None,
                )
            )
        return rows

    def list_teacher_uploads(
        self,
        teacher_id: str,
        *,
        page: int,
        page_size: int,
        sort: Tuple[str, int] = ("created_at", DESCENDING),
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return one page of a teacher's uploaded grades and the total count."""

        match = {"teacher_id": teacher_id}
        total = self.grades.count_documents(match)

        pipeline: List[Dict[str, Any]] = [
            {"$match": match},
            {"$sort": {sort[0]: sort[1], "_id": sort[1]}},
            {"$skip": (page - 1) * page_size},
            {"$limit": page_size},
        ]
        pipeline.extend(_lookup("students", "lrn", "student"))
        pipeline.extend(_lookup("sections", "student.section_id", "section"))
        pipeline.extend(_lookup("subjects", "subject_id", "subject"))
        pipeline.extend(_lookup("school_years", "school_year_id", "school_year"))

        items = []
        for doc in self.grades.aggregate(pipeline):
            student = doc.get("student") or {}
            section = doc.get("section") or {}
            doc["student_name"] = format_student_name(student)
            doc["subject_name"] = (doc.get("subject") or {}).get("subject_name")
            doc["grade_level"] = section.get("grade_level")
            doc["section_name"] = section.get("section_name")
            doc["school_year"] = (doc.get("school_year") or {}).get("school_year")
            items.append(doc)
        return items, total

    # Side effects -----------------------------------------------------------

    def record_audit(self, user_id: str, action: str, remarks: str) -> None:
        self.audits.insert_one(
            {
                "user_id": user_id,
                "action": action,
                "remarks": remarks,
                "date": datetime.now(timezone.utc),
            }
        )


def get_grade_store() -> MongoGradeStore:
    """Return a store bound to the configured database with indexes ensured."""

    ensure_indexes()
    return MongoGradeStore(get_db())


__all__ = [
    "StoreError",
    "DuplicateGradeError",
    "MongoGradeStore",
    "get_grade_store",
]
