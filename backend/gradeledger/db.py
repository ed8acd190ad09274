"""MongoDB helpers for the application."""

from pymongo import ASCENDING, DESCENDING, IndexModel, MongoClient
from pymongo.collection import Collection

from .config import get_db_name, get_mongo_uri

_MONGO_CLIENT = None
_MONGO_DB = None

GRADE_IDENTITY_INDEX = "unique_grade_identity"


def _get_client():
    """Create (or reuse) a MongoDB client using the configured URI."""

    global _MONGO_CLIENT

    if _MONGO_CLIENT is None:
        _MONGO_CLIENT = MongoClient(get_mongo_uri(), serverSelectionTimeoutMS=5000)
    return _MONGO_CLIENT


def get_db():
    """Return the application's MongoDB database instance."""

    global _MONGO_DB

    if _MONGO_DB is None:
        _MONGO_DB = _get_client()[get_db_name()]
    return _MONGO_DB


_grades_indexes_created = False
_students_indexes_created = False
_sections_indexes_created = False
_assignments_indexes_created = False


def _ensure_grades_indexes(collection: Collection) -> None:
    global _grades_indexes_created
    if _grades_indexes_created:
        return

    indexes = [
        # The ledger's uniqueness invariant lives here, not in application code.
        IndexModel(
            [
                ("lrn", ASCENDING),
                ("subject_id", ASCENDING),
                ("quarter", ASCENDING),
                ("school_year_id", ASCENDING),
            ],
            name=GRADE_IDENTITY_INDEX,
            unique=True,
        ),
        IndexModel(
            [("teacher_id", ASCENDING), ("created_at", DESCENDING)],
            name="teacher_created",
            background=True,
        ),
    ]
    collection.create_indexes(indexes)
    _grades_indexes_created = True


def get_grades_collection() -> Collection:
    """Return the grade ledger collection with its uniqueness index ensured."""

    collection = get_db()["grades"]
    _ensure_grades_indexes(collection)
    return collection


def _ensure_students_indexes(collection: Collection) -> None:
    global _students_indexes_created
    if _students_indexes_created:
        return

    collection.create_index(
        [("section_id", ASCENDING)],
        name="section_id_idx",
        background=True,
    )
    _students_indexes_created = True


def get_students_collection() -> Collection:
    """Return the students collection; documents are keyed by LRN."""

    collection = get_db()["students"]
    _ensure_students_indexes(collection)
    return collection


def _ensure_sections_indexes(collection: Collection) -> None:
    global _sections_indexes_created
    if _sections_indexes_created:
        return

    collection.create_index(
        [("adviser_id", ASCENDING)],
        name="adviser_id_idx",
        background=True,
    )
    _sections_indexes_created = True


def get_sections_collection() -> Collection:
    collection = get_db()["sections"]
    _ensure_sections_indexes(collection)
    return collection


def _ensure_assignments_indexes(collection: Collection) -> None:
    global _assignments_indexes_created
    if _assignments_indexes_created:
        return

    indexes = [
        IndexModel(
            [("subject_id", ASCENDING), ("section_id", ASCENDING)],
            name="unique_subject_section",
            unique=True,
        ),
        IndexModel(
            [("teacher_id", ASCENDING), ("subject_id", ASCENDING)],
            name="teacher_subject",
            background=True,
        ),
    ]
    collection.create_indexes(indexes)
    _assignments_indexes_created = True


def get_assignments_collection() -> Collection:
    """Return the subject assignments (subject, section, teacher) collection."""

    collection = get_db()["subject_assignments"]
    _ensure_assignments_indexes(collection)
    return collection


def ensure_indexes() -> None:
    """Create every index the application relies on."""

    get_grades_collection()
    get_students_collection()
    get_sections_collection()
    get_assignments_collection()


def serialize_grade_upload(document):
    """Serialize a joined grade ledger document for the uploads listing."""

    grade = document.get("grade")
    try:
        grade_value = int(grade) if grade is not None else None
    except (TypeError, ValueError):
        grade_value = None

    created_at = document.get("created_at")

    return {
        "id": str(document.get("_id", "")),
        "lrn": document.get("lrn"),
        "student_name": document.get("student_name"),
        "subject": document.get("subject_name"),
        "grade_level": document.get("grade_level"),
        "section_name": document.get("section_name"),
        "school_year": document.get("school_year"),
        "quarter": document.get("quarter"),
        "grade": grade_value,
        "uploaded_date": created_at.isoformat() if created_at else None,
    }


__all__ = [
    "GRADE_IDENTITY_INDEX",
    "get_db",
    "get_grades_collection",
    "get_students_collection",
    "get_sections_collection",
    "get_assignments_collection",
    "ensure_indexes",
    "serialize_grade_upload",
]
