"""Grade upload pipeline: validate, skip duplicates, persist, summarize."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple

from pymongo.errors import PyMongoError

from .models import GradeCandidate, UploadRow, normalize_quarter
from .store import DuplicateGradeError, StoreError
from .validation import (
    DUPLICATE,
    ENROLLMENT_MISMATCH,
    INVALID_GRADE,
    MISSING_IDENTIFIER,
    PERSISTENCE_ERROR,
    UNKNOWN_STUDENT,
    RowFailure,
    RowValidator,
)

logger = logging.getLogger(__name__)

PARSING = "parsing"
VALIDATING = "validating"
DUPLICATE_CHECKING = "duplicate_checking"
PERSISTING = "persisting"
SUMMARIZING = "summarizing"
DONE = "done"

MESSAGE_LIST_LIMIT = 5
ERROR_LIST_LIMIT = 3


class UploadRejected(Exception):
    """Raised when an upload request cannot be processed at all."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


class UploadDeadlineExceeded(Exception):
    """Raised when the caller's deadline passes mid-pipeline.

    Rows persisted before the deadline stay committed; ``summary`` records
    exactly what was saved.
    """

    def __init__(self, stage: str, summary: "UploadSummary"):
        super().__init__(f"Upload aborted during {stage}")
        self.stage = stage
        self.summary = summary


@dataclass
class UploadRequest:
    rows: Sequence[UploadRow]
    subject_id: Any
    quarter: Any
    teacher_id: Any
    school_year_id: str | None = None
    section_id: str | None = None


@dataclass
class UploadSummary:
    subject_id: str | None = None
    subject_name: str | None = None
    quarter: str | None = None
    school_year_id: str | None = None
    total_rows: int = 0
    success_count: int = 0
    duplicate_count: int = 0
    missing_count: int = 0
    invalid_grade_count: int = 0
    unknown_student_count: int = 0
    enrollment_mismatch_count: int = 0
    error_count: int = 0
    duplicate_details: List[str] = field(default_factory=list)
    invalid_grade_details: List[str] = field(default_factory=list)
    invalid_student_details: List[str] = field(default_factory=list)
    error_details: List[str] = field(default_factory=list)
    inserted_ids: List[str] = field(default_factory=list)

    @property
    def invalid_student_count(self) -> int:
        return self.unknown_student_count + self.enrollment_mismatch_count

    @property
    def ok(self) -> bool:
        return self.success_count > 0

    def record_success(self, inserted_id: str) -> None:
        self.success_count += 1
        self.inserted_ids.append(inserted_id)

    def record_failure(self, failure: RowFailure) -> None:
        if failure.kind == MISSING_IDENTIFIER:
            self.missing_count += 1
        elif failure.kind == INVALID_GRADE:
            self.invalid_grade_count += 1
            self.invalid_grade_details.append(failure.detail)
        elif failure.kind == UNKNOWN_STUDENT:
            self.unknown_student_count += 1
            self.invalid_student_details.append(failure.detail)
        elif failure.kind == ENROLLMENT_MISMATCH:
            self.enrollment_mismatch_count += 1
            self.invalid_student_details.append(failure.detail)
        elif failure.kind == DUPLICATE:
            self.duplicate_count += 1
            self.duplicate_details.append(failure.lrn)
        elif failure.kind == PERSISTENCE_ERROR:
            self.error_count += 1
            self.error_details.append(failure.detail)
        else:
            raise ValueError(f"Unknown row failure kind: {failure.kind}")

    def to_dict(self, limit: int | None = None) -> Dict[str, Any]:
        """Serialize counters and detail samples, capping each list at ``limit``."""

        def capped(name: str, details: List[str]) -> List[str]:
            if limit is None or len(details) <= limit:
                return list(details)
            truncated[name] = len(details) - limit
            return details[:limit]

        truncated: Dict[str, int] = {}
        payload: Dict[str, Any] = {
            "successCount": self.success_count,
            "duplicateCount": self.duplicate_count,
            "missingCount": self.missing_count,
            "invalidGradeCount": self.invalid_grade_count,
            "invalidStudentCount": self.invalid_student_count,
            "unknownStudentCount": self.unknown_student_count,
            "enrollmentMismatchCount": self.enrollment_mismatch_count,
            "errorCount": self.error_count,
            "totalRows": self.total_rows,
            "duplicateDetails": capped("duplicateDetails", self.duplicate_details),
            "invalidGradeDetails": capped("invalidGradeDetails", self.invalid_grade_details),
            "invalidStudentDetails": capped("invalidStudentDetails", self.invalid_student_details),
            "errorDetails": capped("errorDetails", self.error_details),
        }
        payload["truncated"] = truncated
        return payload


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def _listed(details: Sequence[str], limit: int, separator: str = ", ") -> str:
    extra = "…" if len(details) > limit else ""
    return separator.join(details[:limit]) + extra


def build_summary_message(summary: UploadSummary) -> str:
    """Return the human-readable sentence for an upload summary."""

    messages: List[str] = []

    if summary.success_count:
        count = summary.success_count
        messages.append(
            f"{count} grade record{_plural(count, ' was', 's were')} uploaded successfully."
        )

    if summary.duplicate_count:
        count = summary.duplicate_count
        messages.append(
            f"{count} duplicate record{_plural(count, ' was', 's were')} skipped "
            f"({_listed(summary.duplicate_details, MESSAGE_LIST_LIMIT)})."
        )

    if summary.missing_count:
        count = summary.missing_count
        messages.append(
            f"{count} row{_plural(count, ' was', 's were')} skipped for missing LRN."
        )

    if summary.invalid_grade_count:
        count = summary.invalid_grade_count
        messages.append(
            f"{count} row{_plural(count, '', 's')} had invalid grades "
            f"({_listed(summary.invalid_grade_details, MESSAGE_LIST_LIMIT)})."
        )

    if summary.invalid_student_count:
        count = summary.invalid_student_count
        messages.append(
            f"{count} row{_plural(count, '', 's')} skipped "
            f"({_listed(summary.invalid_student_details, MESSAGE_LIST_LIMIT)})."
        )

    if summary.error_count:
        count = summary.error_count
        messages.append(
            f"{count} row{_plural(count, '', 's')} encountered an error "
            f"({_listed(summary.error_details, ERROR_LIST_LIMIT, '; ')})."
        )

    return " ".join(messages) or "No grades were saved"


class DuplicateDetector:
    """Pre-insert duplicate check against the ledger.

    This is an optimization only. A key repeated within one batch, or
    written by a concurrent upload, passes this check and is rejected by the
    ledger's unique index on insert instead.
    """

    def __init__(self, store) -> None:
        self.store = store

    def check(self, candidate: GradeCandidate) -> RowFailure | None:
        try:
            exists = self.store.grade_exists(candidate.key)
        except StoreError as exc:
            return RowFailure(
                PERSISTENCE_ERROR,
                candidate.lrn,
                f"{candidate.lrn} (error checking duplicate: {exc})",
            )
        if exists:
            return RowFailure(DUPLICATE, candidate.lrn)
        return None


class BatchPersister:
    """Insert accepted rows one by one; a failed row never stops the batch."""

    def __init__(self, store) -> None:
        self.store = store

    def persist_one(self, candidate: GradeCandidate) -> str | RowFailure:
        try:
            return self.store.insert_grade(candidate)
        except DuplicateGradeError:
            return RowFailure(DUPLICATE, candidate.lrn)
        except StoreError as exc:
            logger.warning("Failed to insert grade for LRN %s: %s", candidate.lrn, exc)
            return RowFailure(PERSISTENCE_ERROR, candidate.lrn, f"{candidate.lrn} ({exc})")

    def persist(
        self, candidates: Sequence[GradeCandidate]
    ) -> Iterator[Tuple[GradeCandidate, str | RowFailure]]:
        """Yield each candidate with its outcome as soon as it is written.

        Rows are inserted lazily, so a caller that stops iterating leaves the
        remaining candidates unwritten.
        """

        for candidate in candidates:
            yield candidate, self.persist_one(candidate)


def _clean_id(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class UploadOrchestrator:
    """Run one upload request through every stage and build its summary."""

    def __init__(
        self,
        store,
        *,
        audit: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.audit = audit
        self.clock = clock
        self.stage = PARSING

    def _enter(self, stage: str, summary: UploadSummary, deadline: float | None) -> None:
        if deadline is not None and self.clock() > deadline:
            raise UploadDeadlineExceeded(self.stage, summary)
        logger.debug("Upload stage %s -> %s", self.stage, stage)
        self.stage = stage

    def _check_deadline(self, summary: UploadSummary, deadline: float | None) -> None:
        if deadline is not None and self.clock() > deadline:
            raise UploadDeadlineExceeded(self.stage, summary)

    def _prepare(self, request: UploadRequest):
        subject_id = _clean_id(request.subject_id)
        if not subject_id:
            raise UploadRejected("Subject selection is required")

        teacher_id = _clean_id(request.teacher_id)
        if not teacher_id:
            raise UploadRejected("Unable to determine the teacher profile")

        quarter = normalize_quarter(request.quarter)
        if quarter is None:
            raise UploadRejected(
                "Invalid quarter selected. Please choose a quarter between 1 and 4."
            )

        if not request.rows:
            raise UploadRejected("No grade rows detected")

        assignments = self.store.find_teacher_assignments(
            subject_id, teacher_id, _clean_id(request.section_id)
        )
        if not assignments:
            raise UploadRejected("Teacher is not assigned to this subject", 403)

        school_year_id = _clean_id(request.school_year_id)
        if not school_year_id:
            school_year = self.store.get_active_school_year()
            if not school_year:
                raise UploadRejected("No active school year found")
            school_year_id = school_year["_id"]

        return assignments, teacher_id, quarter, school_year_id

    def run(self, request: UploadRequest, *, deadline: float | None = None) -> UploadSummary:
        self.stage = PARSING
        assignments, teacher_id, quarter, school_year_id = self._prepare(request)
        assignment = assignments[0]

        summary = UploadSummary(
            subject_id=assignment.subject_id,
            subject_name=assignment.subject_name,
            quarter=quarter,
            school_year_id=school_year_id,
            total_rows=len(request.rows),
        )

        self._enter(VALIDATING, summary, deadline)
        enrollments = self.store.find_enrollments(row.lrn for row in request.rows if row.lrn)
        validator = RowValidator(
            assignments,
            enrollments,
            quarter=quarter,
            school_year_id=school_year_id,
            teacher_id=teacher_id,
        )
        valid: List[GradeCandidate] = []
        for row in request.rows:
            outcome = validator.validate(row)
            if isinstance(outcome, RowFailure):
                summary.record_failure(outcome)
            else:
                valid.append(outcome)

        self._enter(DUPLICATE_CHECKING, summary, deadline)
        detector = DuplicateDetector(self.store)
        fresh: List[GradeCandidate] = []
        for candidate in valid:
            failure = detector.check(candidate)
            if failure is None:
                fresh.append(candidate)
            else:
                summary.record_failure(failure)

        self._enter(PERSISTING, summary, deadline)
        persister = BatchPersister(self.store)
        for _, outcome in persister.persist(fresh):
            if isinstance(outcome, RowFailure):
                summary.record_failure(outcome)
            else:
                summary.record_success(outcome)
            self._check_deadline(summary, deadline)

        self._enter(SUMMARIZING, summary, deadline)
        logger.info(
            "Grade upload for subject %s %s: %d rows, %d saved, %d duplicate, %d error",
            assignment.subject_id,
            quarter,
            summary.total_rows,
            summary.success_count,
            summary.duplicate_count,
            summary.error_count,
        )
        if self.audit:
            self._record_audit(request, teacher_id, summary)

        self.stage = DONE
        return summary

    def _record_audit(
        self, request: UploadRequest, teacher_id: str, summary: UploadSummary
    ) -> None:
        total_students = len({row.lrn for row in request.rows if row.lrn})
        try:
            self.store.record_audit(
                teacher_id,
                f"Upload grades for subject {summary.subject_name}, quarter {summary.quarter}",
                f"Students: {total_students}, Success: {summary.success_count}, "
                f"Duplicates: {summary.duplicate_count}, Errors: {summary.error_count}",
            )
        except (PyMongoError, StoreError):
            logger.exception("Failed to write audit record for grade upload")


__all__ = [
    "PARSING",
    "VALIDATING",
    "DUPLICATE_CHECKING",
    "PERSISTING",
    "SUMMARIZING",
    "DONE",
    "UploadRejected",
    "UploadDeadlineExceeded",
    "UploadRequest",
    "UploadSummary",
    "build_summary_message",
    "DuplicateDetector",
    "BatchPersister",
    "UploadOrchestrator",
]
