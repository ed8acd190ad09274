"""Grade upload endpoints for subject teachers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Tuple

from flask import Blueprint, Response, current_app, jsonify, request
from pymongo.errors import PyMongoError

from ..config import ConfigError, get_detail_limit
from ..db import serialize_grade_upload
from ..models import UploadRow
from ..parser import (
    GRADE_COLUMN,
    LRN_COLUMN,
    MissingColumnsError,
    UnsupportedFileError,
    build_template,
    parse_records,
    parse_upload,
)
from ..store import get_grade_store
from ..upload import (
    UploadOrchestrator,
    UploadRejected,
    UploadRequest,
    build_summary_message,
)
from ..utils.paging import PagingParamError, parse_paging_params

grades_bp = Blueprint("grades", __name__, url_prefix="/api/grades")

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

UPLOAD_SORT_FIELDS = {
    "created_at": "created_at",
    "lrn": "lrn",
    "grade": "grade",
    "quarter": "quarter",
}


def _json_error(message: str, status: int, details: Dict[str, Any] | None = None):
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def _clean_string(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _store():
    return current_app.config.get("GRADE_STORE") or get_grade_store()


def _read_upload_request() -> Tuple[List[UploadRow], Mapping[str, Any]]:
    """Return parsed rows and the form fields of an upload or preview request.

    JSON bodies carry already-decoded rows under ``grades``; multipart bodies
    carry a spreadsheet under ``file``.
    """

    if request.is_json:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise UploadRejected("Request body must be a JSON object.")
        grades = payload.get("grades")
        if not isinstance(grades, list) or not grades:
            raise UploadRejected("No grade rows detected")
        return parse_records(grades), payload

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise UploadRejected("No file provided")
    return parse_upload(upload.filename, upload.read()), request.form


@grades_bp.post("/upload")
def upload_grades():
    try:
        rows, fields = _read_upload_request()
    except MissingColumnsError as exc:
        return _json_error(str(exc), 400, {"missing": exc.missing})
    except UnsupportedFileError as exc:
        return _json_error(str(exc), 400)
    except UploadRejected as exc:
        return jsonify({"success": False, "message": exc.message}), exc.status

    upload_request = UploadRequest(
        rows=rows,
        subject_id=fields.get("subject_id"),
        quarter=fields.get("quarter"),
        teacher_id=fields.get("teacher_id"),
        school_year_id=fields.get("school_year_id"),
        section_id=fields.get("section_id"),
    )

    try:
        detail_limit = get_detail_limit()
        summary = UploadOrchestrator(_store()).run(upload_request)
    except UploadRejected as exc:
        return jsonify({"success": False, "message": exc.message}), exc.status
    except ConfigError as exc:
        logger.exception("Missing configuration for grade upload")
        return _json_error(str(exc), 500)
    except PyMongoError:
        logger.exception("Failed to upload grades due to MongoDB error")
        return _json_error("Database unavailable. Please try again later.", 503)

    payload = {
        "success": summary.ok,
        "message": build_summary_message(summary),
        "results": summary.to_dict(limit=detail_limit),
    }
    return jsonify(payload), 200 if summary.ok else 400


@grades_bp.post("/preview")
def preview_grades():
    """Echo parsed rows with each student's resolved name; nothing is saved."""

    try:
        rows, _ = _read_upload_request()
    except MissingColumnsError as exc:
        return _json_error(str(exc), 400, {"missing": exc.missing})
    except UnsupportedFileError as exc:
        return _json_error(str(exc), 400)
    except UploadRejected as exc:
        return _json_error(exc.message, exc.status)

    try:
        enrollments = _store().find_enrollments(row.lrn for row in rows if row.lrn)
    except ConfigError as exc:
        logger.exception("Missing configuration for MongoDB")
        return _json_error(str(exc), 500)
    except PyMongoError:
        logger.exception("Failed to preview grades due to MongoDB error")
        return _json_error("Database unavailable. Please try again later.", 503)

    preview = []
    unknown: List[str] = []
    for row in rows:
        student = enrollments.get(row.lrn) if row.lrn else None
        if row.lrn and student is None and row.lrn not in unknown:
            unknown.append(row.lrn)
        preview.append(
            {
                **row.extras,
                "row": row.row_number,
                LRN_COLUMN: row.lrn,
                "Name": student.name if student else None,
                GRADE_COLUMN: row.raw_grade,
            }
        )

    return jsonify({"rows": preview, "unknown": unknown, "totalRows": len(preview)})


@grades_bp.get("/template")
def download_template():
    response = Response(build_template(), mimetype=XLSX_MIMETYPE)
    response.headers["Content-Disposition"] = (
        "attachment; filename=Upload_Grades_Template.xlsx"
    )
    return response


@grades_bp.get("")
def list_uploaded_grades():
    teacher_id = _clean_string(request.args.get("teacher_id"))
    if not teacher_id:
        return _json_error("teacher_id is required.", 400)

    try:
        paging = parse_paging_params(
            request.args,
            allowed_sort_fields=UPLOAD_SORT_FIELDS,
            default_sort="-created_at",
        )
    except PagingParamError as exc:
        return _json_error(str(exc), 400)

    try:
        items, total = _store().list_teacher_uploads(
            teacher_id,
            page=paging.page,
            page_size=paging.page_size,
            sort=paging.sort,
        )
    except ConfigError as exc:
        logger.exception("Missing configuration for MongoDB")
        return _json_error(str(exc), 500)
    except PyMongoError:
        logger.exception("Failed to list uploaded grades due to MongoDB error")
        return _json_error("Database unavailable. Please try again later.", 503)

    return jsonify(
        {
            "success": True,
            "grades": [serialize_grade_upload(item) for item in items],
            "totalCount": total,
            "paging": paging.meta(total),
        }
    )


__all__ = ["grades_bp"]
