"""Consolidated grade views for administrators and advisers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from flask import Blueprint, current_app, jsonify, request
from pymongo.errors import PyMongoError

from ..aggregation import normalize_view, summarize, view_rows
from ..config import ConfigError
from ..consolidation import consolidate, search_students
from ..store import get_grade_store

consolidated_bp = Blueprint("consolidated", __name__, url_prefix="/api")

logger = logging.getLogger(__name__)


def _json_error(message: str, status: int, details: Dict[str, Any] | None = None):
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def _clean_string(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _store():
    return current_app.config.get("GRADE_STORE") or get_grade_store()


def _consolidated_payload(store, section_ids: List[str] | None):
    view = normalize_view(request.args.get("view"))
    if view is None:
        return _json_error("view must be one of: Q1, Q2, Q3, Q4, Combined.", 400)

    school_year_id = _clean_string(request.args.get("school_year_id"))
    if not school_year_id:
        active = store.get_active_school_year()
        school_year_id = active["_id"] if active else ""

    ledger = store.fetch_ledger(school_year_id or None)
    students = consolidate(ledger, store.fetch_assignments(), section_ids)
    students = search_students(students, request.args.get("q"))

    return jsonify(
        {
            "view": view,
            "school_year_id": school_year_id or None,
            "students": [student.to_dict() for student in students],
            "rows": view_rows(students, view),
            "summary": summarize(students, view),
        }
    )


@consolidated_bp.get("/grades/consolidated")
def consolidated_grades():
    section_ids = [
        cleaned
        for cleaned in (_clean_string(value) for value in request.args.getlist("section_id"))
        if cleaned
    ]

    try:
        return _consolidated_payload(_store(), section_ids or None)
    except ConfigError as exc:
        logger.exception("Missing configuration for MongoDB")
        return _json_error(str(exc), 500)
    except PyMongoError:
        logger.exception("Failed to consolidate grades due to MongoDB error")
        return _json_error("Database unavailable. Please try again later.", 503)


@consolidated_bp.get("/advisers/<adviser_id>/consolidated")
def adviser_consolidated_grades(adviser_id: str):
    adviser_id_clean = _clean_string(adviser_id)
    if not adviser_id_clean:
        return _json_error("Adviser ID is required.", 400)

    try:
        store = _store()
        section_ids = store.adviser_section_ids(adviser_id_clean)
        if not section_ids:
            return _json_error("No handled section found for this adviser.", 404)
        return _consolidated_payload(store, section_ids)
    except ConfigError as exc:
        logger.exception("Missing configuration for MongoDB")
        return _json_error(str(exc), 500)
    except PyMongoError:
        logger.exception("Failed to consolidate adviser grades due to MongoDB error")
        return _json_error("Database unavailable. Please try again later.", 503)


__all__ = ["consolidated_bp"]
