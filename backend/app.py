from __future__ import annotations

import logging
from typing import Any, Dict

from flask import Flask, jsonify

from gradeledger import config
from gradeledger.config import ConfigError
from gradeledger.routes import consolidated_bp, grades_bp

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    try:
        level = config.get_log_level()
    except ConfigError:
        level = config.DEFAULT_LOG_LEVEL
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _max_upload_bytes() -> int:
    try:
        return config.get_max_upload_bytes()
    except ConfigError:
        logger.exception("Invalid MAX_UPLOAD_MB; using the default limit")
        return config.DEFAULT_MAX_UPLOAD_MB * 1024 * 1024


_configure_logging()

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = _max_upload_bytes()

app.register_blueprint(grades_bp)
app.register_blueprint(consolidated_bp)


def _json_error(message: str, status: int, details: Dict[str, Any] | None = None):
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


@app.errorhandler(413)
def upload_too_large(_exc):
    limit_mb = app.config["MAX_CONTENT_LENGTH"] // (1024 * 1024)
    return _json_error(f"Upload exceeds the {limit_mb} MB limit.", 413)


@app.get("/api/health")
def health():
    return jsonify({"ok": True})


if __name__ == "__main__":
    app.run(debug=True)
