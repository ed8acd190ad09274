"""Application configuration helpers."""

import os

from dotenv import load_dotenv

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_DOTENV_PATH = os.path.join(_BASE_DIR, ".env")

if os.path.exists(_DOTENV_PATH):
    load_dotenv(_DOTENV_PATH)


class ConfigError(RuntimeError):
    """Raised when configuration values are missing or invalid."""


_MONGO_URI_CACHE = None
_DB_NAME_CACHE = None

DEFAULT_DETAIL_LIMIT = 5
DEFAULT_MAX_UPLOAD_MB = 5
DEFAULT_LOG_LEVEL = "INFO"


def get_mongo_uri():
    """Return the MongoDB connection string from the environment."""

    global _MONGO_URI_CACHE

    if _MONGO_URI_CACHE:
        return _MONGO_URI_CACHE

    uri = os.getenv("MONGODB_URI")
    if not uri:
        raise ConfigError("MONGODB_URI is not set. Define it in backend/.env.")

    _MONGO_URI_CACHE = uri
    return uri


def get_db_name():
    """Return the database name derived from the MongoDB URI or env var."""

    global _DB_NAME_CACHE

    if _DB_NAME_CACHE:
        return _DB_NAME_CACHE

    db_name = os.getenv("MONGODB_DB")
    if db_name:
        _DB_NAME_CACHE = db_name
        return db_name

    uri = get_mongo_uri()
    main = uri.split("?", 1)[0].rstrip("/")
    after_scheme = main.split("://", 1)[1] if "://" in main else main

    if "/" not in after_scheme or not after_scheme.split("/", 1)[1]:
        raise ConfigError(
            "Database name not found. Provide it via MONGODB_URI or MONGODB_DB."
        )

    _DB_NAME_CACHE = after_scheme.split("/", 1)[1]
    return _DB_NAME_CACHE


def _get_positive_int(name, default):
    raw_value = os.getenv(name)
    if raw_value in (None, ""):
        return default
    try:
        value = int(raw_value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer.") from None
    if value <= 0:
        raise ConfigError(f"{name} must be a positive integer.")
    return value


def get_detail_limit():
    """Return how many sample identifiers an upload summary lists per category."""

    return _get_positive_int("GRADES_DETAIL_LIMIT", DEFAULT_DETAIL_LIMIT)


def get_max_upload_bytes():
    """Return the largest accepted upload body, in bytes."""

    return _get_positive_int("MAX_UPLOAD_MB", DEFAULT_MAX_UPLOAD_MB) * 1024 * 1024


def get_log_level():
    level = (os.getenv("LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigError(f"LOG_LEVEL {level!r} is not a valid logging level.")
    return level


__all__ = [
    "ConfigError",
    "get_mongo_uri",
    "get_db_name",
    "get_detail_limit",
    "get_max_upload_bytes",
    "get_log_level",
]
