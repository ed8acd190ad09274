"""Pagination and sorting for grade listing endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

from pymongo import ASCENDING, DESCENDING


class PagingParamError(ValueError):
    """Raised when pagination or sort query parameters are invalid."""


@dataclass
class PagingParams:
    page: int
    page_size: int
    sort: Tuple[str, int]
    normalized_sort: str

    def meta(self, total: int) -> Dict[str, Any]:
        """Describe this page of ``total`` items for a JSON response."""

        pages = (total + self.page_size - 1) // self.page_size if total else 0
        return {
            "page": self.page,
            "page_size": self.page_size,
            "total": total,
            "pages": pages,
            "sort": self.normalized_sort,
        }


def _parse_int_arg(
    raw_value: str | None,
    *,
    name: str,
    default: int,
    minimum: int,
    maximum: int | None = None,
) -> int:
    if raw_value in (None, ""):
        return default

    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        raise PagingParamError(f"{name} must be an integer.") from None

    if value < minimum:
        raise PagingParamError(f"{name} must be ≥ {minimum}.")
    if maximum is not None and value > maximum:
        raise PagingParamError(f"{name} must be ≤ {maximum}.")
    return value


def _parse_sort_arg(
    raw_sort: str | None,
    *,
    allowed_fields: Mapping[str, str],
    default_sort: str,
) -> Tuple[Tuple[str, int], str]:
    sort_value = (raw_sort or "").strip() or default_sort
    descending = sort_value.startswith("-")
    field_key = sort_value.lstrip("-")

    if field_key not in allowed_fields:
        options = [
            option
            for field in sorted(allowed_fields)
            for option in (field, f"-{field}")
        ]
        raise PagingParamError("sort must be one of: " + ", ".join(options) + ".")

    direction = DESCENDING if descending else ASCENDING
    normalized = f"-{field_key}" if descending else field_key
    return (allowed_fields[field_key], direction), normalized


def parse_paging_params(
    args: Mapping[str, str],
    *,
    default_page_size: int = 25,
    max_page_size: int = 200,
    allowed_sort_fields: Mapping[str, str],
    default_sort: str,
) -> PagingParams:
    """Parse ``page``, ``page_size`` and ``sort`` from request args."""

    page = _parse_int_arg(args.get("page"), name="page", default=1, minimum=1)
    page_size = _parse_int_arg(
        args.get("page_size"),
        name="page_size",
        default=default_page_size,
        minimum=1,
        maximum=max_page_size,
    )
    sort, normalized_sort = _parse_sort_arg(
        args.get("sort"),
        allowed_fields=allowed_sort_fields,
        default_sort=default_sort,
    )
    return PagingParams(
        page=page,
        page_size=page_size,
        sort=sort,
        normalized_sort=normalized_sort,
    )


__all__ = ["PagingParamError", "PagingParams", "parse_paging_params"]
