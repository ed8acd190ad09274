"""Query-string pagination and sorting."""

from __future__ import annotations

import sys
import unittest
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from pymongo import ASCENDING, DESCENDING

from gradeledger.utils.paging import PagingParamError, parse_paging_params

SORT_FIELDS = {"created_at": "created_at", "grade": "grade"}


def _parse(args):
    return parse_paging_params(args, allowed_sort_fields=SORT_FIELDS, default_sort="-created_at")


class PagingParamsTestCase(unittest.TestCase):
    def test_defaults(self) -> None:
        paging = _parse({})

        self.assertEqual(1, paging.page)
        self.assertEqual(25, paging.page_size)
        self.assertEqual(("created_at", DESCENDING), paging.sort)
        self.assertEqual("-created_at", paging.normalized_sort)

    def test_explicit_values(self) -> None:
        paging = _parse({"page": "3", "page_size": "10", "sort": "grade"})

        self.assertEqual(3, paging.page)
        self.assertEqual(("grade", ASCENDING), paging.sort)

    def test_meta(self) -> None:
        paging = _parse({"page_size": "10"})

        self.assertEqual(
            {"page": 1, "page_size": 10, "total": 21, "pages": 3, "sort": "-created_at"},
            paging.meta(21),
        )
        self.assertEqual(0, paging.meta(0)["pages"])

    def test_invalid_values(self) -> None:
        for args in ({"page": "0"}, {"page": "x"}, {"page_size": "500"}, {"sort": "name"}):
            with self.subTest(args=args):
                with self.assertRaises(PagingParamError):
                    _parse(args)


if __name__ == "__main__":
    unittest.main()
