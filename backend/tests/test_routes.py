"""HTTP behaviour of the grade upload and consolidated endpoints."""

from __future__ import annotations

import io
import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

BACKEND_DIR = Path(__file__).resolve().parents[1]
ROOT_DIR = BACKEND_DIR.parent
for path in (BACKEND_DIR, ROOT_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from pymongo.errors import ServerSelectionTimeoutError

from backend.app import app
from fakes import ACTIVE_YEAR, build_school
from gradeledger.models import GradeKey


class RouteTestCase(unittest.TestCase):
    def setUp(self) -> None:
        app.config["TESTING"] = True
        self.store = build_school()
        app.config["GRADE_STORE"] = self.store
        self.client = app.test_client()

    def tearDown(self) -> None:
        app.config.pop("GRADE_STORE", None)


class UploadRouteTestCase(RouteTestCase):
    def _upload_json(self, grades, **fields):
        body = {"subject_id": "MATH5", "quarter": 1, "teacher_id": "T1", "grades": grades}
        body.update(fields)
        return self.client.post("/api/grades/upload", json=body)

    def test_json_upload_with_mixed_rows(self) -> None:
        response = self._upload_json(
            [
                {"LRN": "001", "Grade": 85},
                {"LRN": "002", "Grade": "abc"},
                {"LRN": "999", "Grade": 90},
            ]
        )

        self.assertEqual(200, response.status_code)
        payload = response.get_json()
        self.assertTrue(payload["success"])
        self.assertEqual(
            "1 grade record was uploaded successfully. "
            "1 row had invalid grades (002 (invalid grade value: abc)). "
            "1 row skipped (Student with LRN 999 is not enrolled).",
            payload["message"],
        )
        self.assertEqual(1, payload["results"]["successCount"])
        self.assertEqual(1, payload["results"]["invalidGradeCount"])
        self.assertEqual(1, payload["results"]["invalidStudentCount"])
        self.assertEqual(3, payload["results"]["totalRows"])

    def test_reupload_reports_duplicates_with_400(self) -> None:
        grades = [{"LRN": "001", "Grade": 85}]
        self._upload_json(grades)

        response = self._upload_json(grades)

        self.assertEqual(400, response.status_code)
        payload = response.get_json()
        self.assertFalse(payload["success"])
        self.assertEqual(1, payload["results"]["duplicateCount"])
        self.assertEqual(["001"], payload["results"]["duplicateDetails"])
        self.assertEqual(1, len(self.store.grades))

    def test_multipart_csv_upload(self) -> None:
        response = self.client.post(
            "/api/grades/upload",
            data={
                "file": (io.BytesIO(b"LRN,Grade\n001,91\n002,89\n"), "grades.csv"),
                "subject_id": "MATH5",
                "quarter": "Q2",
                "teacher_id": "T1",
            },
            content_type="multipart/form-data",
        )

        self.assertEqual(200, response.status_code)
        self.assertEqual(2, response.get_json()["results"]["successCount"])
        self.assertEqual(
            91, self.store.grades[GradeKey("001", "MATH5", "Q2", ACTIVE_YEAR)]["grade"]
        )

    def test_missing_columns(self) -> None:
        response = self._upload_json([{"LRN": "001"}])

        self.assertEqual(400, response.status_code)
        payload = response.get_json()
        self.assertEqual(
            "The uploaded file is missing the following required columns: Grade",
            payload["error"],
        )
        self.assertEqual({"missing": ["Grade"]}, payload["details"])

    def test_missing_file(self) -> None:
        response = self.client.post(
            "/api/grades/upload",
            data={"subject_id": "MATH5", "quarter": "1", "teacher_id": "T1"},
            content_type="multipart/form-data",
        )

        self.assertEqual(400, response.status_code)
        self.assertEqual({"success": False, "message": "No file provided"}, response.get_json())

    def test_teacher_must_be_assigned(self) -> None:
        response = self._upload_json([{"LRN": "001", "Grade": 85}], teacher_id="T2")

        self.assertEqual(403, response.status_code)
        self.assertEqual("Teacher is not assigned to this subject", response.get_json()["message"])
        self.assertEqual({}, self.store.grades)

    def test_upload_too_large(self) -> None:
        original = app.config["MAX_CONTENT_LENGTH"]
        app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024
        try:
            response = self.client.post(
                "/api/grades/upload",
                data={"file": (io.BytesIO(b"x" * (2 * 1024 * 1024)), "grades.csv")},
                content_type="multipart/form-data",
            )
        finally:
            app.config["MAX_CONTENT_LENGTH"] = original

        self.assertEqual(413, response.status_code)
        self.assertEqual({"error": "Upload exceeds the 1 MB limit."}, response.get_json())


class PreviewAndTemplateTestCase(RouteTestCase):
    def test_preview_resolves_names(self) -> None:
        response = self.client.post(
            "/api/grades/preview",
            json={"grades": [{"LRN": "001", "Grade": 85}, {"LRN": "999", "Grade": "x"}]},
        )

        self.assertEqual(200, response.status_code)
        payload = response.get_json()
        self.assertEqual("Dela Cruz, Juan", payload["rows"][0]["Name"])
        self.assertIsNone(payload["rows"][1]["Name"])
        self.assertEqual("x", payload["rows"][1]["Grade"])
        self.assertEqual(["999"], payload["unknown"])
        self.assertEqual({}, self.store.grades)

    def test_preview_fields_win_over_sheet_columns(self) -> None:
        response = self.client.post(
            "/api/grades/preview",
            json={"grades": [{"LRN": "001", "Name": "Typo Name", "Grade": 85, "row": 99}]},
        )

        row = response.get_json()["rows"][0]
        self.assertEqual("Dela Cruz, Juan", row["Name"])
        self.assertEqual(1, row["row"])

    def test_template_download(self) -> None:
        response = self.client.get("/api/grades/template")

        self.assertEqual(200, response.status_code)
        self.assertIn("Upload_Grades_Template.xlsx", response.headers["Content-Disposition"])
        self.assertTrue(response.data.startswith(b"PK"))


class UploadListingTestCase(RouteTestCase):
    def test_teacher_id_required(self) -> None:
        response = self.client.get("/api/grades")

        self.assertEqual(400, response.status_code)

    def test_lists_teacher_uploads(self) -> None:
        self.store.add_grade("001", "MATH5", "Q1", 85, teacher_id="T1")
        self.store.add_grade("002", "MATH5", "Q1", 90, teacher_id="T1")
        self.store.add_grade("003", "FIL5B", "Q1", 88, teacher_id="T2")

        response = self.client.get("/api/grades?teacher_id=T1&page_size=1")

        self.assertEqual(200, response.status_code)
        payload = response.get_json()
        self.assertEqual(2, payload["totalCount"])
        self.assertEqual(1, len(payload["grades"]))
        self.assertEqual("Mathematics", payload["grades"][0]["subject"])
        self.assertEqual(2, payload["paging"]["pages"])

    def test_invalid_sort(self) -> None:
        response = self.client.get("/api/grades?teacher_id=T1&sort=name")

        self.assertEqual(400, response.status_code)


class ConsolidatedRouteTestCase(RouteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store.add_grade("002", "MATH5", "Q1", 70)
        self.store.add_grade("001", "MATH5", "Q1", 80)
        self.store.add_grade("001", "MATH5", "Q2", 90)
        self.store.add_grade("003", "FIL5B", "Q1", 88)

    def test_combined_view(self) -> None:
        response = self.client.get("/api/grades/consolidated?view=combined")

        self.assertEqual(200, response.status_code)
        payload = response.get_json()
        self.assertEqual("Combined", payload["view"])
        self.assertEqual(ACTIVE_YEAR, payload["school_year_id"])
        self.assertEqual(["001", "002", "003"], [s["lrn"] for s in payload["students"]])
        self.assertEqual({"Mathematics": 85.0, "Science": None}, payload["rows"][0]["grades"])
        self.assertEqual(
            {"Mathematics": 77.5, "Science": "-", "Filipino": 88.0},
            payload["summary"]["subjectAverages"],
        )
        self.assertEqual("Filipino", payload["summary"]["highestSubject"]["subject"])

    def test_quarter_view_keeps_empty_cells(self) -> None:
        response = self.client.get("/api/grades/consolidated?view=Q3&section_id=SEC5A")

        payload = response.get_json()
        self.assertEqual(["001", "002"], [s["lrn"] for s in payload["students"]])
        self.assertEqual(
            {"Mathematics": None, "Science": None}, payload["students"][0]["grades"]["Q3"]
        )
        self.assertEqual("-", payload["summary"]["overallAverage"])

    def test_search(self) -> None:
        response = self.client.get("/api/grades/consolidated?q=santos")

        self.assertEqual(["002"], [s["lrn"] for s in response.get_json()["students"]])

    def test_invalid_view(self) -> None:
        response = self.client.get("/api/grades/consolidated?view=Q7")

        self.assertEqual(400, response.status_code)

    def test_other_school_year_is_empty(self) -> None:
        response = self.client.get("/api/grades/consolidated?school_year_id=SY2024")

        self.assertEqual([], response.get_json()["students"])

    def test_adviser_sees_only_handled_sections(self) -> None:
        response = self.client.get("/api/advisers/ADV2/consolidated")

        self.assertEqual(200, response.status_code)
        self.assertEqual(["003"], [s["lrn"] for s in response.get_json()["students"]])

    def test_adviser_without_section(self) -> None:
        response = self.client.get("/api/advisers/NOBODY/consolidated")

        self.assertEqual(404, response.status_code)

    def test_database_failure(self) -> None:
        self.store.fetch_ledger = MagicMock(side_effect=ServerSelectionTimeoutError("down"))

        with self.assertLogs("gradeledger.routes.consolidated", level="ERROR"):
            response = self.client.get("/api/grades/consolidated")

        self.assertEqual(503, response.status_code)


class HealthTestCase(RouteTestCase):
    def test_health(self) -> None:
        response = self.client.get("/api/health")

        self.assertEqual({"ok": True}, response.get_json())


if __name__ == "__main__":
    unittest.main()
