import json
from datetime import datetime
from io import BytesIO
from unittest.mock import patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from openpyxl import load_workbook

# Import the application and helpers from main.py
import main
from main import (
    app,
    content_disposition,
    get_memory_usage,
    XLSX_MEDIA_TYPE,
)
from excel_generator import SpreadsheetGenerator
from utils.result import Result

# Create TestClient for FastAPI app testing
client = TestClient(app)


@pytest.fixture
def export_payload():
    """
    Fixture providing a request body for /generate-excel.

    Returns:
        dict: Two records and default options
    """
    return {
        "data": [{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bo"}],
        "options": {"filename": "people.xlsx"}
    }


def read_rows(content, sheet_name=None):
    """
    Load a workbook from response bytes and return its rows as lists.

    Args:
        content: Response body
        sheet_name: Expected worksheet title, checked when given

    Returns:
        list: Row values of the only worksheet
    """
    workbook = load_workbook(BytesIO(content))
    assert len(workbook.worksheets) == 1
    sheet = workbook.worksheets[0]
    if sheet_name is not None:
        assert sheet.title == sheet_name
    return [list(row) for row in sheet.iter_rows(values_only=True)]


class TestGenerateExcel:
    """
    Tests for the POST /generate-excel endpoint.
    """

    def test_returns_workbook(self, export_payload):
        """
        Test that a valid request returns an xlsx file with detected headers.

        Args:
            export_payload: Fixture providing a request body
        """
        response = client.post("/generate-excel", json=export_payload)

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == XLSX_MEDIA_TYPE
        assert response.headers["content-disposition"] == 'attachment; filename="people.xlsx"'
        assert read_rows(response.content, "Sheet1") == [["id", "name"], ["1", "Ann"], ["2", "Bo"]]

    def test_explicit_headers_and_sheet_name(self, export_payload):
        """
        Test that explicit headers decide the column order and sheetName the sheet title.

        Args:
            export_payload: Fixture providing a request body
        """
        export_payload["options"].update({"headers": ["name", "id"], "sheetName": "People"})

        response = client.post("/generate-excel", json=export_payload)

        assert response.status_code == status.HTTP_200_OK
        assert read_rows(response.content, "People") == [["name", "id"], ["Ann", "1"], ["Bo", "2"]]

    def test_numeric_cells_option(self, export_payload):
        export_payload["options"]["numericCells"] = True

        response = client.post("/generate-excel", json=export_payload)

        assert read_rows(response.content)[1:] == [[1, "Ann"], [2, "Bo"]]

    def test_empty_data_returns_fallback_header(self):
        response = client.post("/generate-excel", json={"data": [], "options": {"filename": "empty.xlsx"}})

        assert response.status_code == status.HTTP_200_OK
        assert read_rows(response.content) == [["data"]]

    def test_options_are_optional(self):
        response = client.post("/generate-excel", json={"data": [{"a": True}]})

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-disposition"] == 'attachment; filename="export.xlsx"'
        assert read_rows(response.content) == [["a"], [True]]

    def test_generation_failure_returns_500_envelope(self, export_payload):
        """
        Test that an encoder error is reported as a 500 with the underlying message.

        Args:
            export_payload: Fixture providing a request body
        """
        export_payload["options"]["sheetName"] = "bad/name"

        with patch.object(main.logger, 'error'):
            response = client.post("/generate-excel", json=export_payload)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        body = response.json()
        assert body["success"] is False
        assert "Invalid character" in body["message"]

    def test_control_characters_still_produce_workbook(self):
        """
        Test that strings with control characters are escaped rather than failing the request.
        """
        payload = {"data": [{"note": "bell\u0007x", "k\u0001": "v"}], "options": {"filename": "ctrl.xlsx"}}

        response = client.post("/generate-excel", json=payload)

        assert response.status_code == status.HTTP_200_OK
        rows = read_rows(response.content)
        assert len(rows) == 2
        assert rows[0][1] == "note"
        assert rows[1][0] == "v"

    def test_long_sheet_name_returns_500_envelope(self, export_payload):
        export_payload["options"]["sheetName"] = "x" * 40

        with patch.object(main.logger, 'error'):
            response = client.post("/generate-excel", json=export_payload)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "at most 31 characters" in response.json()["message"]

    def test_pipeline_result_is_passed_through(self, export_payload):
        with patch.object(SpreadsheetGenerator, 'convert_to_spreadsheet',
                          return_value=Result.generation_failed("encoder exhausted")), \
             patch.object(main.logger, 'error'):
            response = client.post("/generate-excel", json=export_payload)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"success": False, "message": "encoder exhausted"}

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            json.dumps({"options": {"filename": "x.xlsx"}}),
            json.dumps({"data": "not-a-list"}),
            json.dumps({"data": [], "options": {"headers": "id"}}),
        ],
        ids=["invalid-json", "missing-data", "data-not-list", "headers-not-list"]
    )
    def test_decode_errors_return_422(self, body):
        """
        Test that bodies which cannot be decoded into a request are client errors.

        Args:
            body: Raw request body
        """
        response = client.post(
            "/generate-excel",
            content=body,
            headers={"content-type": "application/json"}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("Invalid request body")

    def test_oversized_body_returns_413(self, export_payload):
        with patch.object(main.settings, 'excel_max_body_size_mb', 0), \
             patch.object(main.logger, 'warning'):
            response = client.post("/generate-excel", json=export_payload)

        assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
        assert response.json()["success"] is False

    def test_wrong_method_returns_405(self):
        response = client.get("/generate-excel")

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert response.json() == {"success": False, "message": "Method Not Allowed"}


class TestServiceEndpoints:
    """
    Tests for the health, status and test endpoints.
    """

    def test_health(self):
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "status": "healthy",
            "service": "excel-service",
            "version": main.settings.service_version
        }

    def test_status(self):
        response = client.get("/status")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["service"] == "excel-service"
        assert body["status"] == "running"
        assert datetime.fromisoformat(body["timestamp"]).tzinfo is not None
        assert body["memory_usage"]["rss"] > 0
        assert body["memory_usage"]["virtual"] > 0

    def test_sample_generation(self):
        """
        Test that /test builds a workbook from the built-in sample records.
        """
        response = client.get("/test")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == XLSX_MEDIA_TYPE
        assert response.headers["content-disposition"] == 'attachment; filename="test.xlsx"'
        rows = read_rows(response.content, "Test")
        assert rows[0] == ["age", "city", "email", "id", "name"]
        assert rows[1] == ["30", "Jakarta", "john@example.com", "1", "John Doe"]
        assert rows[2] == ["25", "Surabaya", "jane@example.com", "2", "Jane Smith"]

    def test_unknown_route_returns_404(self):
        response = client.get("/does-not-exist")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"success": False, "message": "Not Found"}

    def test_cors_preflight(self):
        response = client.options(
            "/generate-excel",
            headers={
                "Origin": "http://example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            }
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["access-control-allow-origin"] == "*"


class TestHelpers:
    """
    Tests for helper functions in main.py.
    """

    @pytest.mark.parametrize(
        "filename, expected",
        [
            ("report.xlsx", 'attachment; filename="report.xlsx"'),
            ('my"file.xlsx', 'attachment; filename="myfile.xlsx"'),
            ("a\r\nb.xlsx", 'attachment; filename="ab.xlsx"'),
            ("", 'attachment; filename="export.xlsx"'),
        ],
        ids=["plain", "quotes", "line-breaks", "empty"]
    )
    def test_content_disposition(self, filename, expected):
        assert content_disposition(filename) == expected

    def test_memory_usage_in_kilobytes(self):
        usage = get_memory_usage()

        assert set(usage) == {"rss", "virtual"}
        assert usage["virtual"] >= usage["rss"] > 0
