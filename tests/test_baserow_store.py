"""Tests for Baserow persistence with a mocked requests session."""

import json
from unittest.mock import Mock

import pytest
import requests

from baserow_store import TOKEN_MISSING, BaserowStore
from models import InspectionRecord, Section, Severity
from settings import DEFAULT_BASEROW_FIELDS as F


def response(status_code=200, payload=None):
    resp = Mock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.json.return_value = payload if payload is not None else {}
    return resp


@pytest.fixture
def http() -> Mock:
    return Mock(spec=requests.Session)


@pytest.fixture
def store(http) -> BaserowStore:
    return BaserowStore(token="tkn", api_url="https://baserow.test/", table_id="42", session=http)


class TestMapping:
    def test_to_row(self, store, sample_record):
        row = store.to_row(sample_record)

        assert row[F["ADDRESS"]] == "123 Main St, Daly City, CA"
        assert row[F["TOTAL_ISSUES"]] == "2"
        sections = json.loads(row[F["SECTIONS_JSON"]])
        assert [s["issue"] for s in sections] == ["Loose shingles", "Missing ridge cap"]

    def test_round_trip_through_row(self, store, sample_record):
        row = store.to_row(sample_record)
        row["id"] = 7

        loaded = store.from_row(row)

        assert loaded.row_id == 7
        assert loaded.sections == sample_record.sections
        assert loaded.final_notes == sample_record.final_notes
        assert loaded.customer_email == sample_record.customer_email

    def test_unparseable_sections_load_as_empty(self, store):
        record = store.from_row({"id": 3, F["ADDRESS"]: "1 Elm St", F["SECTIONS_JSON"]: "{broken"})

        assert record.sections == []
        assert record.address == "1 Elm St"
        assert record.company == "EHL Roofing LLC"


class TestOperations:
    def test_save_creates_row(self, store, http, sample_record):
        http.request.return_value = response(200, {"id": 11})

        assert store.save(sample_record) == {"success": True, "id": 11}
        method, url = http.request.call_args.args
        assert method == "POST"
        assert url == "https://baserow.test/api/database/rows/table/42/"
        assert http.request.call_args.kwargs["headers"]["Authorization"] == "Token tkn"

    def test_save_with_row_id_patches(self, store, http, sample_record):
        http.request.return_value = response(200, {"id": 11})

        store.save(sample_record.model_copy(update={"row_id": 11}))

        method, url = http.request.call_args.args
        assert method == "PATCH"
        assert url.endswith("/table/42/11/")

    def test_save_rejects_bad_email(self, store, http):
        record = InspectionRecord(address="1 Elm St", customer_email="not-an-email", sections=[Section(issue="x")])

        assert store.save(record) == {"success": False, "error": "Invalid customer email"}
        http.request.assert_not_called()

    def test_save_remote_error(self, store, http, sample_record):
        http.request.return_value = response(400, {"detail": "bad field"})

        assert store.save(sample_record) == {"success": False, "error": "Failed to save to Baserow"}

    def test_save_network_error(self, store, http, sample_record):
        http.request.side_effect = requests.ConnectionError("unreachable")

        assert store.save(sample_record)["success"] is False

    def test_missing_token(self, http):
        store = BaserowStore(token="", session=http)

        assert store.save(InspectionRecord()) == {"success": False, "error": TOKEN_MISSING}
        assert store.list()["inspections"] == []
        http.request.assert_not_called()

    def test_save_then_load(self, store, http, sample_record):
        saved_rows = {}

        def fake_request(method, url, **kwargs):
            if method == "POST":
                saved_rows[5] = dict(kwargs["json"], id=5)
                return response(200, saved_rows[5])
            return response(200, saved_rows[5])

        http.request.side_effect = fake_request

        assert store.save(sample_record)["id"] == 5
        result = store.load(5)

        assert result["success"] is True
        loaded = result["data"]
        assert loaded.row_id == 5
        assert [s.severity for s in loaded.sections] == [Severity.LOW, Severity.CRITICAL]
        assert loaded.address == sample_record.address

    def test_list(self, store, http):
        http.request.return_value = response(200, {"results": [
            {"id": 1, F["ADDRESS"]: "1 Elm St", F["TOTAL_ISSUES"]: "3", F["CUSTOMER_NAME"]: "Jane"},
            {"id": 2, F["ADDRESS"]: ""},
        ]})

        result = store.list(page_size=10)

        assert result["success"] is True
        first, second = result["inspections"]
        assert (first.id, first.address, first.total_issues, first.customer_name) == (1, "1 Elm St", "3", "Jane")
        assert (second.address, second.total_issues) == ("No address", "0")
        assert http.request.call_args.kwargs["params"] == {"size": 10}

    def test_delete(self, store, http):
        http.request.return_value = response(204)

        assert store.delete(9) == {"success": True, "message": "Deleted"}
        method, url = http.request.call_args.args
        assert (method, url) == ("DELETE", "https://baserow.test/api/database/rows/table/42/9/")

    def test_delete_failure(self, store, http):
        http.request.return_value = response(404, {"detail": "not found"})

        assert store.delete(9) == {"success": False, "error": "Failed to delete"}
