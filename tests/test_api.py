"""HTTP tests against the FastAPI app with external services mocked."""

import base64
from unittest.mock import MagicMock, Mock

import pytest
import requests

from ai_text import NOT_CONFIGURED, RoofingAI
from baserow_store import BaserowStore
from conftest import FakeTranslator, completion
from mailer import ReportMailer
from report_app import app
from services import get_ai, get_autosaver, get_mailer, get_store


def record_json(record):
    return record.model_dump(mode="json")


@pytest.fixture
def openai_client() -> Mock:
    return Mock()


@pytest.fixture
def configured_ai(openai_client):
    ai = RoofingAI(api_key="sk-test", client=openai_client)
    app.dependency_overrides[get_ai] = lambda: ai
    return ai


@pytest.fixture
def baserow_http():
    http = Mock(spec=requests.Session)
    resp = Mock(status_code=200, ok=True)
    resp.json.return_value = {"id": 9}
    http.request.return_value = resp
    store = BaserowStore(token="tkn", api_url="https://baserow.test", table_id="1", session=http)
    app.dependency_overrides[get_store] = lambda: store
    return http


@pytest.fixture
def smtp_server():
    server = MagicMock()
    server.noop.return_value = (250, b"OK")
    factory = MagicMock()
    factory.return_value.__enter__.return_value = server
    mailer = ReportMailer(
        host="smtp.test", port=465, user="reports@example.com", password="pw", smtp_factory=factory
    )
    app.dependency_overrides[get_mailer] = lambda: mailer
    return server


def test_health_reports_missing_configuration(test_client):
    response = test_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "openai_configured": False,
        "baserow_configured": False,
        "smtp_configured": False,
    }


class TestAiRoutes:
    def test_description_without_key(self, test_client):
        response = test_client.post("/generate-description", json={"issue": "leak", "severity": "High"})

        assert response.status_code == 503
        assert response.json() == {"success": False, "error": NOT_CONFIGURED}

    def test_description(self, test_client, configured_ai, openai_client):
        openai_client.chat.completions.create.return_value = completion(
            "TITLE: Active Roof Leak\n\nOBSERVED CONDITION: Water stains.\n\n"
            "POTENTIAL IMPACT IF UNADDRESSED: Rot."
        )

        response = test_client.post("/generate-description", json={"issue": "leak", "severity": "High"})

        assert response.status_code == 200
        assert response.json()["title"] == "Active Roof Leak"

    def test_final_notes_require_field_notes(self, test_client, configured_ai):
        response = test_client.post("/generate-final-notes", json={
            "sections": [{"issue": "Leak", "severity": "Low"}],
            "address": "1 Elm St",
            "inspectorFieldNotes": " ",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "Please enter your field notes first"

    def test_email_content_fallback(self, test_client, sample_record):
        response = test_client.post("/email-content", json=record_json(sample_record))

        body = response.json()
        assert response.status_code == 200
        assert body["fallback"] is True
        assert body["to"] == "jane@example.com"
        assert body["subject"] == "Roof Inspection Report - 123 Main St, Daly City, CA"

    def test_translate_without_key(self, test_client):
        response = test_client.post("/translate", json={"text": "techo roto"})
        assert response.status_code == 503

    def test_translate(self, test_client, configured_ai, openai_client):
        openai_client.chat.completions.create.return_value = completion("Broken roof")

        response = test_client.post("/translate", json={"text": "techo roto"})

        assert response.json() == {"success": True, "text": "Broken roof"}


class TestLanguageGate:
    def test_language_check(self, test_client, sample_record):
        record = record_json(sample_record)
        record["finalNotes"] = "Techo con goteras"
        record.pop("final_notes")

        response = test_client.post("/language-check", json=record)

        assert response.json() == {"success": True, "valid": False, "issues": ["Final Notes contain Spanish"]}

    def test_export_blocked_by_spanish(self, test_client, sample_record):
        record = record_json(sample_record)
        record["sections"][0]["issue"] = "Tejas sueltas"

        response = test_client.post("/export-pdf", json=record)

        assert response.status_code == 422
        assert response.json()["issues"] == ['Section 1 Issue: "Tejas sueltas"']

    @pytest.fixture
    def spanish_record(self, sample_record):
        return sample_record.model_copy(update={"final_notes": "Techo con goteras y moho"})

    def test_save_blocked_by_spanish(self, test_client, spanish_record, baserow_http):
        response = test_client.post("/inspections", json=record_json(spanish_record))

        assert response.status_code == 422
        assert response.json()["issues"] == ["Final Notes contain Spanish"]
        baserow_http.request.assert_not_called()

    def test_session_save_blocked_by_spanish(self, api, session, spanish_record, baserow_http):
        session.load_record(spanish_record)

        response = api.post("/session/save")

        assert response.status_code == 422
        assert session.record.row_id is None
        baserow_http.request.assert_not_called()

    def test_email_content_blocked_by_spanish(self, test_client, spanish_record, configured_ai, openai_client):
        response = test_client.post("/email-content", json=record_json(spanish_record))

        assert response.status_code == 422
        openai_client.chat.completions.create.assert_not_called()

    def test_send_email_blocked_by_spanish(self, test_client, spanish_record, smtp_server):
        response = test_client.post("/send-report-email", json={
            "record": record_json(spanish_record),
            "to": "jane@example.com",
            "subject": "s",
            "body": "b",
        })

        assert response.status_code == 422
        smtp_server.send_message.assert_not_called()


class TestDocuments:
    def test_export_pdf(self, test_client, sample_record):
        response = test_client.post("/export-pdf", json=record_json(sample_record))

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert "EHL_Roofing_Inspection_20240501_123_Main_St.pdf" in response.headers["content-disposition"]
        assert response.content.startswith(b"%PDF")

    def test_export_pdf_requires_address(self, test_client, sample_record):
        record = record_json(sample_record)
        record["address"] = ""

        response = test_client.post("/export-pdf", json=record)

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Fill address and add sections first"}

    def test_export_docx(self, test_client, sample_record):
        response = test_client.post("/export-report-docx", json=record_json(sample_record))

        assert response.status_code == 200
        assert response.content[:2] == b"PK"

    def test_preview(self, test_client, sample_record):
        response = test_client.post("/report-preview", json=record_json(sample_record))

        assert response.status_code == 200
        assert "Missing Ridge Cap" in response.text


class TestEmail:
    def test_send_report_email(self, test_client, sample_record, smtp_server):
        response = test_client.post("/send-report-email", json={
            "record": record_json(sample_record),
            "to": "jane@example.com, bob@example.com",
            "subject": "Roof Inspection Report",
            "body": "Attached.",
        })

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert smtp_server.send_message.call_args.kwargs["to_addrs"] == ["jane@example.com", "bob@example.com"]

    def test_invalid_recipient(self, test_client, sample_record, smtp_server):
        response = test_client.post("/send-report-email", json={
            "record": record_json(sample_record),
            "to": "nope",
            "subject": "s",
            "body": "b",
        })

        assert response.status_code == 400
        smtp_server.send_message.assert_not_called()

    def test_mail_not_configured(self, test_client, sample_record):
        response = test_client.post("/send-report-email", json={
            "record": record_json(sample_record),
            "to": "jane@example.com",
            "subject": "s",
            "body": "b",
        })

        assert response.status_code == 503


class TestInspections:
    def test_save_without_token(self, test_client, sample_record):
        response = test_client.post("/inspections", json=record_json(sample_record))

        assert response.status_code == 503
        assert response.json()["error"] == "Baserow token missing"

    def test_save(self, test_client, sample_record, baserow_http):
        response = test_client.post("/inspections", json=record_json(sample_record))

        assert response.json() == {"success": True, "id": 9}
        assert baserow_http.request.call_args.args[0] == "POST"

    def test_save_requires_sections(self, test_client, sample_record, baserow_http):
        record = record_json(sample_record)
        record["sections"] = []

        response = test_client.post("/inspections", json=record)

        assert response.status_code == 400
        baserow_http.request.assert_not_called()

    def test_list(self, test_client, baserow_http):
        baserow_http.request.return_value.json.return_value = {"results": [{"id": 4}]}

        response = test_client.get("/inspections")

        assert response.json()["inspections"][0]["address"] == "No address"

    def test_load_failure(self, test_client, baserow_http):
        baserow_http.request.side_effect = requests.Timeout("slow")

        response = test_client.get("/inspections/4")

        assert response.status_code == 502
        assert response.json() == {"success": False, "error": "Failed to load from Baserow"}

    def test_delete(self, test_client, baserow_http):
        baserow_http.request.return_value = Mock(status_code=204, ok=True)

        assert test_client.delete("/inspections/4").json() == {"success": True, "message": "Deleted"}


class TestSession:
    def test_fields_and_sections(self, api):
        assert api.patch("/session", json={"address": "1 Elm St", "customerName": "Jane"}).status_code == 200

        added = api.post("/session/sections", json={"issue": "Cracked tile", "severity": "Low"}).json()
        section_id = added["section"]["id"]
        api.post("/session/sections", json={"issue": "Active leak", "severity": "Critical"})
        api.put(f"/session/sections/{section_id}", json={"issue": "Broken tile", "severity": "High"})

        data = api.get("/session").json()["data"]
        assert data["customer_name"] == "Jane"
        assert [s["issue"] for s in data["sections"]] == ["Broken tile", "Active leak"]
        assert data["sections"][0]["id"] == section_id

        assert api.delete(f"/session/sections/{section_id}").status_code == 200
        assert api.delete(f"/session/sections/{section_id}").status_code == 404
        assert api.put("/session/sections/missing", json={"issue": "x"}).status_code == 404

    def test_unknown_field_is_ignored_by_schema(self, api):
        response = api.patch("/session", json={"colour": "red"})
        assert response.status_code == 200

    def test_add_section_requires_issue(self, api):
        response = api.post("/session/sections", json={"issue": " "})

        assert response.status_code == 400
        assert response.json()["error"] == "Please enter an issue"

    def test_add_section_with_spanish_left(self, api, translator):
        translator.answers["canaleta rota"] = "canaleta rota"

        response = api.post("/session/sections", json={"issue": "canaleta rota"})

        assert response.status_code == 422
        assert api.get("/session").json()["data"]["sections"] == []

    def test_snapshot_and_restore(self, api, session):
        assert api.get("/session/snapshot").status_code == 404

        api.patch("/session", json={"address": "1 Elm St"})
        snapshot = api.get("/session/snapshot").json()
        assert snapshot["data"]["address"] == "1 Elm St"

        session.load_record(session.record.model_copy(update={"address": ""}))
        restored = api.post("/session/snapshot/restore").json()
        assert restored["data"]["address"] == "1 Elm St"

    def test_new_inspection_clears_snapshot(self, api):
        api.patch("/session", json={"address": "1 Elm St"})

        data = api.post("/session/new").json()["data"]

        assert data["address"] == ""
        assert api.get("/session/snapshot").status_code == 404

    def test_save_stores_row_id(self, api, session, baserow_http):
        api.patch("/session", json={"address": "1 Elm St"})
        api.post("/session/sections", json={"issue": "Cracked tile"})

        response = api.post("/session/save")

        assert response.json() == {"success": True, "id": 9}
        assert session.record.row_id == 9

        api.post("/session/save")
        assert baserow_http.request.call_args.args[0] == "PATCH"

    def test_save_waits_for_running_auto_save(self, api, session, sample_record, baserow_http):
        autosaver = Mock()
        app.dependency_overrides[get_autosaver] = lambda: autosaver
        session.load_record(sample_record)

        api.post("/session/save")

        autosaver.cancel_pending.assert_called_once_with()
        autosaver.wait_idle.assert_called_once()
        autosaver.cancel.assert_not_called()

    def test_load(self, api, session, baserow_http, sample_record):
        row = BaserowStore(token="x").to_row(sample_record)
        baserow_http.request.return_value.json.return_value = dict(row, id=9)

        data = api.post("/session/load/9").json()["data"]

        assert data["row_id"] == 9
        assert session.record.address == sample_record.address
        assert len(session.record.sections) == 2

    def test_session_pdf(self, api, session, sample_record):
        session.load_record(sample_record)

        response = api.get("/session/pdf")

        assert response.status_code == 200
        assert response.content.startswith(b"%PDF")

    def test_session_preview(self, api, session, sample_record):
        session.load_record(sample_record)

        response = api.get("/report-preview")

        assert "Loose Shingles On South Slope" in response.text

    def test_final_notes(self, api, session, configured_ai, openai_client):
        api.patch("/session", json={"address": "1 Elm St", "inspectorFieldNotes": "Old roof"})
        api.post("/session/sections", json={"issue": "Cracked tile"})
        openai_client.chat.completions.create.return_value = completion("RECOMMENDATIONS: Repair.")

        response = api.post("/session/final-notes")

        assert response.json()["final_notes"] == "RECOMMENDATIONS: Repair."
        assert session.record.final_notes == "RECOMMENDATIONS: Repair."

    def test_transcribe_into_field_notes(self, api, session, configured_ai, openai_client):
        openai_client.audio.transcriptions.create.return_value = Mock(text="techo viejo")
        session.translator = FakeTranslator({"techo viejo": "Old roof"})

        response = api.post(
            "/transcribe",
            files={"audio": ("note.webm", base64.b64decode("GkXfow=="), "audio/webm")},
            data={"language": "es", "target": "field_notes"},
        )

        assert response.status_code == 200
        assert response.json()["text"] == "Old roof"
        assert session.record.inspector_field_notes == "Old roof"

    def test_session_send_email(self, api, session, sample_record, smtp_server):
        session.load_record(sample_record)

        response = api.post("/session/send-email", json={"to": "jane@example.com", "subject": "s", "body": "b"})

        assert response.status_code == 200
        smtp_server.send_message.assert_called_once()
