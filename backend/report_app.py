import logging
from contextlib import asynccontextmanager
from io import BytesIO
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

import settings
from ai_text import RoofingAI
from baserow_store import BaserowStore
from exceptions import (
    ConfigurationError,
    LanguageGateError,
    LocalInputError,
    RemoteServiceError,
    ReportValidationError,
    RoofReportError,
)
from inspection_session import AutoSaver, InspectionSession, LocalSnapshotStore
from language_gate import ensure_english, require_english, validate_no_spanish
from mailer import ReportMailer, split_addresses
from models import (
    DescriptionRequest,
    EmailSendRequest,
    FinalNotesRequest,
    InspectionRecord,
    Section,
    SessionEmailRequest,
    SessionFieldsUpdate,
    TranslateRequest,
)
from report_docx import DOCX_MEDIA_TYPE, generate_report_docx
from report_pdf import generate_report_pdf
from report_ui import router as report_ui_router
from services import (
    get_ai,
    get_autosaver,
    get_mailer,
    get_session,
    get_snapshot_store,
    get_store,
    start_autosave,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings.warn_missing_configuration()
    start_autosave()
    backup = get_snapshot_store().load()
    if backup is not None:
        logger.info("Found unsaved inspection backup from %s", backup["timestamp"])
    yield


# ===================== FastAPI app & CORS =====================

app = FastAPI(title="Roof Inspection Report Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(report_ui_router)


# ===================== Error handling =====================

ERROR_STATUS = (
    (LanguageGateError, 422),
    (ReportValidationError, 400),
    (LocalInputError, 400),
    (ConfigurationError, 503),
    (RemoteServiceError, 502),
)


@app.exception_handler(RoofReportError)
async def roof_report_error_handler(_request: Request, exc: RoofReportError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    content: Dict[str, Any] = {"success": False, "error": str(exc)}
    if isinstance(exc, LanguageGateError) and exc.issues:
        content["issues"] = exc.issues
    return JSONResponse(status_code=status_code, content=content)


def _respond(result: Dict[str, Any], failure_status: int = 502) -> JSONResponse:
    status_code = 200 if result.get("success") else failure_status
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result, by_alias=False))


def _require_reportable(record: InspectionRecord, message: str) -> None:
    if not record.address.strip():
        raise ReportValidationError(message or "Address required")
    if not record.sections:
        raise ReportValidationError(message or "Add at least one section")


def _download(data: bytes, filename: str, media_type: str) -> StreamingResponse:
    return StreamingResponse(
        BytesIO(data),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ===================== Routes: health =====================

@app.get("/health")
def health(
    ai: RoofingAI = Depends(get_ai),
    store: BaserowStore = Depends(get_store),
    mailer: ReportMailer = Depends(get_mailer),
):
    return {
        "success": True,
        "openai_configured": ai.configured,
        "baserow_configured": store.configured,
        "smtp_configured": mailer.configured,
    }


# ===================== Routes: AI enrichment =====================

@app.post("/generate-description")
def generate_description(payload: DescriptionRequest, ai: RoofingAI = Depends(get_ai)):
    if not payload.issue.strip():
        raise ReportValidationError("Please enter an issue first")
    result = ai.generate_description(payload.issue, payload.severity)
    return _respond(result, 503 if not ai.configured else 502)


@app.post("/generate-final-notes")
def generate_final_notes(payload: FinalNotesRequest, ai: RoofingAI = Depends(get_ai)):
    if not payload.sections:
        raise ReportValidationError("Add at least one section first")
    if not payload.inspector_field_notes.strip():
        raise ReportValidationError("Please enter your field notes first")
    result = ai.generate_final_notes(
        sections=payload.sections,
        address=payload.address,
        inspector=payload.inspector,
        inspector_field_notes=payload.inspector_field_notes,
    )
    return _respond(result, 503 if not ai.configured else 502)


def _email_content(record: InspectionRecord, ai: RoofingAI) -> Dict[str, Any]:
    _require_reportable(record, "Complete report first")
    require_english(record, "emailing")
    result = ai.generate_email_content(
        customer_name=record.customer_name,
        address=record.address,
        date=record.date,
        inspector=record.inspector,
        estimator=record.estimator,
        sections=record.sections,
        final_notes=record.final_notes,
    )
    result["to"] = record.customer_email
    return result


@app.post("/email-content")
def email_content(record: InspectionRecord, ai: RoofingAI = Depends(get_ai)):
    return _respond(_email_content(record, ai))


@app.post("/translate")
def translate(payload: TranslateRequest, ai: RoofingAI = Depends(get_ai)):
    if not ai.configured:
        raise ConfigurationError("Translation requires OpenAI API key")
    return {"success": True, "text": ensure_english(payload.text, ai)}


@app.post("/transcribe")
async def transcribe(
    audio: UploadFile = File(...),
    language: str = Form("es"),
    target: str = Form(""),
    ai: RoofingAI = Depends(get_ai),
    session: InspectionSession = Depends(get_session),
):
    """Transcribe a finished recording; ``target`` routes it into the session."""
    content = await audio.read()
    if not content:
        raise LocalInputError("Error reading audio file")

    result = ai.transcribe_audio(
        content,
        language=language or "es",
        filename=audio.filename or "audio.webm",
        content_type=audio.content_type or "audio/webm",
    )
    if not result.get("success"):
        return _respond(result, 503 if not ai.configured else 502)

    if target:
        result["text"] = session.apply_transcript(target, result["transcript"])
        result["target"] = target
    return _respond(result)


@app.post("/language-check")
def language_check(record: InspectionRecord):
    report = validate_no_spanish(record.sections, record.final_notes)
    return {"success": True, "valid": report.valid, "issues": report.issues}


# ===================== Routes: documents =====================

def _pdf_for(record: InspectionRecord, action: str):
    require_english(record, action)
    pdf = generate_report_pdf(record)
    if pdf is None:
        raise ReportValidationError("Fill address and add sections first")
    return pdf


@app.post("/export-pdf")
def export_pdf(record: InspectionRecord):
    pdf_bytes, filename = _pdf_for(record, "exporting")
    return _download(pdf_bytes, filename, "application/pdf")


@app.post("/export-report-docx")
def export_report_docx(record: InspectionRecord):
    require_english(record, "exporting")
    docx = generate_report_docx(record)
    if docx is None:
        raise ReportValidationError("Fill address and add sections first")
    data, filename = docx
    return _download(data, filename, DOCX_MEDIA_TYPE)


def _send_email(
    record: InspectionRecord,
    to: str,
    cc: str,
    subject: str,
    body: str,
    mailer: ReportMailer,
) -> JSONResponse:
    if not to.strip():
        raise ReportValidationError("Enter recipient email")
    pdf_bytes, filename = _pdf_for(record, "emailing")
    result = mailer.send_report_email(
        to=split_addresses(to),
        cc=split_addresses(cc),
        subject=subject,
        body=body,
        pdf_bytes=pdf_bytes,
        pdf_filename=filename,
    )
    if not mailer.configured:
        failure_status = 503
    elif str(result.get("error", "")).startswith(("Invalid", "Enter")):
        failure_status = 400
    else:
        failure_status = 502
    return _respond(result, failure_status)


@app.post("/send-report-email")
def send_report_email(payload: EmailSendRequest, mailer: ReportMailer = Depends(get_mailer)):
    return _send_email(payload.record, payload.to, payload.cc, payload.subject, payload.body, mailer)


# ===================== Routes: Baserow =====================

def _save(record: InspectionRecord, store: BaserowStore) -> Dict[str, Any]:
    _require_reportable(record, "")
    require_english(record, "saving")
    return store.save(record)


def _store_failure(store: BaserowStore, result: Dict[str, Any], default: int = 502) -> int:
    if not store.configured:
        return 503
    if result.get("error") == "Invalid customer email":
        return 400
    return default


@app.post("/inspections")
def save_inspection(record: InspectionRecord, store: BaserowStore = Depends(get_store)):
    result = _save(record, store)
    return _respond(result, _store_failure(store, result))


@app.get("/inspections")
def list_inspections(store: BaserowStore = Depends(get_store)):
    result = store.list()
    return _respond(result, _store_failure(store, result))


@app.get("/inspections/{row_id}")
def load_inspection(row_id: int, store: BaserowStore = Depends(get_store)):
    result = store.load(row_id)
    return _respond(result, _store_failure(store, result))


@app.delete("/inspections/{row_id}")
def delete_inspection(row_id: int, store: BaserowStore = Depends(get_store)):
    result = store.delete(row_id)
    return _respond(result, _store_failure(store, result))


# ===================== Routes: session =====================

def _session_state(session: InspectionSession, autosaver: Optional[AutoSaver]) -> Dict[str, Any]:
    return {
        "success": True,
        "data": session.record,
        "auto_save_status": autosaver.status if autosaver else "disabled",
    }


@app.get("/session")
def get_session_state(
    session: InspectionSession = Depends(get_session),
    autosaver: Optional[AutoSaver] = Depends(get_autosaver),
):
    return _respond(_session_state(session, autosaver))


@app.patch("/session")
def update_session(
    payload: SessionFieldsUpdate,
    session: InspectionSession = Depends(get_session),
    autosaver: Optional[AutoSaver] = Depends(get_autosaver),
):
    session.update_fields(**payload.model_dump(exclude_none=True))
    return _respond(_session_state(session, autosaver))


@app.post("/session/sections")
def add_session_section(section: Section, session: InspectionSession = Depends(get_session)):
    stored = session.add_section(section)
    return _respond({"success": True, "section": stored, "data": session.record})


@app.put("/session/sections/{section_id}")
def edit_session_section(
    section_id: str,
    section: Section,
    session: InspectionSession = Depends(get_session),
):
    if session.get_section(section_id) is None:
        return _respond({"success": False, "error": "Section not found"}, 404)
    stored = session.add_section(section.model_copy(update={"id": section_id}))
    return _respond({"success": True, "section": stored, "data": session.record})


@app.delete("/session/sections/{section_id}")
def delete_session_section(section_id: str, session: InspectionSession = Depends(get_session)):
    if not session.delete_section(section_id):
        return _respond({"success": False, "error": "Section not found"}, 404)
    return _respond({"success": True, "message": "Section deleted", "data": session.record})


@app.post("/session/final-notes")
def generate_session_final_notes(
    session: InspectionSession = Depends(get_session),
    ai: RoofingAI = Depends(get_ai),
):
    if not session.record.sections:
        raise ReportValidationError("Add at least one section first")
    if not session.record.inspector_field_notes.strip():
        raise ReportValidationError("Please enter your field notes first")
    result = session.generate_final_notes(ai)
    return _respond(result, 503 if not ai.configured else 502)


@app.post("/session/new")
def new_session_inspection(
    session: InspectionSession = Depends(get_session),
    snapshots: LocalSnapshotStore = Depends(get_snapshot_store),
    autosaver: Optional[AutoSaver] = Depends(get_autosaver),
):
    if autosaver is not None:
        autosaver.cancel()
    session.new_inspection()
    snapshots.clear()
    return _respond(_session_state(session, autosaver))


@app.get("/session/snapshot")
def get_session_snapshot(snapshots: LocalSnapshotStore = Depends(get_snapshot_store)):
    backup = snapshots.load()
    if backup is None:
        return _respond({"success": False, "error": "No local backup"}, 404)
    return _respond({"success": True, "timestamp": backup["timestamp"], "data": backup["record"]})


@app.post("/session/snapshot/restore")
def restore_session_snapshot(
    session: InspectionSession = Depends(get_session),
    snapshots: LocalSnapshotStore = Depends(get_snapshot_store),
    autosaver: Optional[AutoSaver] = Depends(get_autosaver),
):
    backup = snapshots.load()
    if backup is None:
        return _respond({"success": False, "error": "No local backup"}, 404)
    if autosaver is not None:
        autosaver.cancel()
    session.load_record(backup["record"])
    return _respond(_session_state(session, autosaver))


@app.post("/session/save")
def save_session(
    session: InspectionSession = Depends(get_session),
    store: BaserowStore = Depends(get_store),
    autosaver: Optional[AutoSaver] = Depends(get_autosaver),
):
    if autosaver is not None:
        # let a running auto-save finish first so its row id is reused
        autosaver.cancel_pending()
        autosaver.wait_idle(settings.HTTP_TIMEOUT)
    result = _save(session.record, store)
    if result.get("success"):
        session.set_row_id(result.get("id"))
    return _respond(result, _store_failure(store, result))


@app.post("/session/load/{row_id}")
def load_session(
    row_id: int,
    session: InspectionSession = Depends(get_session),
    store: BaserowStore = Depends(get_store),
    autosaver: Optional[AutoSaver] = Depends(get_autosaver),
):
    result = store.load(row_id)
    if not result.get("success"):
        return _respond(result, _store_failure(store, result))
    if autosaver is not None:
        autosaver.cancel()
    session.load_record(result["data"])
    if autosaver is not None:
        autosaver.cancel_pending()
    return _respond(_session_state(session, autosaver))


@app.get("/session/pdf")
def export_session_pdf(session: InspectionSession = Depends(get_session)):
    pdf_bytes, filename = _pdf_for(session.record, "exporting")
    return _download(pdf_bytes, filename, "application/pdf")


@app.post("/session/email-content")
def session_email_content(
    session: InspectionSession = Depends(get_session),
    ai: RoofingAI = Depends(get_ai),
):
    return _respond(_email_content(session.record, ai))


@app.post("/session/send-email")
def send_session_email(
    payload: SessionEmailRequest,
    session: InspectionSession = Depends(get_session),
    mailer: ReportMailer = Depends(get_mailer),
):
    return _send_email(session.record, payload.to, payload.cc, payload.subject, payload.body, mailer)
