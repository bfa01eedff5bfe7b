"""
The inspection being edited, plus its local snapshot and auto-save.

``InspectionSession`` owns the form state for the single active user. Every
mutation emits a change event; the snapshot store and the auto-saver are
ordinary listeners.
"""

import json
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import settings
from exceptions import LanguageGateError, LocalInputError, ReportValidationError
from language_gate import Translator, clean_field_text, detect_spanish, ensure_english, require_english
from models import InspectionRecord, Section

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_WORDS = 100
TRANSCRIPT_TARGETS = ("issue", "final_notes", "field_notes")

Listener = Callable[[InspectionRecord], None]


class InspectionSession:
    def __init__(self, record: Optional[InspectionRecord] = None, translator: Optional[Translator] = None):
        self.record = record or InspectionRecord()
        self.translator = translator
        # Bumped whenever a different inspection replaces the current one.
        self.generation = 0
        self._listeners: List[Listener] = []

    # ---------- events ----------

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.record)
            except Exception:
                logger.exception("Session listener %r failed", listener)

    # ---------- plain fields ----------

    def update_fields(self, **changes: Any) -> InspectionRecord:
        changes = {k: v for k, v in changes.items() if v is not None}
        unknown = set(changes) - set(InspectionRecord.model_fields)
        if unknown or "sections" in changes:
            raise ReportValidationError(f"Unknown fields: {', '.join(sorted(unknown or {'sections'}))}")
        self.record = self.record.model_copy(update=changes)
        self._changed()
        return self.record

    def set_final_notes(self, text: str) -> InspectionRecord:
        return self.update_fields(final_notes=text or "")

    def set_field_notes(self, text: str) -> InspectionRecord:
        return self.update_fields(inspector_field_notes=text or "")

    def set_row_id(self, row_id: Optional[int]) -> None:
        # Identity only; not a form edit, so no change event.
        self.record = self.record.model_copy(update={"row_id": row_id})

    def load_record(self, record: InspectionRecord) -> None:
        self.generation += 1
        self.record = record
        self._changed()

    def new_inspection(self) -> InspectionRecord:
        self.generation += 1
        self.record = InspectionRecord()
        self._changed()
        return self.record

    # ---------- sections ----------

    def _english(self, text: str) -> str:
        if self.translator is None:
            return text
        return ensure_english(text, self.translator)

    def add_section(self, section: Section) -> Section:
        """Translate, check and store ``section`` (append, or replace by id).

        Nothing is stored when translation fails or Spanish remains.
        """
        if not section.issue.strip():
            raise ReportValidationError("Please enter an issue")

        issue = self._english(section.issue)
        title = self._english(section.title) if section.title else issue
        description = self._english(section.description)

        if detect_spanish(issue) or detect_spanish(title) or detect_spanish(description):
            raise LanguageGateError("Translation incomplete - Spanish words detected. Please try again.")

        cleaned = section.model_copy(update={
            "issue": clean_field_text(issue),
            "title": clean_field_text(title),
            "description": clean_field_text(description, capitalize=False),
        })

        sections = list(self.record.sections)
        for index, existing in enumerate(sections):
            if existing.id == cleaned.id:
                sections[index] = cleaned
                logger.info("Section %s updated", cleaned.id)
                break
        else:
            sections.append(cleaned)
            logger.info("Section %s added", cleaned.id)

        self.record = self.record.model_copy(update={"sections": sections})
        self._changed()
        return cleaned

    def delete_section(self, section_id: str) -> bool:
        sections = [s for s in self.record.sections if s.id != section_id]
        if len(sections) == len(self.record.sections):
            return False
        self.record = self.record.model_copy(update={"sections": sections})
        self._changed()
        return True

    def get_section(self, section_id: str) -> Optional[Section]:
        for section in self.record.sections:
            if section.id == section_id:
                return section
        return None

    # ---------- voice input ----------

    def apply_transcript(self, target: str, transcript: str) -> str:
        """Translate a transcript into ``target``; returns the English text.

        For ``issue`` the text is returned for the section form and not stored;
        notes targets are appended to the existing notes.
        """
        if target not in TRANSCRIPT_TARGETS:
            raise ReportValidationError(f"Unknown transcript target: {target}")
        if not (transcript or "").strip():
            raise LocalInputError("Transcription returned no text. Please record again.")

        if target == "issue":
            words = transcript.strip().split()
            limited = " ".join(words[:MAX_TRANSCRIPT_WORDS])
            translated = self._english(limited)
            if detect_spanish(translated):
                raise LanguageGateError("Translation contains Spanish words. Please try recording again.")
            return clean_field_text(translated)

        translated = self._english(transcript.strip())
        if target == "final_notes":
            previous = self.record.final_notes
            self.set_final_notes(f"{previous} {translated}" if previous else translated)
        else:
            previous = self.record.inspector_field_notes
            self.set_field_notes(f"{previous} {translated}" if previous else translated)
        return translated

    # ---------- AI final notes ----------

    def generate_final_notes(self, ai) -> Dict[str, Any]:
        result = ai.generate_final_notes(
            sections=self.record.sections,
            address=self.record.address,
            inspector=self.record.inspector,
            inspector_field_notes=self.record.inspector_field_notes,
        )
        if result.get("success"):
            self.set_final_notes(result["final_notes"])
        return result


# ===================== Local snapshot =====================

class LocalSnapshotStore:
    """Single-key recovery snapshot, overwritten on every change."""

    KEY = "current_inspection"

    def __init__(self, path: Optional[str] = None):
        self.path = path or settings.SNAPSHOT_PATH

    def save(self, record: InspectionRecord) -> None:
        if not (record.sections or record.address):
            return
        payload = {
            self.KEY: record.model_dump(mode="json", by_alias=True),
            "timestamp": int(time.time() * 1000),
        }
        tmp_path = f"{self.path}.tmp"
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        os.replace(tmp_path, self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        """``{"record": InspectionRecord, "timestamp": ms}`` or None."""
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            record = InspectionRecord.model_validate(payload[self.KEY])
        except (OSError, ValueError, KeyError) as exc:
            logger.error("Failed to load backup: %s", exc)
            return None
        return {"record": record, "timestamp": payload.get("timestamp")}

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)

    def __call__(self, record: InspectionRecord) -> None:
        try:
            self.save(record)
        except OSError as exc:
            logger.error("Failed to write local backup: %s", exc)


# ===================== Auto-save =====================

class AutoSaver:
    """Debounced remote save with at most one request in flight.

    A change that arrives while a save is running is not dropped: it marks
    the state dirty and another save is scheduled when the running one ends.
    Records that still contain Spanish are never sent.
    """

    def __init__(
        self,
        session: InspectionSession,
        store,
        delay: Optional[float] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.session = session
        self.store = store
        self.delay = settings.AUTO_SAVE_DELAY if delay is None else delay
        self.timer_factory = timer_factory
        self.status = "saved"
        self.last_error: Optional[str] = None
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._timer: Optional[threading.Timer] = None
        self._in_flight = False
        self._dirty = False
        self._generation = 0

    def __call__(self, record: InspectionRecord) -> None:
        self.trigger(record)

    def trigger(self, record: Optional[InspectionRecord] = None) -> None:
        record = record or self.session.record
        with self._lock:
            self._cancel_timer()
            if not record.is_reportable():
                return
            self.status = "unsaved"
            if self._in_flight:
                self._dirty = True
                return
            self._timer = self.timer_factory(self.delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel_pending(self) -> None:
        """Drop the scheduled save; a save already running is left alone."""
        with self._lock:
            self._cancel_timer()
            self._dirty = False

    def cancel(self) -> None:
        """Drop the scheduled save and ignore the result of a running one."""
        with self._lock:
            self._cancel_timer()
            self._dirty = False
            self._generation += 1
            self.status = "saved"

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no save is in flight; False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._in_flight, timeout)

    def flush(self) -> Optional[Dict[str, Any]]:
        """Save now; returns the store result, or None when nothing ran."""
        with self._lock:
            self._timer = None
            if self._in_flight:
                self._dirty = True
                return None
            record = self.session.record
            if not record.is_reportable():
                return None
            try:
                require_english(record, "saving")
            except LanguageGateError as exc:
                self.status = "unsaved"
                self.last_error = str(exc)
                logger.warning("Auto-save skipped: %s", exc)
                return None
            self._in_flight = True
            self._dirty = False
            self.status = "saving"
            generation = self._generation
            session_generation = self.session.generation

        result = None
        try:
            result = self.store.save(record)
        finally:
            with self._lock:
                self._in_flight = False
                self._idle.notify_all()
                stale = generation != self._generation
                if stale:
                    logger.info("Discarding result of a cancelled auto-save")
                elif result and result.get("success"):
                    self.status = "saved"
                    self.last_error = None
                else:
                    self.status = "unsaved"
                    self.last_error = (result or {}).get("error", "Auto-save failed")
                    logger.warning("Auto-save failed: %s", self.last_error)
                rerun = self._dirty and not stale

        saved = bool(result and result.get("success"))
        if (
            saved
            and not stale
            and self.session.generation == session_generation
            and self.session.record.row_id is None
        ):
            self.session.set_row_id(result.get("id"))

        if rerun:
            self.trigger()
        return result
