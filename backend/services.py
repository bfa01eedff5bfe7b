"""FastAPI dependency providers for the single-user backend."""

from functools import lru_cache
from typing import Optional

import settings
from ai_text import RoofingAI
from baserow_store import BaserowStore
from inspection_session import AutoSaver, InspectionSession, LocalSnapshotStore
from mailer import ReportMailer


@lru_cache()
def get_ai() -> RoofingAI:
    return RoofingAI()


@lru_cache()
def get_store() -> BaserowStore:
    return BaserowStore()


@lru_cache()
def get_mailer() -> ReportMailer:
    return ReportMailer()


@lru_cache()
def get_snapshot_store() -> LocalSnapshotStore:
    return LocalSnapshotStore()


@lru_cache()
def get_autosaver() -> Optional[AutoSaver]:
    if not settings.AUTO_SAVE_ENABLED:
        return None
    return AutoSaver(get_session(), get_store())


@lru_cache()
def get_session() -> InspectionSession:
    session = InspectionSession(translator=get_ai())
    session.subscribe(get_snapshot_store())
    return session


def start_autosave() -> None:
    """Attach the auto-saver to the session; called once at app startup."""
    autosaver = get_autosaver()
    if autosaver is not None:
        get_session().subscribe(autosaver)
