"""Pytest configuration and shared fixtures."""

import os
import tempfile

# settings reads the environment at import time
os.environ["DATA_ROOT"] = tempfile.mkdtemp(prefix="roof-report-")
os.environ["AUTO_SAVE_ENABLED"] = "false"
for _name in ("OPENAI_API_KEY", "BASEROW_API_TOKEN", "SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD"):
    os.environ[_name] = ""

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from inspection_session import InspectionSession, LocalSnapshotStore  # noqa: E402
from models import InspectionRecord, Section, Severity  # noqa: E402
from report_app import app  # noqa: E402
from services import get_autosaver, get_session, get_snapshot_store  # noqa: E402

# 1x1 grey PNG
PNG_DATA_URI = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


class FakeTranslator:
    """Dictionary-backed translator; records every call."""

    def __init__(self, answers=None, strict_answers=None):
        self.answers = answers or {}
        self.strict_answers = strict_answers or {}
        self.calls = []

    def translate(self, text, strict=False):
        self.calls.append((text, strict))
        table = self.strict_answers if strict else self.answers
        return table.get(text, text)


def completion(content):
    """Shape of an OpenAI chat completion, enough for RoofingAI._complete."""
    message = Mock()
    message.content = content
    choice = Mock()
    choice.message = message
    result = Mock()
    result.choices = [choice]
    return result


@pytest.fixture
def translator() -> FakeTranslator:
    return FakeTranslator()


@pytest.fixture
def snapshot_store(tmp_path) -> LocalSnapshotStore:
    return LocalSnapshotStore(str(tmp_path / "snapshots" / "current_inspection.json"))


@pytest.fixture
def session(translator, snapshot_store) -> InspectionSession:
    session = InspectionSession(translator=translator)
    session.subscribe(snapshot_store)
    return session


@pytest.fixture
def sample_record() -> InspectionRecord:
    return InspectionRecord(
        customer_name="Jane Doe",
        customer_email="jane@example.com",
        address="123 Main St, Daly City, CA",
        date="2024-05-01",
        sections=[
            Section(
                issue="Loose shingles",
                title="Loose Shingles On South Slope",
                description=(
                    "OBSERVED CONDITION: Several shingles are loose.\n"
                    "POTENTIAL IMPACT IF UNADDRESSED: Wind can lift them."
                ),
                severity=Severity.LOW,
            ),
            Section(
                issue="Missing ridge cap",
                title="Missing Ridge Cap",
                description="OBSERVED CONDITION: Ridge cap is missing. POTENTIAL IMPACT IF UNADDRESSED: Leaks.",
                severity=Severity.CRITICAL,
                photos=[PNG_DATA_URI],
            ),
        ],
        final_notes=(
            "TECHNICAL ROOF CONDITION ASSESSMENT\nThe roof is aging.\n\n"
            "FINDINGS:\nTwo issues.\n\nRECOMMENDATIONS:\nRepair within 30 days."
        ),
    )


@pytest.fixture
def test_client() -> TestClient:
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def api(test_client, session, snapshot_store):
    """Client wired to an isolated session, snapshot store and no auto-saver."""
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_snapshot_store] = lambda: snapshot_store
    app.dependency_overrides[get_autosaver] = lambda: None
    return test_client
