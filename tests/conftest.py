from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.models import Recipient
from app.letters.renderers.base import BaseRenderer, LayoutOptions
from app.notification.email_sender import EmailSender, SmtpTransport
from app.notification.webhook import WebhookNotifier, WebhookOutcome

MAIL_FROM = "Unessa Foundation <noreply@unessa.org>"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeRenderer(BaseRenderer):
    """Wraps the markup in a PDF header and records every call."""

    name = "fake"
    bounded_in_thread = False

    def __init__(self, error: Exception | None = None) -> None:
        super().__init__(timeout_s=5)
        self.error = error
        self.calls: list[str] = []

    def _render(self, content: str, layout: LayoutOptions) -> bytes:
        self.calls.append(content)
        if self.error is not None:
            raise self.error
        return b"%PDF-1.4\n" + content.encode("utf-8")


class RecordingNotifier(WebhookNotifier):
    def __init__(self) -> None:
        super().__init__(None)
        self.payloads: list[dict] = []

    def deliver(self, payload: dict) -> WebhookOutcome:
        self.payloads.append(payload)
        return WebhookOutcome(delivered=True, attempts=1, status_code=200)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def db_session():
    """In-memory SQLite session with all tables created."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture()
def recipient(db_session: Session) -> Recipient:
    asha = Recipient(name="Asha Rao", email="asha@example.com", username="asharao4821")
    db_session.add(asha)
    db_session.flush()
    return asha


@pytest.fixture()
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture()
def smtp_transport() -> MagicMock:
    transport = MagicMock(spec=SmtpTransport)
    transport.send_message.return_value = {}
    return transport


@pytest.fixture()
def email_sender(smtp_transport: MagicMock) -> EmailSender:
    return EmailSender(smtp_transport, MAIL_FROM)


@pytest.fixture()
def webhook_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def artifact_dir(tmp_path):
    return tmp_path / "offers"


@pytest.fixture()
def client(
    db_session: Session,
    fake_renderer: FakeRenderer,
    email_sender: EmailSender,
    webhook_notifier: RecordingNotifier,
    artifact_dir,
    monkeypatch: pytest.MonkeyPatch,
) -> TestClient:
    """TestClient wired to the in-memory session and the test doubles."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("ARTIFACT_BACKEND", "filesystem")
    monkeypatch.setenv("ARTIFACT_DIR", str(artifact_dir))

    from app.core.settings import get_settings

    get_settings.cache_clear()

    from app.api.deps import get_db, get_email_sender, get_renderer, get_webhook_notifier
    from app.api.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_renderer] = lambda: fake_renderer
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_webhook_notifier] = lambda: webhook_notifier
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()
    get_settings.cache_clear()
