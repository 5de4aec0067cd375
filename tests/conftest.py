"""Shared fixtures for the Chattie tests."""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing the app
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")
os.environ.setdefault("BUSINESS_OWNER_EMAIL", "owner@example.com")

from fastapi.testclient import TestClient

from chattie.config import Settings
from chattie.database import DatabaseManager
from chattie.main import app
from chattie.models import AIResponse, EmailCategory, EmailClassification, ResponseMode
from chattie.services import Services

OWNER_EMAIL = "owner@example.com"


@pytest.fixture
def db(tmp_path):
    """Database manager on a temporary SQLite file."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'chattie.db'}")
    manager.init_tables()
    yield manager
    manager.close()


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = {
            "anthropic_api_key": "test-key",
            "business_owner_email": OWNER_EMAIL,
            "database_url": f"sqlite:///{tmp_path / 'chattie.db'}",
            "response_mode": ResponseMode.APPROVAL,
            "email_address": "info@tuinbedrijf.nl",
            "email_password": "secret",
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def chat_client():
    """Fake WhatsApp client."""
    mock = MagicMock()
    mock.send = AsyncMock(return_value="SM-123")
    mock.send_to_thread = AsyncMock(return_value="unipile-msg-1")
    return mock


@pytest.fixture
def email_client():
    """Fake mailbox client."""
    mock = MagicMock()
    mock.send = AsyncMock(return_value="<approval-1@tuinbedrijf.nl>")
    mock.create_draft = AsyncMock(return_value="<draft-1@tuinbedrijf.nl>")
    mock.list_unread = AsyncMock(return_value=[])
    mock.list_unprocessed = AsyncMock(return_value=[])
    mock.mark_read = AsyncMock()
    mock.label = AsyncMock()
    return mock


@pytest.fixture
def ai_responder():
    """Fake AI responder."""
    mock = MagicMock()
    mock.suggest_reply = AsyncMock(return_value=AIResponse(message="Bedankt voor je bericht!"))
    mock.classify_email = AsyncMock(
        return_value=EmailClassification(category=EmailCategory.CUSTOMER, confidence=0.9, reason="Offerte aanvraag")
    )
    return mock


@pytest.fixture
def make_services(db, make_settings, chat_client, email_client, ai_responder):
    def _make(response_mode=ResponseMode.APPROVAL, with_email=True):
        return Services(
            settings=make_settings(response_mode=response_mode),
            db_manager=db,
            chat_client=chat_client,
            email_client=email_client if with_email else None,
            ai_responder=ai_responder,
        )
    return _make


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def client(services):
    """Test client wired to the fake services (lifespan not run)."""
    app.state.services = services
    yield TestClient(app)
    app.state.services = None
