"""
Tests for settings loading
"""
import pytest
from pydantic import ValidationError

from chattie.config import Settings, get_settings, load_settings_or_exit
from chattie.models import ResponseMode


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Test settings validation"""

    def test_defaults(self):
        settings = Settings(anthropic_api_key="key", business_owner_email="owner@example.com")
        assert settings.response_mode == ResponseMode.APPROVAL
        assert settings.context_window == 20
        assert settings.follow_up_delay_days == 2
        assert settings.max_follow_ups == 3

    def test_response_mode_from_env(self, monkeypatch):
        monkeypatch.setenv("RESPONSE_MODE", "auto")
        settings = Settings(anthropic_api_key="key", business_owner_email="owner@example.com")
        assert settings.response_mode == ResponseMode.AUTO

    def test_invalid_response_mode(self):
        with pytest.raises(ValidationError):
            Settings(anthropic_api_key="key", business_owner_email="owner@example.com", response_mode="sometimes")

    def test_blank_api_key_rejected(self):
        with pytest.raises(ValidationError):
            Settings(anthropic_api_key="  ", business_owner_email="owner@example.com")

    def test_invalid_owner_email_rejected(self):
        with pytest.raises(ValidationError):
            Settings(anthropic_api_key="key", business_owner_email="not-an-email")

    def test_malformed_owner_domain_rejected(self):
        with pytest.raises(ValidationError):
            Settings(anthropic_api_key="key", business_owner_email="owner@example..com")

    def test_owner_email_whitespace_stripped(self):
        settings = Settings(anthropic_api_key="key", business_owner_email="  owner@example.com ")
        assert settings.business_owner_email == "owner@example.com"

    def test_sqlalchemy_url_from_parts(self):
        settings = Settings(
            anthropic_api_key="key",
            business_owner_email="owner@example.com",
            database_url=None,
            db_host="db",
            db_user="chattie",
            db_password="pw",
        )
        assert settings.sqlalchemy_url == "postgresql+psycopg://chattie:pw@db:5432/chattie"

    def test_database_url_wins(self):
        settings = Settings(
            anthropic_api_key="key",
            business_owner_email="owner@example.com",
            database_url="sqlite:///chattie.db",
        )
        assert settings.sqlalchemy_url == "sqlite:///chattie.db"

    def test_channel_flags(self, make_settings):
        settings = make_settings()
        assert settings.email_configured is True
        assert settings.use_unipile is False

        settings = make_settings(email_password="", unipile_api_key="key")
        assert settings.email_configured is False
        assert settings.use_unipile is True


class TestLoadSettingsOrExit:
    """Test startup behaviour on bad configuration"""

    def test_exits_on_invalid_configuration(self, monkeypatch, fresh_settings):
        monkeypatch.setenv("BUSINESS_OWNER_EMAIL", "not-an-email")
        with pytest.raises(SystemExit) as exc_info:
            load_settings_or_exit()
        assert exc_info.value.code == 1

    def test_loads_valid_configuration(self, monkeypatch, fresh_settings):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
        monkeypatch.setenv("BUSINESS_OWNER_EMAIL", "owner@example.com")
        assert load_settings_or_exit().business_owner_email == "owner@example.com"
