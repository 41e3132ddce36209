"""Unit tests for application settings."""

import pydantic
import pytest

from src.config import Settings


class TestRequiredSigningConfig:
    """JWT_KEY and JWT_ISSUER must be present and non-blank."""

    def test_missing_key_fails(self, monkeypatch):
        monkeypatch.delenv("JWT_KEY", raising=False)
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None)

    def test_missing_issuer_fails(self, monkeypatch):
        monkeypatch.delenv("JWT_ISSUER", raising=False)
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None)

    @pytest.mark.parametrize("field", ["jwt_key", "jwt_issuer"])
    def test_blank_value_fails(self, field):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, **{field: "   "})

    def test_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("JWT_KEY", "env-key")
        monkeypatch.setenv("JWT_ISSUER", "env-issuer")
        settings = Settings(_env_file=None)
        assert settings.jwt_key == "env-key"
        assert settings.jwt_issuer == "env-issuer"


class TestDefaults:
    def test_token_lifetimes(self, settings):
        assert settings.access_token_expire_minutes == 60
        assert settings.confirmation_token_ttl_minutes == 60
        assert settings.reset_token_ttl_minutes == 30
        assert settings.reset_token_single_use is True

    def test_account_policy(self, settings):
        assert settings.require_confirmed_email is True
        assert settings.mask_unknown_email_on_forgot is False
        assert settings.password_min_length == 6


class TestListProperties:
    def test_blocked_keywords_are_trimmed_and_lowercased(self, settings):
        settings.email_blocked_keywords = " Mailinator, ,TEMPMAIL ,"
        assert settings.blocked_keywords_list == ["mailinator", "tempmail"]

    def test_empty_blocklist(self, settings):
        settings.email_blocked_keywords = ""
        assert settings.blocked_keywords_list == []

    def test_cors_origins(self, settings):
        settings.cors_origins = "http://localhost:5173, https://app.example.org"
        assert settings.cors_origins_list == ["http://localhost:5173", "https://app.example.org"]
