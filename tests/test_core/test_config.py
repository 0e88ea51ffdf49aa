"""Tests for settings loading and production checks."""

from __future__ import annotations

from benefit_outreach.config import Settings, validate_production_settings


def test_defaults():
    settings = Settings()

    assert settings.outreach.cooldown_days == 7
    assert settings.outreach.sequence_claim_lease_seconds == 600
    assert settings.messaging.webhook_base_url == "https://localhost"
    assert settings.system_twilio_configured is False
    assert settings.system_sendgrid_configured is False


def test_nested_environment_overrides(monkeypatch):
    monkeypatch.setenv("OUTREACH_OUTREACH__COOLDOWN_DAYS", "3")
    monkeypatch.setenv("OUTREACH_MESSAGING__TWILIO__ACCOUNT_SID", "AC1")
    monkeypatch.setenv("OUTREACH_MESSAGING__TWILIO__AUTH_TOKEN", "token")

    settings = Settings()

    assert settings.outreach.cooldown_days == 3
    assert settings.system_twilio_configured is True


def test_development_is_not_checked():
    assert validate_production_settings(Settings(environment="development")) == []


def test_production_requires_key_and_public_url():
    errors = validate_production_settings(Settings(environment="production"))

    assert len(errors) == 2
    assert "ENCRYPTION_KEY" in errors[0]
    assert "WEBHOOK_BASE_URL" in errors[1]


def test_valid_production_settings():
    settings = Settings(environment="production")
    settings.security.encryption_key = "0f" * 32
    settings.messaging.webhook_base_url = "https://outreach.example.com"

    assert validate_production_settings(settings) == []
