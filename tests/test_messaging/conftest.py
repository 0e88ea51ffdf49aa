"""Fixtures for messaging tests: in-memory gateways instead of HTTP."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from benefit_outreach.core.encryption import CredentialEncryption
from benefit_outreach.integrations.email import EmailResult, EmailStatus
from benefit_outreach.integrations.sms import SMSResult, SMSStatus


class FakeSMSGateway:
    """Records messages; built with the same arguments as create_twilio_gateway."""

    def __init__(self, *args, **kwargs):
        self.args = args
        self.kwargs = kwargs
        self.sent = []
        self.closed = False
        self.error: Exception | None = None
        self.fail_with: str | None = None

    async def send(self, message):
        if self.error:
            raise self.error
        self.sent.append(message)
        if self.fail_with:
            return SMSResult(success=False, status=SMSStatus.FAILED, provider="twilio", error_message=self.fail_with)
        return SMSResult(
            success=True,
            message_id=f"SM{len(self.sent)}",
            status=SMSStatus.PENDING,
            provider="twilio",
        )

    async def close(self):
        self.closed = True


class FakeEmailGateway:
    """Records messages; built with the same arguments as create_sendgrid_gateway."""

    def __init__(self, *args, **kwargs):
        self.args = args
        self.kwargs = kwargs
        self.sent = []
        self.closed = False
        self.fail_with: str | None = None

    async def send(self, message):
        self.sent.append(message)
        if self.fail_with:
            return EmailResult(success=False, status=EmailStatus.FAILED, provider="sendgrid", error_message=self.fail_with)
        return EmailResult(
            success=True,
            message_id=f"msg{len(self.sent)}",
            status=EmailStatus.QUEUED,
            provider="sendgrid",
        )

    async def close(self):
        self.closed = True


@pytest.fixture
def encryption() -> CredentialEncryption:
    return CredentialEncryption("0f" * 32)


@pytest.fixture
def system_settings(settings):
    """Settings with system Twilio and SendGrid credentials."""
    settings.messaging.twilio.account_sid = "ACsystem"
    settings.messaging.twilio.auth_token = "system-token"
    settings.messaging.twilio.phone_number = "+15550001111"
    settings.messaging.sendgrid.api_key = "SG.system"
    return settings


@pytest.fixture
def make_factory(db_session, clock, metrics, encryption):
    from benefit_outreach.services.messaging_factory import ClientCache, MessagingServiceFactory

    def _make(settings, **overrides):
        kwargs = {
            "cache": ClientCache(settings.messaging.client_cache_ttl_seconds, clock=clock),
            "encryption": encryption,
            "sms_gateway_factory": FakeSMSGateway,
            "email_gateway_factory": FakeEmailGateway,
            "clock": clock,
            "metrics": metrics,
        }
        kwargs.update(overrides)
        return MessagingServiceFactory(db_session, settings, **kwargs)

    return _make


@pytest.fixture
def mock_http_client():
    """Mock httpx client shared by the Twilio and SendGrid gateways."""
    with patch("httpx.AsyncClient") as mock:
        client = MagicMock()
        client.post = AsyncMock()
        client.get = AsyncMock()
        client.aclose = AsyncMock()
        mock.return_value = client
        yield client


@pytest.fixture
def twilio_gateway(mock_http_client):
    from benefit_outreach.integrations.sms import TwilioSMSGateway

    response = MagicMock()
    response.status_code = 201
    response.json.return_value = {"sid": "SM123456789", "status": "queued", "num_segments": "1"}
    mock_http_client.post.return_value = response

    return TwilioSMSGateway(
        account_sid="AC123456789",
        auth_token="test_auth_token",
        from_number="+15550001111",
    )


@pytest.fixture
def sendgrid_gateway(mock_http_client):
    from benefit_outreach.integrations.email import SendGridEmailGateway

    response = MagicMock()
    response.status_code = 202
    response.headers = {"X-Message-Id": "abc123"}
    mock_http_client.post.return_value = response

    return SendGridEmailGateway(
        api_key="SG.test",
        from_email="noreply@dentite.test",
        from_name="Dentite",
    )
