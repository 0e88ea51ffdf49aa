"""Channel senders.

Each sender resolves the practice's gateway, transmits one message and
returns a SendResult. Senders never raise: configuration problems and
provider failures become success=False. When no provider exists at all
the send is simulated so the surrounding workflow keeps running in
development.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

from benefit_outreach.config import Settings, get_settings
from benefit_outreach.core.exceptions import OutreachError
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.core.metrics import (
    SEND_FAILED,
    SEND_SIMULATED,
    SEND_SUCCEEDED,
    OutreachMetrics,
    get_metrics,
)
from benefit_outreach.db.models import Channel, MessagingProvider
from benefit_outreach.integrations.email import EmailMessage
from benefit_outreach.integrations.email.templates import BENEFIT_ALERT_SUBJECT, benefit_alert_html
from benefit_outreach.integrations.sms import SMSMessage
from benefit_outreach.services.messaging_factory import MessagingServiceFactory

log = get_logger(__name__)


@dataclass
class SendResult:
    """Normalized outcome of one send."""

    success: bool
    message_id: str | None = None
    error: str | None = None
    provider: MessagingProvider = MessagingProvider.SYSTEM
    simulated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "error": self.error,
            "provider": self.provider.value,
            "simulated": self.simulated,
        }


def _simulated_id(prefix: str) -> str:
    return f"{prefix}{time.time_ns() // 1_000_000}"


def _provider_from_error(error: OutreachError, default: MessagingProvider) -> MessagingProvider:
    try:
        return MessagingProvider(error.details.get("provider", default.value))
    except ValueError:
        return default


class _BaseSender:
    channel: Channel
    custom_provider: MessagingProvider

    def __init__(
        self,
        resolver: MessagingServiceFactory,
        settings: Settings | None = None,
        metrics: OutreachMetrics | None = None,
    ) -> None:
        self._resolver = resolver
        self._settings = settings or get_settings()
        self._metrics = metrics or get_metrics()

    @property
    def _base_url(self) -> str:
        return self._settings.messaging.webhook_base_url.rstrip("/")

    def _failed(self, error: str, provider: MessagingProvider) -> SendResult:
        self._metrics.increment(SEND_FAILED)
        return SendResult(success=False, error=error, provider=provider)

    def _simulated(self, prefix: str) -> SendResult:
        self._metrics.increment(SEND_SIMULATED)
        return SendResult(
            success=True,
            message_id=_simulated_id(prefix),
            provider=MessagingProvider.SYSTEM,
            simulated=True,
        )

    def _succeeded(self, message_id: str | None, provider: MessagingProvider) -> SendResult:
        self._metrics.increment(SEND_SUCCEEDED)
        return SendResult(success=True, message_id=message_id, provider=provider)


class SMSSender(_BaseSender):
    """Sends SMS through the practice's Twilio gateway."""

    channel = Channel.SMS
    custom_provider = MessagingProvider.CUSTOM_TWILIO

    def status_callback_url(self, practice_id: UUID | str) -> str:
        return f"{self._base_url}/api/webhooks/twilio?{urlencode({'practice_id': str(practice_id)})}"

    async def send(
        self,
        practice_id: UUID | str,
        recipient: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        try:
            resolved = await self._resolver.resolve_sms(practice_id)
        except OutreachError as e:
            log.error("SMS provider unavailable", practice_id=str(practice_id), error=e.message)
            return self._failed(e.message, _provider_from_error(e, MessagingProvider.SYSTEM))

        if resolved.client is None:
            log.info("Twilio not configured, simulating SMS send", practice_id=str(practice_id))
            return self._simulated("mock_sms_")

        provider = resolved.provider
        try:
            result = await resolved.client.send(
                SMSMessage(
                    to=recipient,
                    body=body,
                    from_number=resolved.config.phone_number or None,
                    status_callback=self.status_callback_url(practice_id),
                )
            )
        except Exception as e:
            log.error("Send SMS error", practice_id=str(practice_id), error=str(e))
            return self._failed(str(e), provider)

        if not result.success:
            return self._failed(result.error_message or "SMS send failed", provider)
        return self._succeeded(result.message_id, provider)


class EmailSender(_BaseSender):
    """Sends email through the practice's SendGrid gateway.

    metadata keys: patient_id, campaign_id, recipient_name, subject.
    """

    channel = Channel.EMAIL
    custom_provider = MessagingProvider.CUSTOM_SENDGRID

    def unsubscribe_url(self, patient_id: UUID | str) -> str:
        query = urlencode({"patient": str(patient_id), "channel": Channel.EMAIL.value})
        return f"{self._base_url}/unsubscribe?{query}"

    async def send(
        self,
        practice_id: UUID | str,
        recipient: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        metadata = metadata or {}

        try:
            resolved = await self._resolver.resolve_email(practice_id)
        except OutreachError as e:
            log.error("Email provider unavailable", practice_id=str(practice_id), error=e.message)
            return self._failed(e.message, _provider_from_error(e, MessagingProvider.SYSTEM))

        if resolved.client is None:
            log.info("SendGrid not configured, simulating email send", practice_id=str(practice_id))
            return self._simulated("mock_email_")

        patient_id = metadata.get("patient_id")
        unsubscribe_url = self.unsubscribe_url(patient_id) if patient_id else None
        provider = resolved.provider

        message = EmailMessage(
            to=recipient,
            subject=metadata.get("subject") or BENEFIT_ALERT_SUBJECT,
            body_text=body,
            body_html=benefit_alert_html(
                metadata.get("recipient_name") or "there",
                body,
                unsubscribe_url=unsubscribe_url,
            ),
            from_email=resolved.config.from_email,
            from_name=resolved.config.from_name,
            custom_args={
                "campaignId": str(metadata.get("campaign_id") or ""),
                "patientId": str(patient_id or ""),
                "practiceId": str(practice_id),
            },
        )

        try:
            result = await resolved.client.send(message)
        except Exception as e:
            log.error("Send email error", practice_id=str(practice_id), error=str(e))
            return self._failed(str(e), provider)

        if not result.success:
            return self._failed(result.error_message or "Email send failed", provider)
        return self._succeeded(result.message_id, provider)
