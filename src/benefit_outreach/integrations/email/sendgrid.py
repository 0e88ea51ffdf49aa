"""SendGrid email gateway and event webhook parsing.

Outreach email goes through the v3 mail/send endpoint with open and
click tracking on, and with campaign/patient/practice ids as
custom_args so every event SendGrid posts back can be correlated.
"""

from __future__ import annotations

from typing import Any

import httpx

from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.integrations.email.base import (
    EmailGateway,
    EmailMessage,
    EmailResult,
    EmailStatus,
)

log = get_logger(__name__)

PROVIDER = "sendgrid"

SENDGRID_EVENT_MAP: dict[str, EmailStatus] = {
    "processed": EmailStatus.QUEUED,
    "dropped": EmailStatus.FAILED,
    "deferred": EmailStatus.PENDING,
    "delivered": EmailStatus.DELIVERED,
    "bounce": EmailStatus.BOUNCED,
    "open": EmailStatus.OPENED,
    "click": EmailStatus.CLICKED,
    "spamreport": EmailStatus.SPAM,
    "unsubscribe": EmailStatus.UNSUBSCRIBED,
}


def _sendgrid_error(response: httpx.Response) -> str:
    try:
        body = response.json() if response.content else {}
    except (ValueError, TypeError):
        body = {}
    messages = [e.get("message", "Unknown error") for e in body.get("errors", [])]
    return "; ".join(messages) if messages else f"HTTP {response.status_code}"


class SendGridEmailGateway(EmailGateway):
    """SendGrid client for one API key.

    A practice's own key never shares a client with the system key.

    API Documentation: https://docs.sendgrid.com/api-reference/mail-send
    """

    API_BASE = "https://api.sendgrid.com/v3"

    def __init__(
        self,
        api_key: str,
        from_email: str | None = None,
        from_name: str | None = None,
        timeout: float = 30.0,
    ):
        self.from_email = from_email
        self.from_name = from_name

        self._client = httpx.AsyncClient(
            base_url=self.API_BASE,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    def _payload(self, message: EmailMessage, sender: dict[str, str]) -> dict[str, Any]:
        content = []
        if message.body_text:
            content.append({"type": "text/plain", "value": message.body_text})
        if message.body_html:
            content.append({"type": "text/html", "value": message.body_html})

        payload: dict[str, Any] = {
            "personalizations": [{"to": [{"email": to} for to in message.to]}],
            "from": sender,
            "subject": message.subject,
            "content": content,
            "tracking_settings": {
                "click_tracking": {"enable": True, "enable_text": True},
                "open_tracking": {"enable": True},
            },
        }
        if message.custom_args:
            # SendGrid rejects non-string values
            payload["custom_args"] = {k: str(v) for k, v in message.custom_args.items()}
        return payload

    async def send(self, message: EmailMessage) -> EmailResult:
        errors = self.validate_message(message)
        if errors:
            return EmailResult.failed(PROVIDER, "; ".join(errors))

        from_email = message.from_email or self.from_email
        if not from_email:
            return EmailResult.failed(PROVIDER, "No sender email configured")
        sender = {"email": from_email}
        from_name = message.from_name or self.from_name
        if from_name:
            sender["name"] = from_name

        try:
            response = await self._client.post("/mail/send", json=self._payload(message, sender))
        except httpx.TimeoutException:
            log.error("SendGrid request timed out")
            return EmailResult.failed(PROVIDER, "Request timeout", "TIMEOUT")
        except httpx.HTTPError as e:
            log.error("SendGrid request failed", error=str(e))
            return EmailResult.failed(PROVIDER, str(e))

        if response.status_code not in (200, 202):
            error = _sendgrid_error(response)
            log.error("SendGrid rejected email", status_code=response.status_code, error=error)
            return EmailResult.failed(PROVIDER, error, str(response.status_code))

        message_id = response.headers.get("X-Message-Id", "")
        log.info("Email accepted by SendGrid", message_id=message_id)
        return EmailResult(
            success=True,
            message_id=message_id,
            status=EmailStatus.QUEUED,
            provider=PROVIDER,
        )

    async def close(self) -> None:
        await self._client.aclose()


def create_sendgrid_gateway(
    api_key: str,
    from_email: str,
    from_name: str | None = None,
    *,
    timeout: float = 30.0,
) -> SendGridEmailGateway:
    """Build a fresh gateway for one API key."""
    if not api_key:
        raise ValueError("SendGrid API key is required")
    return SendGridEmailGateway(api_key, from_email, from_name, timeout=timeout)


class SendGridWebhookHandler:
    """Normalizes the JSON event arrays SendGrid posts.

    Event documentation: https://docs.sendgrid.com/for-developers/tracking-events
    """

    @staticmethod
    def message_id_from_event(sg_message_id: str) -> str:
        """X-Message-Id without the filter suffix.

        "abc123.filterdrecv-p3mdw1-75.0" -> "abc123"
        """
        return sg_message_id.split(".", 1)[0] if sg_message_id else ""

    @classmethod
    def parse_event(cls, event: dict[str, Any]) -> dict[str, Any]:
        event_type = event.get("event", "")
        parsed = {
            "provider_message_id": cls.message_id_from_event(event.get("sg_message_id", "")),
            "event_type": event_type,
            "status": SENDGRID_EVENT_MAP.get(event_type, EmailStatus.UNKNOWN).value,
            "email": event.get("email", ""),
            "timestamp": event.get("timestamp"),
            "sg_event_id": event.get("sg_event_id", ""),
            "patient_id": event.get("patientId"),
            "campaign_id": event.get("campaignId"),
            "practice_id": event.get("practiceId"),
        }
        if event_type in ("bounce", "dropped"):
            parsed["bounce_type"] = event.get("type") or "hard"
            parsed["bounce_reason"] = event.get("reason", "")
        elif event_type == "click":
            parsed["url"] = event.get("url", "")
        return parsed

    @classmethod
    def parse_webhook(cls, events: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [cls.parse_event(event) for event in events]
