"""Twilio SMS gateway and webhook parsing.

Sends through the Twilio Messages REST resource. Every outreach SMS
carries its own StatusCallback URL so delivery updates can be matched
back to the practice that sent it.
"""
from __future__ import annotations

from typing import Any

import httpx

from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.integrations.sms.base import (
    SMSGateway,
    SMSMessage,
    SMSResult,
    SMSStatus,
)

log = get_logger(__name__)

PROVIDER = "twilio"

TWILIO_STATUS_MAP: dict[str, SMSStatus] = {
    "queued": SMSStatus.PENDING,
    "accepted": SMSStatus.PENDING,
    "sending": SMSStatus.PENDING,
    "sent": SMSStatus.SENT,
    "delivered": SMSStatus.DELIVERED,
    "failed": SMSStatus.FAILED,
    "undelivered": SMSStatus.FAILED,
    "canceled": SMSStatus.FAILED,
}

# Carrier-standard opt-out keywords
OPT_OUT_KEYWORDS = frozenset({"STOP", "STOPALL", "UNSUBSCRIBE", "CANCEL", "END", "QUIT"})


def _twilio_error(response: httpx.Response) -> str:
    try:
        body = response.json() if response.content else {}
    except (ValueError, TypeError):
        body = {}
    code = body.get("code", response.status_code)
    return f"[{code}] {body.get('message') or f'HTTP {response.status_code}'}"


class TwilioSMSGateway(SMSGateway):
    """Twilio account client. Instances never share an HTTP client.

    API Documentation: https://www.twilio.com/docs/sms/api
    """

    API_BASE = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        messaging_service_sid: str | None = None,
        timeout: float = 30.0,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid

        self._client = httpx.AsyncClient(
            base_url=f"{self.API_BASE}/Accounts/{account_sid}",
            auth=httpx.BasicAuth(account_sid, auth_token),
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    def _form(self, message: SMSMessage) -> dict[str, str]:
        form = {"To": self.normalize_phone(message.to), "Body": message.body}
        # A messaging service picks the sender itself
        if self.messaging_service_sid:
            form["MessagingServiceSid"] = self.messaging_service_sid
        else:
            form["From"] = message.from_number or self.from_number
        if message.status_callback:
            form["StatusCallback"] = message.status_callback
        return form

    async def send(self, message: SMSMessage) -> SMSResult:
        try:
            response = await self._client.post("/Messages.json", data=self._form(message))
        except httpx.TimeoutException:
            log.error("Twilio request timed out", account_sid=self.account_sid)
            return SMSResult.failed(PROVIDER, "Request timeout")
        except httpx.HTTPError as e:
            log.error("Twilio request failed", account_sid=self.account_sid, error=str(e))
            return SMSResult.failed(PROVIDER, str(e))

        if response.status_code not in (200, 201):
            error = _twilio_error(response)
            log.error("Twilio rejected SMS", status_code=response.status_code, error=error)
            return SMSResult.failed(PROVIDER, error)

        body = response.json()
        twilio_status = body.get("status", "queued")
        log.info("SMS accepted by Twilio", message_sid=body.get("sid"), status=twilio_status)
        return SMSResult(
            success=True,
            message_id=body.get("sid", ""),
            status=TWILIO_STATUS_MAP.get(twilio_status, SMSStatus.PENDING),
            provider=PROVIDER,
        )

    async def close(self) -> None:
        await self._client.aclose()


def create_twilio_gateway(
    account_sid: str,
    auth_token: str,
    from_number: str,
    *,
    messaging_service_sid: str | None = None,
    timeout: float = 30.0,
) -> TwilioSMSGateway:
    """Build a fresh gateway for one credential set."""
    return TwilioSMSGateway(
        account_sid,
        auth_token,
        from_number,
        messaging_service_sid=messaging_service_sid or None,
        timeout=timeout,
    )


class TwilioWebhookHandler:
    """Normalizes the form posts Twilio sends back.

    Status callbacks (MessageSid, MessageStatus, ErrorCode, ErrorMessage)
    move through queued -> sending -> sent -> delivered, or end in
    failed/undelivered. Inbound messages carry MessageSid, From, To, Body.
    """

    @staticmethod
    def parse_status(data: dict[str, Any]) -> dict[str, Any]:
        twilio_status = data.get("MessageStatus") or data.get("SmsStatus") or "unknown"
        return {
            "provider_message_id": data.get("MessageSid") or data.get("SmsSid") or "",
            "status": TWILIO_STATUS_MAP.get(twilio_status, SMSStatus.UNKNOWN).value,
            "twilio_status": twilio_status,
            "to_number": data.get("To", ""),
            "error_code": data.get("ErrorCode"),
            "error_message": data.get("ErrorMessage"),
        }

    @staticmethod
    def parse_inbound(data: dict[str, Any]) -> dict[str, Any]:
        body = (data.get("Body") or "").strip()
        return {
            "provider_message_id": data.get("MessageSid", ""),
            "from_number": SMSGateway.normalize_phone(data.get("From", "")),
            "to_number": data.get("To", ""),
            "body": body,
            "keyword": body.upper(),
        }

    @staticmethod
    def is_opt_out(keyword: str) -> bool:
        return keyword.strip().upper() in OPT_OUT_KEYWORDS

    @staticmethod
    def failure_reason(data: dict[str, Any]) -> str:
        if data.get("ErrorMessage"):
            return str(data["ErrorMessage"])
        return f"Error code: {data.get('ErrorCode') or 'unknown'}"
