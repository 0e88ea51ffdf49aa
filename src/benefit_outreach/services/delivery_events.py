"""Delivery event ingestion.

Applies Twilio status callbacks, inbound SMS and SendGrid events to the
outreach log they describe (matched on external_id), records each event
once as a MessageEventModel, and turns unsubscribes into opt-outs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.db.models import Channel, LogStatus, MessageEventModel, OutreachLogModel
from benefit_outreach.db.repositories import (
    MessageEventRepository,
    OutreachLogRepository,
    PatientRepository,
    PreferencesRepository,
)
from benefit_outreach.integrations.email import SendGridWebhookHandler
from benefit_outreach.integrations.sms import SMSStatus, TwilioWebhookHandler

log = get_logger(__name__)

# Statuses a late callback must not overwrite
_FINAL_STATUSES = (
    LogStatus.DELIVERED.value,
    LogStatus.RESPONDED.value,
    LogStatus.FAILED.value,
)

UNSUBSCRIBE_REASONS = {
    Channel.EMAIL: "User unsubscribed via email",
    Channel.SMS: "User unsubscribed via link",
}
SPAM_REASON = "Marked as spam"


def _event_time(timestamp: Any) -> datetime | None:
    """SendGrid unix timestamp as naive UTC."""
    if timestamp in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


class DeliveryEventService:
    """Provider webhook handling for one database session."""

    def __init__(self, session: AsyncSession, clock: Clock = utc_now) -> None:
        self._session = session
        self._clock = clock
        self._logs = OutreachLogRepository(session)
        self._events = MessageEventRepository(session)
        self._patients = PatientRepository(session)
        self._preferences = PreferencesRepository(session)

    def _record_event(
        self,
        outreach_log: OutreachLogModel,
        event_type: str,
        occurred_at: datetime,
        provider: str,
        payload: dict[str, Any],
    ) -> None:
        now = self._clock()
        self._session.add(
            MessageEventModel(
                outreach_log_id=outreach_log.id,
                event_type=event_type,
                occurred_at=occurred_at,
                provider=provider,
                payload=payload,
                created_at=now,
                updated_at=now,
            )
        )

    # ------------------------------------------------------------------
    # Twilio
    # ------------------------------------------------------------------

    async def handle_twilio_status(self, data: dict[str, Any]) -> bool:
        """Apply a Twilio status callback.

        Returns:
            True if the event was applied, False if ignored or a duplicate
        """
        parsed = TwilioWebhookHandler.parse_status(data)
        message_id = parsed["provider_message_id"]
        status = parsed["status"]

        if not message_id or status in (SMSStatus.PENDING.value, SMSStatus.UNKNOWN.value):
            return False

        outreach_log = await self._logs.get_by_external_id(message_id)
        if outreach_log is None:
            log.warning("Status callback for unknown message", message_id=message_id)
            return False

        event_type = parsed["twilio_status"]
        # Twilio callbacks carry no event time; one event per type per message
        if await self._events.exists_for(outreach_log.id, event_type):
            log.debug("Duplicate Twilio status", message_id=message_id, status=event_type)
            return False

        now = self._clock()
        if status == SMSStatus.DELIVERED.value:
            if outreach_log.status != LogStatus.RESPONDED.value:
                outreach_log.status = LogStatus.DELIVERED.value
            outreach_log.delivered_at = now
        elif status == SMSStatus.SENT.value:
            if outreach_log.status not in _FINAL_STATUSES:
                outreach_log.status = LogStatus.SENT.value
            outreach_log.sent_at = outreach_log.sent_at or now
        elif status == SMSStatus.FAILED.value:
            if outreach_log.status != LogStatus.RESPONDED.value:
                outreach_log.status = LogStatus.FAILED.value
            outreach_log.error_message = TwilioWebhookHandler.failure_reason(data)
        outreach_log.updated_at = now

        self._record_event(outreach_log, event_type, now, "twilio", dict(data))
        await self._session.commit()

        log.info("SMS status updated", message_id=message_id, status=event_type)
        return True

    async def handle_twilio_inbound(
        self, data: dict[str, Any], practice_id: UUID | str | None = None
    ) -> str:
        """Handle an inbound SMS.

        Opt-out keywords set sms_opt_out for every patient on that number;
        anything else marks the latest SMS to them as responded.

        Returns:
            "opted_out", "responded" or "ignored"
        """
        parsed = TwilioWebhookHandler.parse_inbound(data)
        patients = await self._patients.find_by_phone(parsed["from_number"], practice_id)
        if not patients:
            log.info("Inbound SMS from unknown number")
            return "ignored"

        now = self._clock()
        keyword = parsed["keyword"]

        if TwilioWebhookHandler.is_opt_out(keyword):
            for patient in patients:
                await self._preferences.set_opt_out(
                    patient.id, Channel.SMS, f"User sent {keyword} keyword", now
                )
            await self._session.commit()
            log.info("Patients opted out via SMS", count=len(patients), keyword=keyword)
            return "opted_out"

        latest = await self._logs.latest_sms_for_patients([p.id for p in patients])
        if latest is None:
            return "ignored"

        latest.status = LogStatus.RESPONDED.value
        latest.responded_at = now
        latest.updated_at = now
        await self._session.commit()
        log.info("Patient responded to SMS", outreach_log_id=str(latest.id))
        return "responded"

    # ------------------------------------------------------------------
    # SendGrid
    # ------------------------------------------------------------------

    async def handle_sendgrid_events(self, events: list[dict[str, Any]]) -> dict[str, int]:
        """Apply a batch of SendGrid events; each event commits on its own."""
        counts = {"processed": 0, "duplicates": 0, "ignored": 0, "errors": 0}

        for raw, parsed in zip(events, SendGridWebhookHandler.parse_webhook(events)):
            try:
                counts[await self._apply_sendgrid_event(raw, parsed)] += 1
            except Exception as e:
                counts["errors"] += 1
                await self._session.rollback()
                log.error(
                    "Error processing SendGrid event",
                    event_type=parsed.get("event_type"),
                    message_id=parsed.get("provider_message_id"),
                    error=str(e),
                )

        log.info("SendGrid events processed", **counts)
        return counts

    async def _apply_sendgrid_event(self, raw: dict[str, Any], parsed: dict[str, Any]) -> str:
        message_id = parsed["provider_message_id"]
        event_type = parsed["event_type"]
        if not message_id or not event_type:
            return "ignored"

        outreach_log = await self._logs.get_by_external_id(message_id)
        if outreach_log is None:
            log.warning("SendGrid event for unknown message", message_id=message_id)
            return "ignored"

        occurred_at = _event_time(parsed["timestamp"])
        if await self._events.exists_for(outreach_log.id, event_type, occurred_at):
            return "duplicates"

        now = self._clock()
        when = occurred_at or now

        if event_type == "delivered":
            if outreach_log.status != LogStatus.RESPONDED.value:
                outreach_log.status = LogStatus.DELIVERED.value
            outreach_log.delivered_at = when
        elif event_type == "open":
            outreach_log.opened_at = outreach_log.opened_at or when
            outreach_log.open_count += 1
        elif event_type == "click":
            outreach_log.clicked_at = outreach_log.clicked_at or when
            outreach_log.click_count += 1
        elif event_type in ("bounce", "dropped"):
            if outreach_log.status != LogStatus.RESPONDED.value:
                outreach_log.status = LogStatus.FAILED.value
            outreach_log.bounced_at = when
            outreach_log.bounce_type = parsed["bounce_type"]
            outreach_log.bounce_reason = parsed["bounce_reason"]
            outreach_log.error_message = parsed["bounce_reason"] or None
        elif event_type in ("unsubscribe", "spamreport"):
            outreach_log.unsubscribed_at = when
            reason = UNSUBSCRIBE_REASONS[Channel.EMAIL] if event_type == "unsubscribe" else SPAM_REASON
            await self._preferences.set_opt_out(outreach_log.patient_id, Channel.EMAIL, reason, now)
        outreach_log.updated_at = now

        self._record_event(outreach_log, event_type, when, "sendgrid", raw)
        await self._session.commit()
        return "processed"

    # ------------------------------------------------------------------
    # Unsubscribe link
    # ------------------------------------------------------------------

    async def unsubscribe(self, patient_id: UUID | str, channel: Channel) -> bool:
        """Opt a patient out of a channel from the unsubscribe link.

        Returns:
            False if the patient does not exist
        """
        patient = await self._patients.get(patient_id)
        if patient is None:
            return False

        await self._preferences.set_opt_out(
            patient.id, channel, UNSUBSCRIBE_REASONS[channel], self._clock()
        )
        await self._session.commit()
        log.info("Patient unsubscribed", patient_id=str(patient.id), channel=channel.value)
        return True
