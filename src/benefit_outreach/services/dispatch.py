"""Per-patient message dispatch.

Shared by the single-shot processor, manual sends and sequence steps:
pick the channels for a message type, drop opted-out or unreachable
channels, personalize, send, log each attempt and count usage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.db.models import Channel, MessageType, PatientPreferencesModel
from benefit_outreach.db.repositories import PreferencesRepository
from benefit_outreach.services.benefits_engine import BenefitRecord
from benefit_outreach.services.channel_senders import EmailSender, SendResult, SMSSender
from benefit_outreach.services.outreach_log import OutreachLogWriter
from benefit_outreach.services.personalization import personalize_message, split_name
from benefit_outreach.services.usage import UsageGate

log = get_logger(__name__)

NO_ELIGIBLE_CHANNEL = "No eligible channel: patient opted out or has no contact details"


def channels_for(message_type: MessageType | str) -> list[Channel]:
    """Channels a message type sends on, SMS first."""
    message_type = MessageType(message_type)
    if message_type == MessageType.BOTH:
        return [Channel.SMS, Channel.EMAIL]
    return [Channel(message_type.value)]


def is_opted_out(prefs: PatientPreferencesModel | None, channel: Channel) -> bool:
    if prefs is None:
        return False
    return prefs.sms_opt_out if channel == Channel.SMS else prefs.email_opt_out


@dataclass
class DispatchOutcome:
    """Results of one dispatch, keyed by channel attempted."""

    results: dict[Channel, SendResult] = field(default_factory=dict)

    @property
    def attempted(self) -> bool:
        return bool(self.results)

    @property
    def any_success(self) -> bool:
        return any(result.success for result in self.results.values())

    def summary(self) -> SendResult:
        """Single result for callers that want one answer.

        The first successful channel wins; otherwise the last failure.
        """
        if not self.results:
            return SendResult(success=False, error=NO_ELIGIBLE_CHANNEL)
        for result in self.results.values():
            if result.success:
                return result
        return list(self.results.values())[-1]


class OutreachDispatcher:
    """Sends one personalized message to one patient."""

    def __init__(
        self,
        session: AsyncSession,
        sms_sender: SMSSender,
        email_sender: EmailSender,
        log_writer: OutreachLogWriter,
        usage: UsageGate,
    ) -> None:
        self._preferences = PreferencesRepository(session)
        self._senders = {Channel.SMS: sms_sender, Channel.EMAIL: email_sender}
        self._log_writer = log_writer
        self._usage = usage

    async def dispatch(
        self,
        practice_id: UUID | str,
        campaign_id: UUID | str,
        message_type: MessageType | str,
        template: str,
        benefit: BenefitRecord,
        step_id: UUID | None = None,
        step_number: int | None = None,
    ) -> DispatchOutcome:
        outcome = DispatchOutcome()
        prefs = await self._preferences.get_for_patient(benefit.patient_id)
        content = personalize_message(template, benefit)

        for channel in channels_for(message_type):
            if is_opted_out(prefs, channel):
                log.info(
                    "Patient opted out of channel",
                    patient_id=str(benefit.patient_id),
                    channel=channel.value,
                )
                continue

            recipient = benefit.phone if channel == Channel.SMS else benefit.email
            if not recipient:
                log.info(
                    "Patient has no contact for channel",
                    patient_id=str(benefit.patient_id),
                    channel=channel.value,
                )
                continue

            result = await self._senders[channel].send(
                practice_id,
                recipient,
                content,
                {
                    "patient_id": str(benefit.patient_id),
                    "campaign_id": str(campaign_id),
                    "recipient_name": split_name(benefit.patient_name)[0],
                },
            )
            outcome.results[channel] = result

            await self._log_writer.log(
                campaign_id,
                benefit.patient_id,
                channel,
                content,
                recipient,
                result,
                step_id=step_id,
                step_number=step_number,
            )

            if result.success and not result.simulated:
                await self._usage.record_send(practice_id)

        return outcome
