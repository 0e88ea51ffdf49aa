"""Outreach Service.

Entry points used by the scheduler and the HTTP layer:

- process_automated_outreach: daily single-shot campaigns
- send_manual_outreach: "send now" for one patient
- process_sequences: sequence tick
- enroll_patient_in_sequence / enroll_patients_in_sequence
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.config import Settings, get_settings
from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.core.metrics import OutreachMetrics, get_metrics
from benefit_outreach.db.models import MessageType, PatientSequenceStateModel, TriggerType
from benefit_outreach.db.repositories import CampaignRepository, OutreachLogRepository
from benefit_outreach.services.benefits_engine import BenefitsEngine, BenefitsProvider
from benefit_outreach.services.channel_senders import EmailSender, SendResult, SMSSender
from benefit_outreach.services.dispatch import OutreachDispatcher
from benefit_outreach.services.messaging_factory import ClientCache, MessagingServiceFactory
from benefit_outreach.services.outreach_log import OutreachLogWriter
from benefit_outreach.services.sequence_engine import SequenceEngine, TenantTickGuard
from benefit_outreach.services.usage import UsageGate

log = get_logger(__name__)

TRIGGER_DAYS = {
    TriggerType.EXPIRING_60.value: 60,
    TriggerType.EXPIRING_30.value: 30,
    TriggerType.EXPIRING_14.value: 14,
}
DEFAULT_TRIGGER_DAYS = 60


def trigger_days(trigger_type: str | None) -> int:
    """Benefit expiration window for a campaign trigger."""
    return TRIGGER_DAYS.get(trigger_type or "", DEFAULT_TRIGGER_DAYS)


@dataclass
class OutreachRunResult:
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class OutreachService:
    """Benefit outreach for one database session.

    Usage:
        async with get_session_factory()() as session:
            service = OutreachService(session, cache=app_cache)
            result = await service.process_automated_outreach(practice_id)
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        cache: ClientCache | None = None,
        guard: TenantTickGuard | None = None,
        resolver: MessagingServiceFactory | None = None,
        benefits: BenefitsProvider | None = None,
        sms_sender: SMSSender | None = None,
        email_sender: EmailSender | None = None,
        clock: Clock = utc_now,
        metrics: OutreachMetrics | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._clock = clock
        metrics = metrics or get_metrics()

        self.resolver = resolver or MessagingServiceFactory(
            session, self._settings, cache=cache, clock=clock, metrics=metrics
        )
        self.benefits = benefits or BenefitsEngine(session, clock=clock)
        self.usage = UsageGate(session, self._settings, clock=clock)
        self.dispatcher = OutreachDispatcher(
            session,
            sms_sender or SMSSender(self.resolver, self._settings, metrics),
            email_sender or EmailSender(self.resolver, self._settings, metrics),
            OutreachLogWriter(session, self._settings, clock=clock, metrics=metrics),
            self.usage,
        )
        self.sequences = SequenceEngine(
            session,
            self.dispatcher,
            self.benefits,
            self.usage,
            guard=guard,
            settings=self._settings,
            clock=clock,
            metrics=metrics,
        )

        self._campaigns = CampaignRepository(session)
        self._logs = OutreachLogRepository(session)

    # ------------------------------------------------------------------
    # Single-shot campaigns
    # ------------------------------------------------------------------

    async def process_automated_outreach(self, practice_id: UUID | str) -> OutreachRunResult:
        """Send every active single-shot campaign to its eligible patients.

        A patient counts as sent when at least one channel succeeded and
        as failed when channels were attempted and none succeeded.
        """
        result = OutreachRunResult()

        decision = await self.usage.check(practice_id)
        if not decision.allowed:
            log.warning(
                "Skipping automated outreach, usage limit",
                practice_id=str(practice_id),
                reason=decision.reason,
            )
            return result

        cooldown = timedelta(days=self._settings.outreach.cooldown_days)
        campaigns = [
            (c.id, c.trigger_type, c.message_type, c.message_template, float(c.min_benefit_amount))
            for c in await self._campaigns.list_active_single_shot(practice_id)
        ]

        for campaign_id, trigger_type, message_type, template, min_amount in campaigns:
            candidates = await self.benefits.get_expiring_benefits(
                practice_id, trigger_days(trigger_type), min_amount
            )
            log.info(
                "Processing campaign",
                practice_id=str(practice_id),
                campaign_id=str(campaign_id),
                candidates=len(candidates),
            )

            for benefit in candidates:
                try:
                    since = self._clock() - cooldown
                    if await self._logs.has_recent(benefit.patient_id, campaign_id, since):
                        result.skipped += 1
                        continue

                    outcome = await self.dispatcher.dispatch(
                        practice_id, campaign_id, message_type, template, benefit
                    )
                    if not outcome.attempted:
                        result.skipped += 1
                    elif outcome.any_success:
                        result.sent += 1
                    else:
                        result.failed += 1
                except Exception as e:
                    result.failed += 1
                    await self._session.rollback()
                    log.error(
                        "Error sending to patient",
                        practice_id=str(practice_id),
                        campaign_id=str(campaign_id),
                        patient_id=str(benefit.patient_id),
                        error=str(e),
                    )

        log.info("Automated outreach complete", practice_id=str(practice_id), **result.to_dict())
        return result

    async def send_manual_outreach(
        self,
        patient_id: UUID | str,
        practice_id: UUID | str,
        campaign_id: UUID | str,
        message_type: MessageType | str | None = None,
    ) -> SendResult:
        """Send a campaign's message to one patient now.

        Skips the cooldown and the campaign-active filter.
        """
        campaign = await self._campaigns.get_for_practice(campaign_id, practice_id)
        if campaign is None:
            return SendResult(success=False, error="Campaign not found")
        template = campaign.message_template
        message_type = message_type or campaign.message_type

        decision = await self.usage.check(practice_id)
        if not decision.allowed:
            return SendResult(success=False, error=decision.reason)

        try:
            benefit = await self.benefits.calculate_patient_benefits(patient_id, practice_id)
            if benefit is None:
                return SendResult(success=False, error="Patient benefits not found")

            outcome = await self.dispatcher.dispatch(
                practice_id, campaign_id, message_type, template, benefit
            )
            return outcome.summary()
        except Exception as e:
            await self._session.rollback()
            log.error(
                "Manual outreach error",
                practice_id=str(practice_id),
                patient_id=str(patient_id),
                error=str(e),
            )
            return SendResult(success=False, error="Failed to send message")

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    async def process_sequences(self, practice_id: UUID | str) -> dict[str, Any]:
        return await self.sequences.process_due(practice_id)

    async def enroll_patient_in_sequence(
        self, campaign_id: UUID | str, patient_id: UUID | str
    ) -> PatientSequenceStateModel:
        return await self.sequences.enroll(campaign_id, patient_id)

    async def enroll_patients_in_sequence(
        self, campaign_id: UUID | str, practice_id: UUID | str
    ) -> dict[str, int]:
        return await self.sequences.enroll_bulk(campaign_id, practice_id)
