"""Sequence state machine.

Multi-step campaigns keep one PatientSequenceStateModel per
(campaign, patient). A state is ``active`` until it is ``stopped`` by an
auto-stop condition or ``completed`` after its last step; both are
terminal.

Each tick, per due state:
1. Claim the state (compare-and-set on next_scheduled_at)
2. Evaluate stop conditions; stop without sending if any fires
3. Find step current+1; complete if there is none
4. Recompute benefits and dispatch the step (opted-out channels skipped)
5. Advance the step pointer and schedule from the following step
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.config import Settings, get_settings
from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.exceptions import (
    CampaignNotFoundError,
    DuplicateEnrollmentError,
    RecordNotFoundError,
    SequenceValidationError,
)
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.core.metrics import SEQUENCE_CLAIM_CONFLICTS, OutreachMetrics, get_metrics
from benefit_outreach.db.models import (
    CampaignStepModel,
    DelayType,
    OutreachCampaignModel,
    PatientSequenceStateModel,
    SequenceStatus,
    StopReason,
)
from benefit_outreach.db.repositories import (
    AppointmentRepository,
    CampaignRepository,
    InsuranceRepository,
    OutreachLogRepository,
    PatientRepository,
    PreferencesRepository,
    SequenceStateRepository,
    as_uuid,
)
from benefit_outreach.services.benefits_engine import BenefitsProvider
from benefit_outreach.services.dispatch import OutreachDispatcher
from benefit_outreach.services.usage import UsageGate

log = get_logger(__name__)


class TenantTickGuard:
    """Single-flight guard for sequence ticks, one lock per practice.

    A tick that finds its practice already running is skipped rather
    than queued.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def is_running(self, practice_id: UUID | str) -> bool:
        lock = self._locks.get(str(practice_id))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, practice_id: UUID | str) -> AsyncIterator[bool]:
        lock = self._locks.setdefault(str(practice_id), asyncio.Lock())
        if lock.locked():
            yield False
            return
        async with lock:
            yield True


# ============================================================================
# Snapshots
# ============================================================================


@dataclass(frozen=True)
class StepInfo:
    id: UUID
    step_number: int
    message_type: str
    message_template: str
    delay_type: str
    delay_value: int

    @classmethod
    def from_model(cls, step: CampaignStepModel) -> "StepInfo":
        return cls(
            id=step.id,
            step_number=step.step_number,
            message_type=step.message_type,
            message_template=step.message_template,
            delay_type=step.delay_type,
            delay_value=step.delay_value,
        )


@dataclass(frozen=True)
class CampaignInfo:
    id: UUID
    practice_id: UUID
    auto_stop_on_appointment: bool
    auto_stop_on_response: bool
    auto_stop_on_opt_out: bool
    steps: tuple[StepInfo, ...]

    @classmethod
    def from_model(cls, campaign: OutreachCampaignModel) -> "CampaignInfo":
        return cls(
            id=campaign.id,
            practice_id=campaign.practice_id,
            auto_stop_on_appointment=campaign.auto_stop_on_appointment,
            auto_stop_on_response=campaign.auto_stop_on_response,
            auto_stop_on_opt_out=campaign.auto_stop_on_opt_out,
            steps=tuple(
                StepInfo.from_model(step)
                for step in sorted(campaign.steps, key=lambda s: s.step_number)
                if step.is_active
            ),
        )

    def step(self, step_number: int) -> StepInfo | None:
        """Active step with exactly this number."""
        for step in self.steps:
            if step.step_number == step_number:
                return step
        return None


@dataclass(frozen=True)
class DueSequence:
    id: UUID
    campaign_id: UUID
    patient_id: UUID
    current_step_number: int
    next_scheduled_at: datetime
    started_at: datetime

    @classmethod
    def from_model(cls, state: PatientSequenceStateModel) -> "DueSequence":
        return cls(
            id=state.id,
            campaign_id=state.campaign_id,
            patient_id=state.patient_id,
            current_step_number=state.current_step_number,
            next_scheduled_at=state.next_scheduled_at,
            started_at=state.started_at,
        )


def compute_next_run(
    step: StepInfo | None, now: datetime, expiration: datetime | None
) -> datetime:
    """When a step should fire.

    fixed_days counts from now; days_before_expiry counts back from the
    primary insurance expiration, or is due immediately without one.
    No step means due immediately so the next tick can complete.
    """
    if step is None:
        return now
    if step.delay_type == DelayType.DAYS_BEFORE_EXPIRY.value:
        if expiration is None:
            return now
        return expiration - timedelta(days=step.delay_value)
    return now + timedelta(days=step.delay_value)


# ============================================================================
# Engine
# ============================================================================


class SequenceEngine:
    """Enrollment and tick processing for multi-step campaigns."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: OutreachDispatcher,
        benefits: BenefitsProvider,
        usage: UsageGate,
        guard: TenantTickGuard | None = None,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        metrics: OutreachMetrics | None = None,
    ) -> None:
        self._session = session
        self._dispatcher = dispatcher
        self._benefits = benefits
        self._usage = usage
        self._guard = guard or TenantTickGuard()
        self._settings = settings or get_settings()
        self._clock = clock
        self._metrics = metrics or get_metrics()

        self._campaigns = CampaignRepository(session)
        self._states = SequenceStateRepository(session)
        self._patients = PatientRepository(session)
        self._insurance = InsuranceRepository(session)
        self._appointments = AppointmentRepository(session)
        self._logs = OutreachLogRepository(session)
        self._preferences = PreferencesRepository(session)

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    async def enroll(
        self, campaign_id: UUID | str, patient_id: UUID | str
    ) -> PatientSequenceStateModel:
        """Attach a patient to a sequence campaign.

        Raises:
            CampaignNotFoundError: Unknown campaign
            SequenceValidationError: Not a sequence, or no active steps
            RecordNotFoundError: Patient not in the campaign's practice
            DuplicateEnrollmentError: Patient already has a state for it
        """
        campaign = await self._campaigns.get(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(
                "Campaign not found", details={"campaign_id": str(campaign_id)}
            )
        info = CampaignInfo.from_model(campaign)

        if not campaign.is_sequence:
            raise SequenceValidationError(
                "Campaign is not a sequence", details={"campaign_id": str(campaign_id)}
            )
        if not info.steps:
            raise SequenceValidationError(
                "Sequence has no active steps", details={"campaign_id": str(campaign_id)}
            )

        patient = await self._patients.get_for_practice(patient_id, info.practice_id)
        if patient is None:
            raise RecordNotFoundError(
                "Patient not found", details={"patient_id": str(patient_id)}
            )

        if await self._states.get_for_pair(campaign_id, patient_id) is not None:
            raise DuplicateEnrollmentError(
                "Patient already enrolled in this sequence",
                details={"campaign_id": str(campaign_id), "patient_id": str(patient_id)},
            )

        now = self._clock()
        expiration = await self._insurance.get_primary_expiration(patient_id)
        # An inactive step 1 is due now; the first tick then completes the sequence
        first_step = info.step(1)

        state = PatientSequenceStateModel(
            campaign_id=info.id,
            patient_id=as_uuid(patient_id),
            current_step_number=0,
            status=SequenceStatus.ACTIVE.value,
            next_scheduled_at=compute_next_run(first_step, now, expiration),
            started_at=now,
            created_at=now,
            updated_at=now,
        )
        self._session.add(state)
        try:
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            raise DuplicateEnrollmentError(
                "Patient already enrolled in this sequence",
                details={"campaign_id": str(campaign_id), "patient_id": str(patient_id)},
                cause=e,
            ) from e

        log.info(
            "Patient enrolled in sequence",
            campaign_id=str(info.id),
            patient_id=str(patient_id),
            next_scheduled_at=state.next_scheduled_at.isoformat(),
        )
        return state

    async def enroll_bulk(
        self,
        campaign_id: UUID | str,
        practice_id: UUID | str,
        days: int = 60,
    ) -> dict[str, int]:
        """Enroll every patient eligible under the campaign's benefit filter.

        Per-patient failures (already enrolled and the like) count as skipped.
        """
        campaign = await self._campaigns.get_for_practice(campaign_id, practice_id)
        if campaign is None:
            raise CampaignNotFoundError(
                "Campaign not found", details={"campaign_id": str(campaign_id)}
            )
        min_amount = float(campaign.min_benefit_amount)

        enrolled = 0
        skipped = 0
        candidates = await self._benefits.get_expiring_benefits(practice_id, days, min_amount)
        for benefit in candidates:
            try:
                await self.enroll(campaign_id, benefit.patient_id)
                enrolled += 1
            except Exception as e:
                skipped += 1
                log.debug(
                    "Skipped sequence enrollment",
                    campaign_id=str(campaign_id),
                    patient_id=str(benefit.patient_id),
                    reason=str(e),
                )

        log.info(
            "Bulk sequence enrollment complete",
            campaign_id=str(campaign_id),
            enrolled=enrolled,
            skipped=skipped,
        )
        return {"enrolled": enrolled, "skipped": skipped}

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def process_due(self, practice_id: UUID | str) -> dict[str, Any]:
        """Run one tick for a practice."""
        stats: dict[str, Any] = {
            "processed": 0,
            "stopped": 0,
            "completed": 0,
            "conflicts": 0,
            "errors": 0,
            "skipped_run": False,
        }

        async with self._guard.hold(practice_id) as acquired:
            if not acquired:
                log.info("Sequence tick already running, skipping", practice_id=str(practice_id))
                stats["skipped_run"] = True
                return stats

            decision = await self._usage.check(practice_id)
            if not decision.allowed:
                log.warning(
                    "Skipping sequences, usage limit",
                    practice_id=str(practice_id),
                    reason=decision.reason,
                )
                stats["skipped_run"] = True
                return stats

            now = self._clock()
            due = [DueSequence.from_model(s) for s in await self._states.list_due(practice_id, now)]
            campaigns: dict[UUID, CampaignInfo] = {}

            for state in due:
                try:
                    if state.campaign_id not in campaigns:
                        campaign = await self._campaigns.get(state.campaign_id)
                        campaigns[state.campaign_id] = CampaignInfo.from_model(campaign)
                    outcome = await self._process_state(state, campaigns[state.campaign_id], now)
                    stats[outcome] += 1
                except Exception as e:
                    stats["errors"] += 1
                    await self._session.rollback()
                    log.error(
                        "Error processing sequence state",
                        state_id=str(state.id),
                        patient_id=str(state.patient_id),
                        error=str(e),
                    )

        log.info("Sequence tick complete", practice_id=str(practice_id), **stats)
        return stats

    async def _process_state(self, state: DueSequence, campaign: CampaignInfo, now: datetime) -> str:
        lease_until = now + timedelta(seconds=self._settings.outreach.sequence_claim_lease_seconds)
        claimed = await self._states.claim(state.id, state.next_scheduled_at, lease_until, now)
        await self._session.commit()
        if not claimed:
            self._metrics.increment(SEQUENCE_CLAIM_CONFLICTS)
            log.warning("Sequence state claimed elsewhere", state_id=str(state.id))
            return "conflicts"

        reason = await self._stop_reason(state, campaign, now)
        if reason is not None:
            await self._states.stop(state.id, reason.value, now)
            await self._session.commit()
            log.info(
                "Sequence stopped",
                state_id=str(state.id),
                patient_id=str(state.patient_id),
                reason=reason.value,
            )
            return "stopped"

        step = campaign.step(state.current_step_number + 1)
        if step is None:
            await self._states.complete(state.id, now)
            await self._session.commit()
            log.info("Sequence completed", state_id=str(state.id), patient_id=str(state.patient_id))
            return "completed"

        benefit = await self._benefits.calculate_patient_benefits(state.patient_id, campaign.practice_id)
        if benefit is None:
            log.info(
                "No benefits for sequence step, skipping",
                state_id=str(state.id),
                step_number=step.step_number,
            )
            expiration = None
        else:
            await self._dispatcher.dispatch(
                campaign.practice_id,
                campaign.id,
                step.message_type,
                step.message_template,
                benefit,
                step_id=step.id,
                step_number=step.step_number,
            )
            expiration = benefit.expiration_date

        next_at = compute_next_run(campaign.step(step.step_number + 1), now, expiration)
        await self._states.advance(state.id, step.step_number, next_at, now)
        await self._session.commit()
        return "processed"

    async def _stop_reason(
        self, state: DueSequence, campaign: CampaignInfo, now: datetime
    ) -> StopReason | None:
        if campaign.auto_stop_on_appointment and await self._appointments.has_booked_since(
            state.patient_id, state.started_at, now
        ):
            return StopReason.APPOINTMENT_BOOKED

        if campaign.auto_stop_on_response and await self._logs.has_response_since(
            state.patient_id, state.campaign_id, state.started_at
        ):
            return StopReason.PATIENT_RESPONDED

        if campaign.auto_stop_on_opt_out:
            prefs = await self._preferences.get_for_patient(state.patient_id)
            if prefs is not None and prefs.email_opt_out and prefs.sms_opt_out:
                return StopReason.OPTED_OUT

        expiration = await self._insurance.get_primary_expiration(state.patient_id)
        if expiration is not None and expiration < now:
            return StopReason.EXPIRY_PASSED

        return None
