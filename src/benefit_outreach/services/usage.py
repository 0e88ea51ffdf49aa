"""Usage-limit gate.

A practice may send while its subscription is live and it has not run
past its monthly allowance (plus a small overage margin).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.config import Settings, get_settings
from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.db.models import PracticeModel, SubscriptionStatus
from benefit_outreach.db.repositories import PracticeRepository

log = get_logger(__name__)

BILLING_CYCLE_DAYS = 30


def subscription_allows(practice: PracticeModel, now: datetime) -> bool:
    """Whether the subscription status lets the practice send at all."""
    status = practice.subscription_status
    if status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value):
        return True
    if status == SubscriptionStatus.TRIAL.value:
        return practice.trial_ends_at is not None and practice.trial_ends_at > now
    return False


@dataclass(frozen=True)
class UsageDecision:
    allowed: bool
    reason: str | None = None


class UsageGate:
    """Checks and records message usage for a practice."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._clock = clock
        self._practices = PracticeRepository(session)

    async def check(self, practice_id: UUID | str) -> UsageDecision:
        """Decide whether the practice may send right now.

        Raises:
            TenantNotFoundError: If the practice does not exist
        """
        practice = await self._practices.get_or_raise(practice_id)
        now = self._clock()

        if not subscription_allows(practice, now):
            return UsageDecision(False, "Subscription is not active")

        limit = practice.messages_included * self._settings.outreach.usage_overage_ratio
        if practice.messages_sent_this_month >= limit:
            return UsageDecision(False, "Monthly message limit reached")

        return UsageDecision(True)

    async def record_send(self, practice_id: UUID | str) -> None:
        """Count one delivered-to-provider message. Never raises."""
        try:
            await self._practices.increment_usage(practice_id)
            await self._session.commit()
        except Exception as e:
            await self._session.rollback()
            log.error("Failed to record message usage", practice_id=str(practice_id), error=str(e))

    async def reset_monthly_usage(self) -> int:
        """Zero counters of practices whose billing cycle has rolled over."""
        now = self._clock()
        count = await self._practices.reset_usage(now - timedelta(days=BILLING_CYCLE_DAYS), now)
        await self._session.commit()
        log.info("Monthly usage reset", practices=count)
        return count
