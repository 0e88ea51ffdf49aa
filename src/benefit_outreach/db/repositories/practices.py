"""Practice repository: tenant lookup, usage counters, settings stamps."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.core.exceptions import TenantNotFoundError
from benefit_outreach.db.models import Channel, PracticeModel, SubscriptionStatus
from benefit_outreach.db.repositories.base import BaseRepository, as_uuid


def billable_clause(now: datetime):
    """SQL form of "subscription lets this practice send"."""
    return or_(
        PracticeModel.subscription_status.in_(
            [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value]
        ),
        and_(
            PracticeModel.subscription_status == SubscriptionStatus.TRIAL.value,
            PracticeModel.trial_ends_at.is_not(None),
            PracticeModel.trial_ends_at > now,
        ),
    )


class PracticeRepository(BaseRepository[PracticeModel]):
    """Repository for practices (tenants)."""

    def __init__(self, session: AsyncSession):
        super().__init__(PracticeModel, session)

    async def get_or_raise(self, id: UUID | str) -> PracticeModel:
        practice = await self.get(id)
        if practice is None:
            raise TenantNotFoundError(
                f"Practice not found: {id}",
                details={"practice_id": str(id)},
            )
        return practice

    async def list_ids(self) -> list[UUID]:
        stmt = select(PracticeModel.id).order_by(PracticeModel.created_at)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_billable_ids(self, now: datetime) -> list[UUID]:
        """Ids of practices whose subscription currently allows sending."""
        stmt = select(PracticeModel.id).where(billable_clause(now)).order_by(PracticeModel.created_at)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def increment_usage(self, practice_id: UUID | str, amount: int = 1) -> None:
        """Atomically bump messages_sent_this_month."""
        stmt = (
            update(PracticeModel)
            .where(PracticeModel.id == as_uuid(practice_id))
            .values(messages_sent_this_month=PracticeModel.messages_sent_this_month + amount)
        )
        await self._session.execute(stmt)

    async def reset_usage(self, cycle_started_before: datetime, now: datetime) -> int:
        """Zero usage for practices whose billing cycle is due to roll over.

        Returns:
            Number of practices reset
        """
        stmt = (
            update(PracticeModel)
            .where(
                or_(
                    PracticeModel.billing_cycle_start.is_(None),
                    PracticeModel.billing_cycle_start <= cycle_started_before,
                )
            )
            .values(messages_sent_this_month=0, billing_cycle_start=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def stamp_tested(self, practice_id: UUID | str, channel: Channel, now: datetime) -> None:
        """Record a successful configuration test."""
        column = "email_last_tested_at" if channel == Channel.EMAIL else "sms_last_tested_at"
        stmt = (
            update(PracticeModel)
            .where(PracticeModel.id == as_uuid(practice_id))
            .values({column: now})
        )
        await self._session.execute(stmt)
