"""Outreach repositories.

Campaigns, outreach logs, delivery events and sequence states.

Sequence state transitions are conditional UPDATEs guarded by
status='active' so that a terminal state can never be revived, and the
tick claim is a compare-and-set on next_scheduled_at.
"""
from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.db.models import (
    Channel,
    LogStatus,
    MessageEventModel,
    OutreachCampaignModel,
    OutreachLogModel,
    PatientSequenceStateModel,
    SequenceStatus,
)
from benefit_outreach.db.repositories.base import BaseRepository, as_uuid


class CampaignRepository(BaseRepository[OutreachCampaignModel]):
    """Repository for campaigns and their steps."""

    def __init__(self, session: AsyncSession):
        super().__init__(OutreachCampaignModel, session)

    async def get_for_practice(
        self, campaign_id: UUID | str, practice_id: UUID | str
    ) -> OutreachCampaignModel | None:
        stmt = select(OutreachCampaignModel).where(
            OutreachCampaignModel.id == as_uuid(campaign_id),
            OutreachCampaignModel.practice_id == as_uuid(practice_id),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active_single_shot(
        self, practice_id: UUID | str
    ) -> Sequence[OutreachCampaignModel]:
        """Active non-sequence campaigns, oldest first."""
        stmt = (
            select(OutreachCampaignModel)
            .where(
                OutreachCampaignModel.practice_id == as_uuid(practice_id),
                OutreachCampaignModel.is_active.is_(True),
                OutreachCampaignModel.is_sequence.is_(False),
            )
            .order_by(OutreachCampaignModel.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()


class OutreachLogRepository(BaseRepository[OutreachLogModel]):
    """Repository for outreach audit rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(OutreachLogModel, session)

    async def has_recent(
        self, patient_id: UUID | str, campaign_id: UUID | str, since: datetime
    ) -> bool:
        """Any log for (patient, campaign) created at or after since."""
        stmt = select(
            exists().where(
                OutreachLogModel.patient_id == as_uuid(patient_id),
                OutreachLogModel.campaign_id == as_uuid(campaign_id),
                OutreachLogModel.created_at >= since,
            )
        )
        return bool((await self._session.execute(stmt)).scalar())

    async def has_response_since(
        self, patient_id: UUID | str, campaign_id: UUID | str, since: datetime
    ) -> bool:
        """A responded log for (patient, campaign) created after since."""
        stmt = select(
            exists().where(
                OutreachLogModel.patient_id == as_uuid(patient_id),
                OutreachLogModel.campaign_id == as_uuid(campaign_id),
                OutreachLogModel.status == LogStatus.RESPONDED.value,
                OutreachLogModel.created_at > since,
            )
        )
        return bool((await self._session.execute(stmt)).scalar())

    async def get_by_external_id(self, external_id: str) -> OutreachLogModel | None:
        stmt = (
            select(OutreachLogModel)
            .where(OutreachLogModel.external_id == external_id)
            .order_by(OutreachLogModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def latest_sms_for_patients(
        self, patient_ids: list[UUID]
    ) -> OutreachLogModel | None:
        """Most recent SMS log sent to any of these patients."""
        if not patient_ids:
            return None
        stmt = (
            select(OutreachLogModel)
            .where(
                OutreachLogModel.patient_id.in_(patient_ids),
                OutreachLogModel.message_type == Channel.SMS.value,
            )
            .order_by(OutreachLogModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()


class MessageEventRepository(BaseRepository[MessageEventModel]):
    """Repository for provider delivery events."""

    def __init__(self, session: AsyncSession):
        super().__init__(MessageEventModel, session)

    async def exists_for(
        self, outreach_log_id: UUID, event_type: str, occurred_at: datetime | None = None
    ) -> bool:
        """Whether this event was already stored.

        With occurred_at None any earlier event of the type matches
        (providers that send no event timestamp).
        """
        conditions = [
            MessageEventModel.outreach_log_id == outreach_log_id,
            MessageEventModel.event_type == event_type,
        ]
        if occurred_at is not None:
            conditions.append(MessageEventModel.occurred_at == occurred_at)
        stmt = select(exists().where(*conditions))
        return bool((await self._session.execute(stmt)).scalar())


class SequenceStateRepository(BaseRepository[PatientSequenceStateModel]):
    """Repository for patient sequence states."""

    def __init__(self, session: AsyncSession):
        super().__init__(PatientSequenceStateModel, session)

    async def get_for_pair(
        self, campaign_id: UUID | str, patient_id: UUID | str
    ) -> PatientSequenceStateModel | None:
        return await self.find_one(
            campaign_id=as_uuid(campaign_id),
            patient_id=as_uuid(patient_id),
        )

    async def list_due(
        self, practice_id: UUID | str, now: datetime, limit: int = 500
    ) -> Sequence[PatientSequenceStateModel]:
        """Active states of the practice's sequence campaigns due at now."""
        stmt = (
            select(PatientSequenceStateModel)
            .join(
                OutreachCampaignModel,
                OutreachCampaignModel.id == PatientSequenceStateModel.campaign_id,
            )
            .where(
                OutreachCampaignModel.practice_id == as_uuid(practice_id),
                OutreachCampaignModel.is_sequence.is_(True),
                PatientSequenceStateModel.status == SequenceStatus.ACTIVE.value,
                PatientSequenceStateModel.next_scheduled_at.is_not(None),
                PatientSequenceStateModel.next_scheduled_at <= now,
            )
            .order_by(PatientSequenceStateModel.next_scheduled_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    # ========================================================================
    # Guarded transitions
    # ========================================================================

    async def _update_active(self, state_id: UUID, *conditions, **values) -> bool:
        stmt = (
            update(PatientSequenceStateModel)
            .where(
                PatientSequenceStateModel.id == state_id,
                PatientSequenceStateModel.status == SequenceStatus.ACTIVE.value,
                *conditions,
            )
            .values(**values)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def claim(
        self, state_id: UUID, seen_next_at: datetime, lease_until: datetime, now: datetime
    ) -> bool:
        """Push next_scheduled_at forward if nobody else has since.

        Returns:
            True if this caller now owns the tick for the state
        """
        return await self._update_active(
            state_id,
            PatientSequenceStateModel.next_scheduled_at == seen_next_at,
            next_scheduled_at=lease_until,
            updated_at=now,
        )

    async def advance(
        self, state_id: UUID, step_number: int, next_at: datetime, now: datetime
    ) -> bool:
        return await self._update_active(
            state_id,
            current_step_number=step_number,
            next_scheduled_at=next_at,
            updated_at=now,
        )

    async def stop(self, state_id: UUID, reason: str, now: datetime) -> bool:
        return await self._update_active(
            state_id,
            status=SequenceStatus.STOPPED.value,
            stop_reason=reason,
            stopped_at=now,
            next_scheduled_at=None,
            updated_at=now,
        )

    async def complete(self, state_id: UUID, now: datetime) -> bool:
        return await self._update_active(
            state_id,
            status=SequenceStatus.COMPLETED.value,
            completed_at=now,
            next_scheduled_at=None,
            updated_at=now,
        )
