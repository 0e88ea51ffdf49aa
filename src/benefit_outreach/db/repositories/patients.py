"""Patient-side repositories.

Patients, insurance, appointments and contact preferences.
"""
from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.db.models import (
    AppointmentModel,
    AppointmentStatus,
    BenefitsSnapshotModel,
    Channel,
    PatientInsuranceModel,
    PatientModel,
    PatientPreferencesModel,
)
from benefit_outreach.db.repositories.base import BaseRepository, as_uuid


class PatientRepository(BaseRepository[PatientModel]):
    """Repository for patients."""

    def __init__(self, session: AsyncSession):
        super().__init__(PatientModel, session)

    async def get_for_practice(
        self, patient_id: UUID | str, practice_id: UUID | str
    ) -> PatientModel | None:
        """Get a patient only if it belongs to the practice."""
        stmt = select(PatientModel).where(
            PatientModel.id == as_uuid(patient_id),
            PatientModel.practice_id == as_uuid(practice_id),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active_ids(self, practice_id: UUID | str) -> list[UUID]:
        stmt = (
            select(PatientModel.id)
            .where(
                PatientModel.practice_id == as_uuid(practice_id),
                PatientModel.is_active.is_(True),
            )
            .order_by(PatientModel.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_phone(
        self, phone: str, practice_id: UUID | str | None = None
    ) -> Sequence[PatientModel]:
        """Patients with this phone number, optionally within one practice."""
        stmt = select(PatientModel).where(PatientModel.phone == phone)
        if practice_id is not None:
            stmt = stmt.where(PatientModel.practice_id == as_uuid(practice_id))
        result = await self._session.execute(stmt)
        return result.scalars().all()


class InsuranceRepository(BaseRepository[PatientInsuranceModel]):
    """Repository for patient insurance coverage."""

    def __init__(self, session: AsyncSession):
        super().__init__(PatientInsuranceModel, session)

    async def get_primary_with_patient(
        self, patient_id: UUID | str, practice_id: UUID | str
    ) -> tuple[PatientInsuranceModel, PatientModel] | None:
        """Active primary insurance of a practice's patient, with the patient."""
        stmt = (
            select(PatientInsuranceModel, PatientModel)
            .join(PatientModel, PatientModel.id == PatientInsuranceModel.patient_id)
            .where(
                PatientInsuranceModel.patient_id == as_uuid(patient_id),
                PatientModel.practice_id == as_uuid(practice_id),
                PatientInsuranceModel.is_active.is_(True),
                PatientInsuranceModel.is_primary.is_(True),
            )
            .order_by(PatientInsuranceModel.created_at.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).first()
        return (row[0], row[1]) if row else None

    async def get_primary_expiration(self, patient_id: UUID | str) -> datetime | None:
        """Expiration date of the active primary insurance, if any."""
        stmt = (
            select(PatientInsuranceModel.expiration_date)
            .where(
                PatientInsuranceModel.patient_id == as_uuid(patient_id),
                PatientInsuranceModel.is_active.is_(True),
                PatientInsuranceModel.is_primary.is_(True),
            )
            .order_by(PatientInsuranceModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_expiring(
        self,
        practice_id: UUID | str,
        start: datetime,
        end: datetime,
        min_remaining: float,
    ) -> list[tuple[PatientInsuranceModel, PatientModel]]:
        """Active primary coverage of active patients expiring in [start, end]."""
        stmt = (
            select(PatientInsuranceModel, PatientModel)
            .join(PatientModel, PatientModel.id == PatientInsuranceModel.patient_id)
            .where(
                PatientModel.practice_id == as_uuid(practice_id),
                PatientModel.is_active.is_(True),
                PatientInsuranceModel.is_active.is_(True),
                PatientInsuranceModel.is_primary.is_(True),
                PatientInsuranceModel.expiration_date >= start,
                PatientInsuranceModel.expiration_date <= end,
                PatientInsuranceModel.remaining_benefits >= min_remaining,
            )
            .order_by(PatientInsuranceModel.expiration_date.asc())
        )
        result = await self._session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def add_snapshot(self, snapshot: BenefitsSnapshotModel) -> None:
        self._session.add(snapshot)
        await self._session.flush()


class AppointmentRepository(BaseRepository[AppointmentModel]):
    """Repository for appointments."""

    def __init__(self, session: AsyncSession):
        super().__init__(AppointmentModel, session)

    async def has_booked_since(
        self, patient_id: UUID | str, booked_after: datetime, now: datetime
    ) -> bool:
        """A future scheduled appointment created after booked_after exists."""
        stmt = select(
            exists().where(
                AppointmentModel.patient_id == as_uuid(patient_id),
                AppointmentModel.status == AppointmentStatus.SCHEDULED.value,
                AppointmentModel.appointment_date > now,
                AppointmentModel.created_at > booked_after,
            )
        )
        result = await self._session.execute(stmt)
        return bool(result.scalar())


class PreferencesRepository(BaseRepository[PatientPreferencesModel]):
    """Repository for per-patient opt-outs."""

    def __init__(self, session: AsyncSession):
        super().__init__(PatientPreferencesModel, session)

    async def get_for_patient(self, patient_id: UUID | str) -> PatientPreferencesModel | None:
        return await self.find_one(patient_id=as_uuid(patient_id))

    async def set_opt_out(
        self,
        patient_id: UUID | str,
        channel: Channel,
        reason: str,
        now: datetime,
    ) -> PatientPreferencesModel:
        """Create or update preferences with the channel opted out."""
        prefs = await self.get_for_patient(patient_id)
        if prefs is None:
            prefs = PatientPreferencesModel(patient_id=as_uuid(patient_id))
            self._session.add(prefs)

        if channel == Channel.SMS:
            prefs.sms_opt_out = True
        else:
            prefs.email_opt_out = True
        prefs.opt_out_reason = reason
        prefs.opted_out_at = now

        await self._session.flush()
        return prefs
