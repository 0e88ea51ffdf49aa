"""Benefits Engine.

Projects patient insurance rows into BenefitRecord values used for
outreach targeting and message personalization, and keeps the cached
remaining-benefit figure and history snapshots up to date.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.db.models import BenefitsSnapshotModel, PatientInsuranceModel, PatientModel
from benefit_outreach.db.repositories import InsuranceRepository, PatientRepository

log = get_logger(__name__)


@dataclass(frozen=True)
class BenefitRecord:
    """A patient's current benefit position."""

    patient_id: UUID
    patient_name: str
    email: str
    phone: str
    insurance_carrier: str
    annual_maximum: float
    deductible: float
    deductible_met: float
    used_benefits: float
    remaining_benefits: float
    expiration_date: datetime
    days_until_expiry: int
    suggested_treatments: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "patient_id": str(self.patient_id),
            "patient_name": self.patient_name,
            "email": self.email,
            "phone": self.phone,
            "insurance_carrier": self.insurance_carrier,
            "annual_maximum": self.annual_maximum,
            "used_benefits": self.used_benefits,
            "remaining_benefits": self.remaining_benefits,
            "expiration_date": self.expiration_date.isoformat(),
            "days_until_expiry": self.days_until_expiry,
            "suggested_treatments": list(self.suggested_treatments),
        }


class BenefitsProvider(Protocol):
    """What the outreach engine needs from benefit calculation."""

    async def get_expiring_benefits(
        self, practice_id: UUID | str, days: int, min_amount: float
    ) -> list[BenefitRecord]: ...

    async def calculate_patient_benefits(
        self, patient_id: UUID | str, practice_id: UUID | str
    ) -> BenefitRecord | None: ...


def days_until(expiration: datetime, now: datetime) -> int:
    """Whole days until expiration, rounded up."""
    return math.ceil((expiration - now).total_seconds() / 86400)


def suggest_treatments(remaining: float) -> list[str]:
    """Treatment ideas that fit the remaining benefit amount."""
    if remaining >= 1000:
        return [
            "Multiple crowns",
            "Dental implant consultation",
            "Comprehensive restorative work",
            "Orthodontic evaluation",
        ]
    if remaining >= 600:
        return ["Crown or bridge work", "Root canal therapy", "Periodontal treatment"]
    if remaining >= 300:
        return ["Deep cleaning", "Fluoride treatment", "Multiple fillings"]
    if remaining >= 100:
        return ["Routine cleaning and exam", "X-rays"]
    return []


class BenefitsEngine:
    """Database-backed BenefitsProvider."""

    def __init__(self, session: AsyncSession, clock: Clock = utc_now) -> None:
        self._session = session
        self._clock = clock
        self._insurance = InsuranceRepository(session)
        self._patients = PatientRepository(session)

    def _to_record(
        self,
        insurance: PatientInsuranceModel,
        patient: PatientModel,
        remaining: float,
        now: datetime,
    ) -> BenefitRecord:
        return BenefitRecord(
            patient_id=patient.id,
            patient_name=f"{patient.first_name} {patient.last_name}".strip(),
            email=patient.email or "",
            phone=patient.phone or "",
            insurance_carrier=insurance.insurance_carrier,
            annual_maximum=float(insurance.annual_maximum),
            deductible=float(insurance.deductible),
            deductible_met=float(insurance.deductible_met),
            used_benefits=float(insurance.used_benefits),
            remaining_benefits=remaining,
            expiration_date=insurance.expiration_date,
            days_until_expiry=days_until(insurance.expiration_date, now),
            suggested_treatments=suggest_treatments(remaining),
        )

    async def get_expiring_benefits(
        self,
        practice_id: UUID | str,
        days: int = 60,
        min_amount: float = 200.0,
    ) -> list[BenefitRecord]:
        """Patients whose primary benefits expire within days, soonest first."""
        now = self._clock()
        rows = await self._insurance.find_expiring(
            practice_id, now, now + timedelta(days=days), min_amount
        )
        return [
            self._to_record(insurance, patient, float(insurance.remaining_benefits), now)
            for insurance, patient in rows
        ]

    async def calculate_patient_benefits(
        self,
        patient_id: UUID | str,
        practice_id: UUID | str,
    ) -> BenefitRecord | None:
        """Recompute a patient's remaining benefits and snapshot them.

        Returns:
            The fresh record, or None without active primary insurance
        """
        row = await self._insurance.get_primary_with_patient(patient_id, practice_id)
        if row is None:
            return None
        insurance, patient = row

        now = self._clock()
        remaining = max(0.0, float(insurance.annual_maximum) - float(insurance.used_benefits))

        if abs(remaining - float(insurance.remaining_benefits)) > 0.01:
            insurance.remaining_benefits = remaining
            insurance.updated_at = now

        days_left = days_until(insurance.expiration_date, now)
        await self._insurance.add_snapshot(
            BenefitsSnapshotModel(
                patient_id=patient.id,
                annual_maximum=insurance.annual_maximum,
                deductible=insurance.deductible,
                deductible_met=insurance.deductible_met,
                used_benefits=insurance.used_benefits,
                remaining_benefits=remaining,
                days_until_expiry=days_left,
                created_at=now,
                updated_at=now,
            )
        )
        record = self._to_record(insurance, patient, remaining, now)
        await self._session.commit()
        return record

    async def batch_update_benefits(self, practice_id: UUID | str) -> dict[str, int]:
        """Recalculate every active patient of a practice."""
        updated = 0
        failed = 0

        for patient_id in await self._patients.list_active_ids(practice_id):
            try:
                if await self.calculate_patient_benefits(patient_id, practice_id) is not None:
                    updated += 1
            except Exception as e:
                failed += 1
                await self._session.rollback()
                log.error(
                    "Error updating benefits for patient",
                    patient_id=str(patient_id),
                    error=str(e),
                )

        log.info("Benefits batch update complete", practice_id=str(practice_id), updated=updated, failed=failed)
        return {"updated": updated, "failed": failed}
