"""Patient-side ORM Models.

Patients, their insurance coverage, appointments, contact preferences
and historical benefit snapshots. Rows are refreshed by the practice
management sync; this service reads them and maintains the derived
remaining-benefit figure.
"""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from benefit_outreach.db.base import Base, TimestampMixin, UUIDMixin, UUIDType

# Money columns read back as float
Money = Numeric(10, 2, asdecimal=False)


class PatientModel(Base, UUIDMixin, TimestampMixin):
    """Patient belonging to exactly one practice."""

    __tablename__ = "patients"

    practice_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("practices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        index=True,
        comment="Mobile number in E.164 format",
    )
    external_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Patient id in the practice management system",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PatientInsuranceModel(Base, UUIDMixin, TimestampMixin):
    """Insurance coverage with the current benefit year's figures."""

    __tablename__ = "patient_insurance"

    patient_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    insurance_carrier: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Carrier name, e.g. Delta Dental",
    )
    annual_maximum: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    deductible: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    deductible_met: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    used_benefits: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    remaining_benefits: Mapped[float] = mapped_column(
        Money,
        nullable=False,
        default=0,
        comment="Cached annual_maximum - used_benefits",
    )
    expiration_date: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
        comment="End of the benefit year",
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class AppointmentModel(Base, UUIDMixin, TimestampMixin):
    """Appointment synced from the practice management system."""

    __tablename__ = "appointments"

    patient_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    appointment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="scheduled",
        comment="scheduled, completed, cancelled, no_show",
    )
    procedure: Mapped[str | None] = mapped_column(String(255), nullable=True)


class PatientPreferencesModel(Base, UUIDMixin, TimestampMixin):
    """Per-patient communication opt-outs."""

    __tablename__ = "patient_preferences"

    patient_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    email_opt_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sms_opt_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    opt_out_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    opted_out_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class BenefitsSnapshotModel(Base, UUIDMixin, TimestampMixin):
    """Point-in-time copy of a patient's benefit figures."""

    __tablename__ = "benefits_snapshots"

    patient_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )
    annual_maximum: Mapped[float] = mapped_column(Money, nullable=False)
    deductible: Mapped[float] = mapped_column(Money, nullable=False)
    deductible_met: Mapped[float] = mapped_column(Money, nullable=False)
    used_benefits: Mapped[float] = mapped_column(Money, nullable=False)
    remaining_benefits: Mapped[float] = mapped_column(Money, nullable=False)
    days_until_expiry: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_benefits_snapshots_patient_created", "patient_id", "created_at"),
    )
