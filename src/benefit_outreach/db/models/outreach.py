"""Outreach ORM Models.

Campaigns (single-shot or multi-step sequences), their steps, the
per-attempt audit log, delivery events reported by providers and the
per-patient sequence state machine rows.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from benefit_outreach.db.base import Base, TimestampMixin, UUIDMixin, UUIDType
from benefit_outreach.db.models.patient import Money


class OutreachCampaignModel(Base, UUIDMixin, TimestampMixin):
    """Outreach campaign definition.

    Single-shot campaigns use message_type/message_template directly.
    Sequence campaigns (is_sequence=True) send their ordered steps.
    """

    __tablename__ = "outreach_campaigns"

    practice_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("practices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="expiring_60",
        comment="expiring_60, expiring_30, expiring_14",
    )
    message_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="sms",
        comment="sms, email, both",
    )
    message_template: Mapped[str] = mapped_column(Text, nullable=False, default="")
    min_benefit_amount: Mapped[float] = mapped_column(Money, nullable=False, default=200)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Sequence configuration
    is_sequence: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_stop_on_appointment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_stop_on_response: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_stop_on_opt_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    steps: Mapped[list["CampaignStepModel"]] = relationship(
        "CampaignStepModel",
        order_by="CampaignStepModel.step_number",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class CampaignStepModel(Base, UUIDMixin, TimestampMixin):
    """One ordered stage of a sequence campaign."""

    __tablename__ = "campaign_steps"

    campaign_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("outreach_campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Contiguous from 1 within a campaign",
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message_type: Mapped[str] = mapped_column(String(10), nullable=False, default="sms")
    message_template: Mapped[str] = mapped_column(Text, nullable=False)
    delay_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="fixed_days",
        comment="fixed_days, days_before_expiry",
    )
    delay_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("campaign_id", "step_number", name="uq_campaign_steps_number"),
    )


class OutreachLogModel(Base, UUIDMixin, TimestampMixin):
    """Audit row for one send attempt on one channel.

    Created at send time; afterwards only delivery webhooks update the
    tracking columns, correlated by external_id.
    """

    __tablename__ = "outreach_logs"

    campaign_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("outreach_campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )
    patient_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_id: Mapped[UUID | None] = mapped_column(
        UUIDType(),
        ForeignKey("campaign_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    step_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Message
    message_type: Mapped[str] = mapped_column(String(10), nullable=False, comment="sms, email")
    message_content: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Outcome
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="pending, sent, delivered, failed, responded",
    )
    external_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Provider message id (Twilio SID / SendGrid x-message-id)",
    )
    messaging_provider: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        comment="system, custom_sendgrid, custom_twilio",
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Delivery tracking
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    opened_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    open_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bounced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    bounce_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    bounce_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    unsubscribed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_outreach_logs_patient_campaign_created", "patient_id", "campaign_id", "created_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "campaign_id": str(self.campaign_id),
            "patient_id": str(self.patient_id),
            "step_number": self.step_number,
            "message_type": self.message_type,
            "status": self.status,
            "external_id": self.external_id,
            "messaging_provider": self.messaging_provider,
            "error_message": self.error_message,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class MessageEventModel(Base, UUIDMixin, TimestampMixin):
    """Provider delivery event, stored once per (log, type, timestamp)."""

    __tablename__ = "message_events"

    outreach_log_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("outreach_logs.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="Provider event/status name",
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, comment="twilio, sendgrid")
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "outreach_log_id", "event_type", "occurred_at", name="uq_message_events_identity"
        ),
    )


class PatientSequenceStateModel(Base, UUIDMixin, TimestampMixin):
    """Progress of one patient through one sequence campaign.

    status moves active -> stopped | completed and never back.
    current_step_number 0 means no step has been processed yet.
    """

    __tablename__ = "patient_sequence_states"

    campaign_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("outreach_campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )
    patient_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )
    current_step_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        comment="active, stopped, completed",
    )
    next_scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    stop_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    stopped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("campaign_id", "patient_id", name="uq_sequence_state_campaign_patient"),
        Index("ix_sequence_states_status_next", "status", "next_scheduled_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "campaign_id": str(self.campaign_id),
            "patient_id": str(self.patient_id),
            "current_step_number": self.current_step_number,
            "status": self.status,
            "next_scheduled_at": self.next_scheduled_at.isoformat() if self.next_scheduled_at else None,
            "stop_reason": self.stop_reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }
