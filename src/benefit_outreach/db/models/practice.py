"""Practice (tenant) ORM Model.

A practice is the multi-tenancy boundary. Besides identity it holds the
messaging provider selection, encrypted custom credentials, fallback
flags and subscription usage counters.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from benefit_outreach.db.base import Base, TimestampMixin, UUIDMixin


class PracticeModel(Base, UUIDMixin, TimestampMixin):
    """Dental practice account."""

    __tablename__ = "practices"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Practice display name",
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Email provider configuration
    email_provider: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="system",
        comment="system, custom_sendgrid",
    )
    sendgrid_api_key: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Encrypted SendGrid API key",
    )
    sendgrid_from_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sendgrid_from_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_domain_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Sender domain DNS verification complete",
    )
    email_fallback_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Use system SendGrid if custom configuration fails",
    )
    email_last_tested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # SMS provider configuration
    sms_provider: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="system",
        comment="system, custom_twilio",
    )
    twilio_account_sid: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Encrypted Twilio account SID",
    )
    twilio_auth_token: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Encrypted Twilio auth token",
    )
    twilio_phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sms_fallback_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Use system Twilio if custom configuration fails",
    )
    sms_last_tested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Subscription and usage
    subscription_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="trial",
        index=True,
        comment="trial, trialing, active, past_due, canceled",
    )
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    messages_included: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=500,
        comment="Messages included in the plan per billing cycle",
    )
    messages_sent_this_month: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    billing_cycle_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        """Public view; credentials are never included."""
        return {
            "id": str(self.id),
            "name": self.name,
            "email_provider": self.email_provider,
            "sms_provider": self.sms_provider,
            "email_domain_verified": self.email_domain_verified,
            "email_fallback_enabled": self.email_fallback_enabled,
            "sms_fallback_enabled": self.sms_fallback_enabled,
            "subscription_status": self.subscription_status,
            "messages_included": self.messages_included,
            "messages_sent_this_month": self.messages_sent_this_month,
        }
