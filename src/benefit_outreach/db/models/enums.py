"""Status and type vocabularies shared by models and services.

Columns store the plain string value; these enums give the services
named constants to compare against.
"""
from __future__ import annotations

from enum import Enum


class Channel(str, Enum):
    """Outbound channel a message goes through."""

    SMS = "sms"
    EMAIL = "email"


class MessageType(str, Enum):
    """Channel selection on a campaign or step."""

    SMS = "sms"
    EMAIL = "email"
    BOTH = "both"


class EmailProviderChoice(str, Enum):
    SYSTEM = "system"
    CUSTOM_SENDGRID = "custom_sendgrid"


class SMSProviderChoice(str, Enum):
    SYSTEM = "system"
    CUSTOM_TWILIO = "custom_twilio"


class MessagingProvider(str, Enum):
    """Credential source actually used for a send."""

    SYSTEM = "system"
    CUSTOM_SENDGRID = "custom_sendgrid"
    CUSTOM_TWILIO = "custom_twilio"


class LogStatus(str, Enum):
    """Outreach log lifecycle."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    RESPONDED = "responded"


class SequenceStatus(str, Enum):
    """Patient sequence state. STOPPED and COMPLETED are terminal."""

    ACTIVE = "active"
    STOPPED = "stopped"
    COMPLETED = "completed"


class StopReason(str, Enum):
    APPOINTMENT_BOOKED = "appointment_booked"
    PATIENT_RESPONDED = "patient_responded"
    OPTED_OUT = "opted_out"
    EXPIRY_PASSED = "expiry_passed"


class DelayType(str, Enum):
    """How a sequence step's send time is computed."""

    FIXED_DAYS = "fixed_days"
    DAYS_BEFORE_EXPIRY = "days_before_expiry"


class TriggerType(str, Enum):
    EXPIRING_60 = "expiring_60"
    EXPIRING_30 = "expiring_30"
    EXPIRING_14 = "expiring_14"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
