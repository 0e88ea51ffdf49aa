"""Outreach services."""
from benefit_outreach.services.benefits_engine import BenefitRecord, BenefitsEngine, BenefitsProvider
from benefit_outreach.services.channel_senders import EmailSender, SendResult, SMSSender
from benefit_outreach.services.delivery_events import DeliveryEventService
from benefit_outreach.services.dispatch import DispatchOutcome, OutreachDispatcher
from benefit_outreach.services.messaging_factory import (
    ClientCache,
    MessagingServiceFactory,
    ResolvedChannel,
    ValidationResult,
)
from benefit_outreach.services.outreach_log import OutreachLogWriter
from benefit_outreach.services.outreach_service import OutreachRunResult, OutreachService
from benefit_outreach.services.personalization import personalize_message
from benefit_outreach.services.scheduler import OutreachScheduler
from benefit_outreach.services.sequence_engine import SequenceEngine, TenantTickGuard
from benefit_outreach.services.usage import UsageDecision, UsageGate

__all__ = [
    "BenefitRecord",
    "BenefitsEngine",
    "BenefitsProvider",
    "ClientCache",
    "DeliveryEventService",
    "DispatchOutcome",
    "EmailSender",
    "MessagingServiceFactory",
    "OutreachDispatcher",
    "OutreachLogWriter",
    "OutreachRunResult",
    "OutreachScheduler",
    "OutreachService",
    "ResolvedChannel",
    "SendResult",
    "SequenceEngine",
    "SMSSender",
    "TenantTickGuard",
    "UsageDecision",
    "UsageGate",
    "ValidationResult",
    "personalize_message",
]
