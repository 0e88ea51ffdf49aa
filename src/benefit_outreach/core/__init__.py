"""Core utilities: logging, errors, clock, retry, metrics, encryption."""
from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.exceptions import (
    OutreachError,
    DatabaseError,
    RecordNotFoundError,
    TenantNotFoundError,
    CampaignNotFoundError,
    ConfigurationError,
    CredentialEncryptionError,
    BusinessError,
    SequenceValidationError,
    DuplicateEnrollmentError,
)
from benefit_outreach.core.log_setup import get_logger, setup_logging

__all__ = [
    "Clock",
    "utc_now",
    "OutreachError",
    "DatabaseError",
    "RecordNotFoundError",
    "TenantNotFoundError",
    "CampaignNotFoundError",
    "ConfigurationError",
    "CredentialEncryptionError",
    "BusinessError",
    "SequenceValidationError",
    "DuplicateEnrollmentError",
    "get_logger",
    "setup_logging",
]
