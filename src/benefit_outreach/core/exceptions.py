"""Benefit Outreach Exception Hierarchy.

Provides structured error handling with context preservation
and proper HTTP status code mapping.
"""

from __future__ import annotations

from typing import Any


class OutreachError(Exception):
    """Base exception for all outreach engine errors.

    All custom exceptions should inherit from this class.
    Provides:
    - Structured error context
    - HTTP status code mapping
    - Logging-friendly representation
    """

    status_code: int = 500
    error_code: str = "OUTREACH_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Additional context for debugging
            cause: Original exception if wrapping
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        """String representation for logging."""
        parts = [f"{self.error_code}: {self.message}"]
        if self.details:
            parts.append(f"details={self.details}")
        if self.cause:
            parts.append(f"cause={self.cause}")
        return " | ".join(parts)


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(OutreachError):
    """Base class for database-related errors."""

    status_code = 503
    error_code = "DATABASE_ERROR"


class RecordNotFoundError(DatabaseError):
    """Requested record not found."""

    status_code = 404
    error_code = "RECORD_NOT_FOUND"


class TenantNotFoundError(RecordNotFoundError):
    """Practice (tenant) does not exist."""

    error_code = "TENANT_NOT_FOUND"


class CampaignNotFoundError(RecordNotFoundError):
    """Campaign does not exist for this practice."""

    error_code = "CAMPAIGN_NOT_FOUND"


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(OutreachError):
    """Messaging credentials missing or invalid and no fallback allowed.

    Never retried within the same attempt.
    """

    status_code = 500
    error_code = "CONFIGURATION_ERROR"


class CredentialEncryptionError(ConfigurationError):
    """Encryption key or ciphertext problem."""

    error_code = "CREDENTIAL_ENCRYPTION_ERROR"


# =============================================================================
# Business Logic Errors
# =============================================================================


class BusinessError(OutreachError):
    """Base class for business logic errors."""

    status_code = 400
    error_code = "BUSINESS_ERROR"


class SequenceValidationError(BusinessError):
    """Campaign is not a sequence or has no active steps."""

    error_code = "SEQUENCE_VALIDATION_ERROR"


class DuplicateEnrollmentError(BusinessError):
    """Patient already has a sequence state for this campaign."""

    status_code = 409
    error_code = "DUPLICATE_ENROLLMENT"
