"""SMS gateway interface.

Gateways never raise for provider rejections; they return an
SMSResult with ``success=False`` and the provider's error text.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class SMSStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass
class SMSMessage:
    to: str
    body: str
    from_number: str | None = None
    # Per-message delivery webhook, carries the practice id
    status_callback: str | None = None


@dataclass
class SMSResult:
    success: bool
    message_id: str | None = None
    status: SMSStatus = SMSStatus.UNKNOWN
    provider: str = ""
    error_message: str | None = None

    @classmethod
    def failed(cls, provider: str, error: str) -> "SMSResult":
        return cls(success=False, status=SMSStatus.FAILED, provider=provider, error_message=error)


class SMSGateway(ABC):
    """One credential set talking to one SMS provider."""

    @abstractmethod
    async def send(self, message: SMSMessage) -> SMSResult:
        ...

    async def close(self) -> None:
        """Release the HTTP client."""

    @staticmethod
    def normalize_phone(phone: str) -> str:
        """North American numbers to E.164; anything with a prefix kept as is.

        "(555) 123-4567" -> "+15551234567", "0044 20..." -> "+4420..."
        """
        digits = "".join(c for c in phone if c.isdigit() or c == "+")
        if digits.startswith("+"):
            return digits
        if digits.startswith("00"):
            return "+" + digits[2:]
        if len(digits) == 10:
            return "+1" + digits
        return "+" + digits
