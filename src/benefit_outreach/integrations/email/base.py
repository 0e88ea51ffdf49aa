"""Email gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class EmailStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    FAILED = "failed"
    SPAM = "spam"
    UNSUBSCRIBED = "unsubscribed"
    UNKNOWN = "unknown"


@dataclass
class EmailMessage:
    to: str | list[str]
    subject: str
    body_text: str | None = None
    body_html: str | None = None
    from_email: str | None = None
    from_name: str | None = None
    # Echoed back on every webhook event for this message
    custom_args: dict[str, str] | None = None

    def __post_init__(self) -> None:
        if isinstance(self.to, str):
            self.to = [self.to]


@dataclass
class EmailResult:
    success: bool
    message_id: str | None = None
    status: EmailStatus = EmailStatus.UNKNOWN
    provider: str = ""
    error_message: str | None = None
    error_code: str | None = None

    @classmethod
    def failed(cls, provider: str, error: str, code: str | None = None) -> "EmailResult":
        return cls(
            success=False,
            status=EmailStatus.FAILED,
            provider=provider,
            error_message=error,
            error_code=code,
        )


class EmailGateway(ABC):
    """One API key talking to one email provider."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        ...

    async def close(self) -> None:
        """Release the HTTP client."""

    @staticmethod
    def validate_message(message: EmailMessage) -> list[str]:
        """Problems that would make the provider reject the message."""
        errors = [f"Invalid recipient address: {to}" for to in message.to if "@" not in to]
        if not message.to:
            errors.append("No recipients specified")
        if not message.subject:
            errors.append("Subject is required")
        if not (message.body_text or message.body_html):
            errors.append("Email body is required")
        return errors
