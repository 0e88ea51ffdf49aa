"""Outreach log writer.

One audit row per channel attempt. Writes are retried with backoff;
when they still fail the send outcome stands and the gap is counted.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.config import Settings, get_settings
from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.core.metrics import (
    LOG_WRITE_FAILED,
    SEND_OK_LOG_FAILED,
    OutreachMetrics,
    get_metrics,
)
from benefit_outreach.core.retry import RetryConfig, RetryExhausted, retry_async
from benefit_outreach.db.models import Channel, LogStatus, OutreachLogModel
from benefit_outreach.db.repositories import as_uuid
from benefit_outreach.services.channel_senders import SendResult

log = get_logger(__name__)


class OutreachLogWriter:
    """Writes OutreachLogModel rows and commits each one."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        metrics: OutreachMetrics | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._session = session
        self._clock = clock
        self._metrics = metrics or get_metrics()
        self._retry = RetryConfig(
            max_attempts=settings.outreach.log_write_attempts,
            base_delay=settings.outreach.log_write_base_delay,
            max_delay=2.0,
        )

    async def log(
        self,
        campaign_id: UUID | str,
        patient_id: UUID | str,
        channel: Channel,
        content: str,
        recipient: str,
        result: SendResult,
        step_id: UUID | None = None,
        step_number: int | None = None,
    ) -> bool:
        """Record one attempt.

        Returns:
            True if the row was written; False if every attempt failed
        """
        now = self._clock()

        async def write() -> None:
            self._session.add(
                OutreachLogModel(
                    campaign_id=as_uuid(campaign_id),
                    patient_id=as_uuid(patient_id),
                    step_id=step_id,
                    step_number=step_number,
                    message_type=channel.value,
                    message_content=content,
                    recipient_email=recipient if channel == Channel.EMAIL else None,
                    recipient_phone=recipient if channel == Channel.SMS else None,
                    status=(LogStatus.SENT if result.success else LogStatus.FAILED).value,
                    sent_at=now if result.success else None,
                    external_id=result.message_id,
                    messaging_provider=result.provider.value,
                    error_message=result.error,
                    created_at=now,
                    updated_at=now,
                )
            )
            await self._session.commit()

        async def rollback(exc: Exception, attempt: int, delay: float) -> None:
            await self._session.rollback()

        try:
            await retry_async(write, config=self._retry, on_retry=rollback)
            return True
        except RetryExhausted as e:
            await self._session.rollback()
            self._metrics.increment(LOG_WRITE_FAILED)
            if result.success:
                self._metrics.increment(SEND_OK_LOG_FAILED)
            log.error(
                "Outreach log write failed",
                campaign_id=str(campaign_id),
                patient_id=str(patient_id),
                channel=channel.value,
                external_id=result.message_id,
                send_succeeded=result.success,
                error=str(e.last_error),
            )
            return False
