"""Messaging Service Factory.

Resolves the SendGrid / Twilio gateway a practice should send through.

Resolution per channel:
1. A fresh cached client is reused; its config is recomputed from the
   practice row so credential edits show up in returned metadata.
2. A practice on a custom provider with complete, decryptable
   credentials gets its own freshly built gateway.
3. If the custom setup is incomplete or construction fails, the system
   provider is used when the practice's fallback flag is on; otherwise
   ConfigurationError is raised.
4. With no system credentials configured the resolved client is None
   and senders simulate delivery.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.config import Settings, get_settings
from benefit_outreach.core.clock import Clock, utc_now
from benefit_outreach.core.encryption import (
    CredentialEncryption,
    decrypt_if_present,
    get_encryption,
)
from benefit_outreach.core.exceptions import ConfigurationError, OutreachError
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.core.metrics import CACHE_HITS, CACHE_MISSES, OutreachMetrics, get_metrics
from benefit_outreach.db.models import (
    Channel,
    EmailProviderChoice,
    MessagingProvider,
    PracticeModel,
    SMSProviderChoice,
)
from benefit_outreach.db.repositories import PracticeRepository
from benefit_outreach.integrations.email import EmailGateway, EmailMessage, create_sendgrid_gateway
from benefit_outreach.integrations.email.templates import (
    TEST_EMAIL_SUBJECT,
    configuration_test_html,
    configuration_test_text,
    configuration_test_sms_text,
)
from benefit_outreach.integrations.sms import SMSGateway, SMSMessage, create_twilio_gateway

log = get_logger(__name__)


@dataclass(frozen=True)
class SendGridConfig:
    """Effective email sender configuration."""

    api_key: str
    from_email: str
    from_name: str
    domain_verified: bool
    provider: MessagingProvider


@dataclass(frozen=True)
class TwilioConfig:
    """Effective SMS sender configuration."""

    account_sid: str
    auth_token: str
    phone_number: str
    provider: MessagingProvider


@dataclass
class ResolvedChannel:
    """Gateway to send through plus the config it was built from.

    client is None when no provider is available at all.
    """

    client: Any
    config: Any

    @property
    def provider(self) -> MessagingProvider:
        return self.config.provider


@dataclass
class ValidationResult:
    """Outcome of a configuration check or test send."""

    is_valid: bool
    error: str | None = None
    provider: MessagingProvider | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "error": self.error,
            "provider": self.provider.value if self.provider else None,
        }


# ============================================================================
# Client cache
# ============================================================================


@dataclass
class CachedClient:
    client: Any
    provider: MessagingProvider
    cached_at: datetime


async def _close_client(client: Any) -> None:
    close = getattr(client, "close", None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:
        log.warning("Failed to close messaging client", error=str(e))


class ClientCache:
    """Per-practice gateway cache with a fixed TTL.

    Keyed by (practice_id, channel). A client leaving the cache may still
    be in the middle of a send, so it is closed on a later set() once it
    has been retired for ``grace_seconds``.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        clock: Clock = utc_now,
        grace_seconds: float = 60.0,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._grace = timedelta(seconds=grace_seconds)
        self._clock = clock
        self._entries: dict[tuple[str, Channel], CachedClient] = {}
        self._retired: list[tuple[Any, datetime]] = []
        self._closing: set[asyncio.Task[None]] = set()

    def _retire(self, client: Any) -> None:
        self._retired.append((client, self._clock()))

    def _release_retired(self) -> None:
        """Close retired clients whose grace period is over."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to close on; close() picks them up
            return
        cutoff = self._clock() - self._grace
        keep: list[tuple[Any, datetime]] = []
        for client, retired_at in self._retired:
            if retired_at > cutoff:
                keep.append((client, retired_at))
                continue
            task = loop.create_task(_close_client(client))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        self._retired = keep

    def get(self, practice_id: UUID | str, channel: Channel) -> CachedClient | None:
        key = (str(practice_id), channel)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.cached_at >= self._ttl:
            self._retire(self._entries.pop(key).client)
            return None
        return entry

    def set(
        self,
        practice_id: UUID | str,
        channel: Channel,
        client: Any,
        provider: MessagingProvider,
    ) -> None:
        self._release_retired()
        key = (str(practice_id), channel)
        previous = self._entries.get(key)
        if previous is not None and previous.client is not client:
            self._retire(previous.client)
        self._entries[key] = CachedClient(client=client, provider=provider, cached_at=self._clock())

    def invalidate(self, practice_id: UUID | str) -> int:
        """Drop every cached client of a practice.

        Returns:
            Number of entries removed
        """
        keys = [key for key in self._entries if key[0] == str(practice_id)]
        for key in keys:
            self._retire(self._entries.pop(key).client)
        return len(keys)

    def clear(self) -> None:
        for entry in self._entries.values():
            self._retire(entry.client)
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def retired_count(self) -> int:
        return len(self._retired)

    async def close(self) -> None:
        """Close all cached and retired gateways."""
        self.clear()
        retired, self._retired = self._retired, []
        for client, _ in retired:
            await _close_client(client)
        if self._closing:
            await asyncio.gather(*list(self._closing))


# ============================================================================
# Factory
# ============================================================================


class MessagingServiceFactory:
    """Per-practice messaging gateway resolver.

    Usage:
        factory = MessagingServiceFactory(session, cache=app_cache)
        resolved = await factory.resolve_sms(practice_id)
        if resolved.client is None:
            ...  # no provider configured
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        cache: ClientCache | None = None,
        encryption: CredentialEncryption | None = None,
        sms_gateway_factory: Callable[..., SMSGateway] = create_twilio_gateway,
        email_gateway_factory: Callable[..., EmailGateway] = create_sendgrid_gateway,
        clock: Clock = utc_now,
        metrics: OutreachMetrics | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._cache = cache or ClientCache(
            self._settings.messaging.client_cache_ttl_seconds, clock=clock
        )
        self._encryption = encryption if encryption is not None else get_encryption()
        self._sms_gateway_factory = sms_gateway_factory
        self._email_gateway_factory = email_gateway_factory
        self._clock = clock
        self._metrics = metrics or get_metrics()
        self._practices = PracticeRepository(session)

    @property
    def cache(self) -> ClientCache:
        return self._cache

    async def resolve_channel(self, practice_id: UUID | str, channel: Channel) -> ResolvedChannel:
        """Resolve the gateway for one channel.

        Raises:
            TenantNotFoundError: If the practice does not exist
            ConfigurationError: If custom credentials fail and fallback is off
        """
        if channel == Channel.EMAIL:
            return await self.resolve_email(practice_id)
        return await self.resolve_sms(practice_id)

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    async def resolve_email(self, practice_id: UUID | str) -> ResolvedChannel:
        cached = self._cache.get(practice_id, Channel.EMAIL)
        practice = await self._practices.get_or_raise(practice_id)

        if cached is not None:
            self._metrics.increment(CACHE_HITS)
            return ResolvedChannel(cached.client, self._email_config(practice, cached.provider))

        self._metrics.increment(CACHE_MISSES)

        if practice.email_provider == EmailProviderChoice.CUSTOM_SENDGRID.value:
            try:
                config = self._email_config(practice, MessagingProvider.CUSTOM_SENDGRID)
                if not config.api_key or not config.from_email:
                    raise ConfigurationError(
                        "Custom SendGrid API key and sender email are required",
                        details={"provider": MessagingProvider.CUSTOM_SENDGRID.value},
                    )
                client = self._email_gateway_factory(
                    config.api_key,
                    config.from_email,
                    config.from_name,
                    timeout=self._settings.messaging.request_timeout,
                )
            except Exception as e:
                log.error(
                    "Failed to initialize custom SendGrid",
                    practice_id=str(practice_id),
                    error=str(e),
                )
                if not practice.email_fallback_enabled:
                    raise ConfigurationError(
                        "Custom SendGrid configuration failed and fallback is disabled",
                        details={"provider": MessagingProvider.CUSTOM_SENDGRID.value},
                        cause=e,
                    ) from e
                log.info("Falling back to system SendGrid", practice_id=str(practice_id))
            else:
                self._cache.set(practice_id, Channel.EMAIL, client, MessagingProvider.CUSTOM_SENDGRID)
                log.info("Using custom SendGrid", practice_id=str(practice_id))
                return ResolvedChannel(client, config)

        config = self._system_email_config()
        if not self._settings.system_sendgrid_configured:
            log.warning("System SendGrid not configured", practice_id=str(practice_id))
            return ResolvedChannel(None, config)

        client = self._email_gateway_factory(
            config.api_key,
            config.from_email,
            config.from_name,
            timeout=self._settings.messaging.request_timeout,
        )
        self._cache.set(practice_id, Channel.EMAIL, client, MessagingProvider.SYSTEM)
        return ResolvedChannel(client, config)

    def _system_email_config(self) -> SendGridConfig:
        sendgrid = self._settings.messaging.sendgrid
        return SendGridConfig(
            api_key=sendgrid.api_key,
            from_email=sendgrid.from_email,
            from_name=sendgrid.from_name,
            domain_verified=True,
            provider=MessagingProvider.SYSTEM,
        )

    def _email_config(self, practice: PracticeModel, provider: MessagingProvider) -> SendGridConfig:
        if provider == MessagingProvider.SYSTEM:
            return self._system_email_config()
        from_email = practice.sendgrid_from_email or ""
        return SendGridConfig(
            api_key=decrypt_if_present(practice.sendgrid_api_key, self._encryption) or "",
            from_email=from_email,
            from_name=practice.sendgrid_from_name or from_email,
            domain_verified=practice.email_domain_verified,
            provider=MessagingProvider.CUSTOM_SENDGRID,
        )

    # ------------------------------------------------------------------
    # SMS
    # ------------------------------------------------------------------

    async def resolve_sms(self, practice_id: UUID | str) -> ResolvedChannel:
        cached = self._cache.get(practice_id, Channel.SMS)
        practice = await self._practices.get_or_raise(practice_id)

        if cached is not None:
            self._metrics.increment(CACHE_HITS)
            return ResolvedChannel(cached.client, self._sms_config(practice, cached.provider))

        self._metrics.increment(CACHE_MISSES)

        if practice.sms_provider == SMSProviderChoice.CUSTOM_TWILIO.value:
            try:
                config = self._sms_config(practice, MessagingProvider.CUSTOM_TWILIO)
                if not config.account_sid or not config.auth_token:
                    raise ConfigurationError(
                        "Failed to decrypt Twilio credentials",
                        details={"provider": MessagingProvider.CUSTOM_TWILIO.value},
                    )
                if not config.phone_number:
                    raise ConfigurationError(
                        "Twilio phone number is required",
                        details={"provider": MessagingProvider.CUSTOM_TWILIO.value},
                    )
                client = self._sms_gateway_factory(
                    config.account_sid,
                    config.auth_token,
                    config.phone_number,
                    timeout=self._settings.messaging.request_timeout,
                )
            except Exception as e:
                log.error(
                    "Failed to initialize custom Twilio",
                    practice_id=str(practice_id),
                    error=str(e),
                )
                if not practice.sms_fallback_enabled:
                    reason = e.message if isinstance(e, OutreachError) else str(e)
                    raise ConfigurationError(
                        f"Custom Twilio configuration failed: {reason}",
                        details={"provider": MessagingProvider.CUSTOM_TWILIO.value},
                        cause=e,
                    ) from e
                log.info("Falling back to system Twilio", practice_id=str(practice_id))
            else:
                self._cache.set(practice_id, Channel.SMS, client, MessagingProvider.CUSTOM_TWILIO)
                log.info("Using custom Twilio", practice_id=str(practice_id))
                return ResolvedChannel(client, config)

        config = self._system_sms_config()
        if not self._settings.system_twilio_configured:
            log.warning("System Twilio not configured", practice_id=str(practice_id))
            return ResolvedChannel(None, config)

        client = self._sms_gateway_factory(
            config.account_sid,
            config.auth_token,
            config.phone_number,
            messaging_service_sid=self._settings.messaging.twilio.messaging_service_sid,
            timeout=self._settings.messaging.request_timeout,
        )
        self._cache.set(practice_id, Channel.SMS, client, MessagingProvider.SYSTEM)
        return ResolvedChannel(client, config)

    def _system_sms_config(self) -> TwilioConfig:
        twilio = self._settings.messaging.twilio
        return TwilioConfig(
            account_sid=twilio.account_sid,
            auth_token=twilio.auth_token,
            phone_number=twilio.phone_number,
            provider=MessagingProvider.SYSTEM,
        )

    def _sms_config(self, practice: PracticeModel, provider: MessagingProvider) -> TwilioConfig:
        if provider == MessagingProvider.SYSTEM:
            return self._system_sms_config()
        return TwilioConfig(
            account_sid=decrypt_if_present(practice.twilio_account_sid, self._encryption) or "",
            auth_token=decrypt_if_present(practice.twilio_auth_token, self._encryption) or "",
            phone_number=practice.twilio_phone_number or "",
            provider=MessagingProvider.CUSTOM_TWILIO,
        )

    # ------------------------------------------------------------------
    # Validation and test sends
    # ------------------------------------------------------------------

    async def validate_email_config(self, practice_id: UUID | str) -> ValidationResult:
        try:
            resolved = await self.resolve_email(practice_id)
        except OutreachError as e:
            return ValidationResult(is_valid=False, error=e.message)

        config: SendGridConfig = resolved.config
        if resolved.client is None or not config.api_key:
            return ValidationResult(is_valid=False, error="Invalid SendGrid configuration")

        if config.provider == MessagingProvider.CUSTOM_SENDGRID and not config.domain_verified:
            return ValidationResult(
                is_valid=False,
                error="Email domain not verified. Please complete DNS verification.",
                provider=config.provider,
            )

        return ValidationResult(is_valid=True, provider=config.provider)

    async def validate_sms_config(self, practice_id: UUID | str) -> ValidationResult:
        try:
            resolved = await self.resolve_sms(practice_id)
        except OutreachError as e:
            return ValidationResult(is_valid=False, error=e.message)

        config: TwilioConfig = resolved.config
        if resolved.client is None or not config.account_sid or not config.phone_number:
            return ValidationResult(is_valid=False, error="Invalid Twilio configuration")

        return ValidationResult(is_valid=True, provider=config.provider)

    async def send_test_email(self, practice_id: UUID | str, recipient: str) -> ValidationResult:
        """Send a configuration test email and stamp email_last_tested_at."""
        try:
            resolved = await self.resolve_email(practice_id)
        except OutreachError as e:
            return ValidationResult(is_valid=False, error=e.message)

        if resolved.client is None:
            return ValidationResult(is_valid=False, error="No email provider configured")

        config: SendGridConfig = resolved.config
        result = await resolved.client.send(
            EmailMessage(
                to=recipient,
                subject=TEST_EMAIL_SUBJECT,
                body_text=configuration_test_text(config.provider.value),
                body_html=configuration_test_html(config.provider.value),
                from_email=config.from_email,
                from_name=config.from_name,
            )
        )
        if not result.success:
            log.error("Test email failed", practice_id=str(practice_id), error=result.error_message)
            return ValidationResult(
                is_valid=False,
                error=result.error_message or "Failed to send test email",
                provider=config.provider,
            )

        await self._practices.stamp_tested(practice_id, Channel.EMAIL, self._clock())
        await self._session.commit()
        return ValidationResult(is_valid=True, provider=config.provider)

    async def send_test_sms(self, practice_id: UUID | str, recipient: str) -> ValidationResult:
        """Send a configuration test SMS and stamp sms_last_tested_at."""
        try:
            resolved = await self.resolve_sms(practice_id)
        except OutreachError as e:
            return ValidationResult(is_valid=False, error=e.message)

        if resolved.client is None:
            return ValidationResult(is_valid=False, error="No SMS provider configured")

        config: TwilioConfig = resolved.config
        result = await resolved.client.send(
            SMSMessage(
                to=recipient,
                body=configuration_test_sms_text(config.provider.value),
                from_number=config.phone_number or None,
            )
        )
        if not result.success:
            log.error("Test SMS failed", practice_id=str(practice_id), error=result.error_message)
            return ValidationResult(
                is_valid=False,
                error=result.error_message or "Failed to send test SMS",
                provider=config.provider,
            )

        await self._practices.stamp_tested(practice_id, Channel.SMS, self._clock())
        await self._session.commit()
        return ValidationResult(is_valid=True, provider=config.provider)

    def invalidate(self, practice_id: UUID | str) -> int:
        """Forget cached clients after a practice changes its settings."""
        removed = self._cache.invalidate(practice_id)
        log.info("Messaging cache invalidated", practice_id=str(practice_id), removed=removed)
        return removed
