"""FastAPI dependencies.

Process-wide objects (gateway cache, sequence tick guard) live on
app.state and are created in create_app(); services are built per
request around the request's database session.

Usage:
    @router.post("/endpoint")
    async def handler(service: OutreachServiceDep):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_outreach.config import Settings, get_settings
from benefit_outreach.db.session import get_db
from benefit_outreach.services.delivery_events import DeliveryEventService
from benefit_outreach.services.messaging_factory import ClientCache, MessagingServiceFactory
from benefit_outreach.services.outreach_service import OutreachService
from benefit_outreach.services.sequence_engine import TenantTickGuard


def get_app_settings() -> Settings:
    return get_settings()


def get_client_cache(request: Request) -> ClientCache:
    return request.app.state.client_cache


def get_tick_guard(request: Request) -> TenantTickGuard:
    return request.app.state.tick_guard


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
SessionDep = Annotated[AsyncSession, Depends(get_db)]
CacheDep = Annotated[ClientCache, Depends(get_client_cache)]
GuardDep = Annotated[TenantTickGuard, Depends(get_tick_guard)]


def get_outreach_service(
    session: SessionDep, settings: SettingsDep, cache: CacheDep, guard: GuardDep
) -> OutreachService:
    return OutreachService(session, settings, cache=cache, guard=guard)


def get_messaging_factory(
    session: SessionDep, settings: SettingsDep, cache: CacheDep
) -> MessagingServiceFactory:
    return MessagingServiceFactory(session, settings, cache=cache)


def get_delivery_events(session: SessionDep) -> DeliveryEventService:
    return DeliveryEventService(session)


OutreachServiceDep = Annotated[OutreachService, Depends(get_outreach_service)]
MessagingFactoryDep = Annotated[MessagingServiceFactory, Depends(get_messaging_factory)]
DeliveryEventsDep = Annotated[DeliveryEventService, Depends(get_delivery_events)]
