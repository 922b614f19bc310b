"""Shared fixtures: in-memory database, repository and row factories."""
import json
from datetime import datetime
from typing import List
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pulseguard.database import Base
from pulseguard.models import (
    MaintenanceWindow,
    NotificationChannel,
    NotificationRule,
    Service,
)
from pulseguard.services.channels import ChannelSender
from pulseguard.services.checker import CheckerService
from pulseguard.services.dispatcher import NotificationDispatcher
from pulseguard.services.maintenance import MaintenanceService
from pulseguard.services.repository import MonitorRepository
from pulseguard.services.scheduler import SchedulerService

T0 = datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def repository(session_factory):
    return MonitorRepository(session_factory)


@pytest.fixture
def add(session_factory):
    """Insert rows and return them with ids populated."""

    async def _add(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    return _add


@pytest.fixture
def fetch_all(session_factory):
    """All rows of a model, in insertion order."""

    async def _fetch(model):
        async with session_factory() as session:
            result = await session.execute(select(model).order_by(model.id))
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def make_service(add):
    async def _make(**overrides) -> Service:
        fields = {
            "name": "Example API",
            "type": "HTTP",
            "target": "https://example.com/health",
            "check_interval": 60,
        }
        fields.update(overrides)
        return await add(Service(**fields))

    return _make


@pytest.fixture
def make_webhook_rule(add):
    """Webhook channel plus a rule binding it to a service."""

    async def _make(service_id: int, events=("down", "up"), threshold=1, cooldown=300, url="https://hooks.example.com/alert", **rule_fields):
        channel = await add(NotificationChannel(
            name="Ops webhook",
            type="webhook",
            config=json.dumps({"url": url}),
        ))
        rule = await add(NotificationRule(
            service_id=service_id,
            channel_id=channel.id,
            events=json.dumps(list(events)),
            threshold=threshold,
            cooldown=cooldown,
            **rule_fields,
        ))
        return channel, rule

    return _make


@pytest.fixture
def make_window(add):
    async def _make(service_id=None, start=T0, end=T0, **fields) -> MaintenanceWindow:
        return await add(MaintenanceWindow(
            service_id=service_id,
            title=fields.pop("title", "Planned upgrade"),
            start_time=start,
            end_time=end,
            **fields,
        ))

    return _make


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it answered."""

    def __init__(self, status_code: int = 200, json_body=None):
        self.requests: List[httpx.Request] = []
        self.status_code = status_code
        self.json_body = json_body if json_body is not None else {"ok": True}
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.json_body)


@pytest.fixture
def webhook_transport():
    return RecordingTransport()


@pytest.fixture
def dispatcher(repository, webhook_transport):
    return NotificationDispatcher(repository, ChannelSender(transport=webhook_transport), clock=lambda: T0)


@pytest.fixture
def maintenance(repository):
    return MaintenanceService(repository)


@pytest.fixture
def checker():
    """CheckerService double; async methods become AsyncMocks."""
    return MagicMock(spec=CheckerService)


@pytest.fixture
def scheduler(repository, dispatcher, maintenance, checker):
    service = SchedulerService(repository, dispatcher, maintenance, checker=checker)
    yield service
    service.stop()
