from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from kiosk_queue.metrics import MetricsRegistry
from kiosk_queue.queue.flows import FlowCatalog
from kiosk_queue.queue.repository import QueueRepository
from kiosk_queue.queue.service import QueueService

FLOW_DATA = {
    "flows": [
        {
            "name": "Permit Renewal",
            "prefix": "PR",
            "steps": [
                {"step_number": 1, "step_name": "Evaluation", "window_number": 1},
                {"step_number": 2, "step_name": "Releasing", "window_number": 3},
            ],
        },
        {
            "name": "Information",
            "prefix": "INF",
            "steps": [{"step_number": 1, "step_name": "Inquiry", "window_number": 2}],
        },
        {
            "name": "Documentation",
            "prefix": "DOC",
            "steps": [
                {"step_number": 1, "step_name": "Kiosk form", "window_number": 0},
                {"step_number": 2, "step_name": "Verification", "window_number": 4},
                {"step_number": 3, "step_name": "Release", "window_number": 5},
            ],
        },
        {
            "name": "Retired Service",
            "prefix": "RS",
            "is_active": False,
            "steps": [{"step_number": 1, "step_name": "Counter", "window_number": 1}],
        },
    ]
}


class ManualClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    async def publish(self, event) -> None:
        self.events.append(event)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def repository(session_factory: async_sessionmaker, engine: AsyncEngine) -> QueueRepository:
    return QueueRepository(session_factory, engine=engine)


@pytest.fixture
def flow_data() -> dict:
    return FLOW_DATA


@pytest.fixture
def catalog(flow_data) -> FlowCatalog:
    return FlowCatalog.from_data(flow_data)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def service(repository, catalog, notifier, metrics, clock) -> QueueService:
    return QueueService(repository, catalog, notifier=notifier, metrics=metrics, clock=clock)
