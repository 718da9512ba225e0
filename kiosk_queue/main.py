import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from kiosk_queue.api.routes import metrics, ping, queue
from kiosk_queue.core.config import Settings, get_settings
from kiosk_queue.core.logging import configure_logging, init_tracer, shutdown_tracer
from kiosk_queue.metrics import metrics_registry
from kiosk_queue.queue.events import BroadcastNotifier
from kiosk_queue.queue.flows import FlowCatalog
from kiosk_queue.queue.repository import QueueRepository
from kiosk_queue.queue.service import QueueService

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def _load_flows(settings: Settings) -> FlowCatalog:
    path = Path(settings.flow_definitions_path)
    if not path.exists():
        logger.warning("Flow definitions file %s not found; no transactions are available", path)
        return FlowCatalog([])
    return FlowCatalog.from_file(path)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app_logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = app_logger
    app.state.tracer_provider = tracer_provider
    app.state.metrics_registry = metrics_registry
    app.state.notifier = BroadcastNotifier(queue_size=settings.event_queue_size)
    app.state.queue_service = None

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_url), future=True)
    try:
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        repository = QueueRepository(session_factory, engine=db_engine)
        service = QueueService(
            repository,
            _load_flows(settings),
            notifier=app.state.notifier,
            metrics=metrics_registry,
        )
        await service.ensure_schema()
        app.state.db_engine = db_engine
        app.state.queue_service = service
    except Exception:  # pragma: no cover - service initialisation best effort
        app_logger.exception("Queue service initialisation failed")
        await db_engine.dispose()
        db_engine = None
    try:
        yield
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(queue.router)
    app.include_router(metrics.router)
    return app


app = create_app()
