from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from plumbtix.api.routes import notifications, ping, tickets
from plumbtix.core.config import Settings, get_settings
from plumbtix.core.logging import configure_logging, init_tracer, shutdown_tracer
from plumbtix.events import LoggingRealtimeBus, RealtimeBus
from plumbtix.middleware import RBACMiddleware
from plumbtix.notifications.dispatcher import NotificationDispatcher
from plumbtix.notifications.models import RecipientConfig
from plumbtix.notifications.queue import NotificationQueue
from plumbtix.notifications.repository import (
    DeliveryLogRepository,
    DirectoryRepository,
    PreferenceRepository,
)
from plumbtix.notifications.router import NotificationRouter
from plumbtix.notifications.sinks import EmailSink, LoggingEmailSink, ResendEmailSink
from plumbtix.tickets.repository import TicketRepository
from plumbtix.tickets.service import TicketWorkflowService

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def build_email_sink(settings: Settings) -> EmailSink:
    if settings.resend_api_key:
        return ResendEmailSink(settings.resend_api_key, settings.resend_from)
    logger.warning("RESEND_API_KEY not set; notification emails will only be logged")
    return LoggingEmailSink()


def wire_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    *,
    engine: AsyncEngine | None = None,
    sink: EmailSink | None = None,
    realtime: RealtimeBus | None = None,
) -> NotificationQueue:
    """Build repositories, services and the outbound queue onto ``app.state``."""

    recipients = RecipientConfig(
        dispatch_emails=settings.dispatch_recipients,
        emergency_emails=settings.emergency_recipients,
        app_url=settings.app_url,
    )
    preferences = PreferenceRepository(session_factory)
    delivery_log = DeliveryLogRepository(session_factory)
    router = NotificationRouter(recipients, DirectoryRepository(session_factory), preferences)
    dispatcher = NotificationDispatcher(sink or build_email_sink(settings), delivery_log)
    queue = NotificationQueue(
        router,
        dispatcher,
        realtime=realtime or LoggingRealtimeBus(),
        maxsize=settings.notification_queue_size,
    )
    ticket_repository = TicketRepository(session_factory, engine=engine)

    app.state.ticket_service = TicketWorkflowService(ticket_repository, publisher=queue)
    app.state.preference_repository = preferences
    app.state.delivery_log = delivery_log
    app.state.notification_dispatcher = dispatcher
    app.state.notification_queue = queue
    return queue


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    queue = wire_services(app, session_factory, settings, engine=db_engine)
    await app.state.ticket_service.ensure_schema()
    queue.start()
    try:
        yield
    finally:
        await queue.stop()
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(notifications.router)
    return app


app = create_app()
