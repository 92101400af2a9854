"""Outbound channel between committed ticket writes and notification delivery."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from opentelemetry import trace

from plumbtix.events import ChangeNotice, DomainEvent, InvitationSent, LoggingRealtimeBus, RealtimeBus
from plumbtix.metrics import MetricsRegistry, metrics_registry
from plumbtix.metrics.definitions import DISPATCH_DURATION, NOTIFICATIONS_DROPPED

from .dispatcher import NotificationDispatcher
from .router import NotificationRouter

logger = logging.getLogger(__name__)
_tracer = trace.get_tracer(__name__)


class NotificationQueue:
    """Bounded asyncio queue drained by a single worker task.

    ``publish`` never blocks the caller; when the queue is full the event is
    dropped and counted. The worker pushes a realtime change notice, then
    resolves recipients and dispatches.
    """

    def __init__(
        self,
        router: NotificationRouter,
        dispatcher: NotificationDispatcher,
        *,
        realtime: RealtimeBus | None = None,
        maxsize: int = 1000,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._router = router
        self._dispatcher = dispatcher
        self._realtime = realtime or LoggingRealtimeBus()
        self._queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task[None] | None = None
        self._metrics = metrics or metrics_registry

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def publish(self, event: DomainEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._metrics.counter(NOTIFICATIONS_DROPPED).inc()
            logger.warning("Notification queue full; dropping %s event", event.kind.value)

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="plumbtix-notification-worker")
        logger.info("Notification worker started")

    async def join(self) -> None:
        await self._queue.join()

    async def stop(self, *, drain_timeout: float = 5.0) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification queue not drained after %.1fs; %d events pending",
                           drain_timeout, self._queue.qsize())
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        logger.info("Notification worker stopped")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.handle(event)
            except Exception:
                logger.exception("Notification handling failed for %s event", event.kind.value)
            finally:
                self._queue.task_done()

    async def handle(self, event: DomainEvent) -> None:
        if not isinstance(event, InvitationSent):
            try:
                await self._realtime.publish(ChangeNotice.from_event(event))
            except Exception:
                logger.exception("Realtime publish failed for %s event", event.kind.value)

        with _tracer.start_as_current_span("notifications.handle") as span:
            span.set_attribute("plumbtix.event", event.kind.value)
            with self._metrics.time(DISPATCH_DURATION):
                messages = await self._router.resolve(event)
                span.set_attribute("plumbtix.recipients", len(messages))
                if messages:
                    await self._dispatcher.dispatch(messages)
        logger.debug("Handled %s event: %d notification(s)", event.kind.value, len(messages))
