"""Per-tenant FIFO scheduling with a bounded number of concurrent tasks."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

logger = logging.getLogger(__name__)

QueueTask = Callable[[], Awaitable[None]]
QueueEventName = Literal["enqueued", "started", "finished"]


@dataclass(slots=True, frozen=True)
class QueueEvent:
    tenant_key: str
    event: QueueEventName
    running: int
    pending: int


ErrorObserver = Callable[[str, BaseException], None]
EventObserver = Callable[[QueueEvent], None]


def _log_task_error(tenant_key: str, error: BaseException) -> None:
    logger.error(
        "Queued task failed with uncaught error",
        exc_info=(type(error), error, error.__traceback__),
        extra={"tenant_key": tenant_key},
    )


def _log_queue_event(event: QueueEvent) -> None:
    logger.debug(
        "Request queue state changed",
        extra={
            "tenant_key": event.tenant_key,
            "event": event.event,
            "running": event.running,
            "pending": event.pending,
        },
    )


class TenantScheduler:
    """Run at most ``max_concurrency`` tasks per tenant key, queueing the rest in order.

    Accounting is strictly per key: a tenant that saturates its own slots
    never delays another tenant's tasks. Task failures go to ``on_error``
    and never propagate out of the scheduler.
    """

    def __init__(
        self,
        max_concurrency: int,
        *,
        on_error: ErrorObserver | None = None,
        on_event: EventObserver | None = None,
    ) -> None:
        self._limit = max(1, int(max_concurrency))
        self._on_error = on_error or _log_task_error
        self._on_event = on_event or _log_queue_event
        self._running: dict[str, int] = {}
        self._pending: dict[str, deque[QueueTask]] = {}
        self._tasks: set[asyncio.Future[None]] = set()

    @property
    def max_concurrency(self) -> int:
        return self._limit

    def running(self, tenant_key: str) -> int:
        return self._running.get(tenant_key, 0)

    def pending(self, tenant_key: str) -> int:
        return len(self._pending.get(tenant_key, ()))

    def snapshot(self) -> dict[str, dict[str, int]]:
        keys = set(self._running) | set(self._pending)
        return {
            key: {"running": self.running(key), "pending": self.pending(key)}
            for key in sorted(keys)
        }

    def enqueue(self, tenant_key: str, task: QueueTask) -> None:
        """Queue ``task`` under ``tenant_key``. Must be called from the event loop."""

        self._pending.setdefault(tenant_key, deque()).append(task)
        self._emit(tenant_key, "enqueued")
        self._advance(tenant_key)

    async def wait_idle(self) -> None:
        """Wait until every queued and running task has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Drop pending work and cancel running tasks."""

        self._pending.clear()
        for future in list(self._tasks):
            future.cancel()
        await self.wait_idle()

    def _advance(self, tenant_key: str) -> None:
        queue = self._pending.get(tenant_key)
        while queue and self.running(tenant_key) < self._limit:
            task = queue.popleft()
            self._running[tenant_key] = self.running(tenant_key) + 1
            self._emit(tenant_key, "started")
            future = asyncio.ensure_future(self._invoke(task))
            self._tasks.add(future)
            future.add_done_callback(functools.partial(self._on_done, tenant_key))
        self._forget_if_idle(tenant_key)

    @staticmethod
    async def _invoke(task: QueueTask) -> None:
        await task()

    def _on_done(self, tenant_key: str, future: asyncio.Future[None]) -> None:
        self._tasks.discard(future)
        self._running[tenant_key] = max(0, self.running(tenant_key) - 1)
        self._emit(tenant_key, "finished")

        if future.cancelled():
            logger.warning("Queued task was cancelled", extra={"tenant_key": tenant_key})
        else:
            error = future.exception()
            if error is not None:
                try:
                    self._on_error(tenant_key, error)
                except Exception:
                    logger.exception("Queue error observer raised", extra={"tenant_key": tenant_key})

        self._advance(tenant_key)

    def _forget_if_idle(self, tenant_key: str) -> None:
        if self.running(tenant_key) == 0 and self.pending(tenant_key) == 0:
            self._running.pop(tenant_key, None)
            self._pending.pop(tenant_key, None)

    def _emit(self, tenant_key: str, event: QueueEventName) -> None:
        payload = QueueEvent(
            tenant_key=tenant_key,
            event=event,
            running=self.running(tenant_key),
            pending=self.pending(tenant_key),
        )
        try:
            self._on_event(payload)
        except Exception:
            logger.exception("Queue event observer raised", extra={"tenant_key": tenant_key})


__all__ = ["QueueEvent", "QueueTask", "TenantScheduler"]
