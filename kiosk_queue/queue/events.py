"""Outbound notification contract and notifier implementations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, ClassVar, Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TicketIssued:
    event_type: ClassVar[str] = "ticket_issued"

    ticket_id: str
    display_number: str
    transaction_name: str
    window_number: int | None


@dataclass(frozen=True, slots=True)
class TicketStateChanged:
    event_type: ClassVar[str] = "ticket_state_changed"

    ticket_id: str
    display_number: str
    new_status: str
    window_number: int | None


@dataclass(frozen=True, slots=True)
class AnnouncementRequested:
    event_type: ClassVar[str] = "announcement_requested"

    display_number: str
    window_number: int
    repeat: bool = False


QueueEvent = Union[TicketIssued, TicketStateChanged, AnnouncementRequested]


def event_payload(event: QueueEvent) -> dict[str, Any]:
    """Serialise an event into a JSON friendly mapping."""

    return {"event": event.event_type, **asdict(event)}


class Notifier(Protocol):
    async def publish(self, event: QueueEvent) -> None:
        ...


class NullNotifier:
    """Notifier that drops every event."""

    async def publish(self, event: QueueEvent) -> None:
        return None


class BroadcastNotifier:
    """Fan events out to in-process subscribers such as display websockets.

    Each subscriber owns a bounded queue. Publishing never waits: when a
    subscriber falls behind, the event is dropped for that subscriber only.
    """

    def __init__(self, *, queue_size: int = 100) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be greater than zero")
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[QueueEvent]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: QueueEvent) -> None:
        for queue in tuple(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s for a slow subscriber", event.event_type)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue[QueueEvent]]:
        queue: asyncio.Queue[QueueEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)
