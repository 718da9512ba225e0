from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from .engine import TransitionEngine
from .flows import FlowResolver
from .models import Ticket
from .repository import QueueRepository

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketIssuer:
    """Hand out sequential queue numbers for a transaction type."""

    def __init__(
        self,
        resolver: FlowResolver,
        repository: QueueRepository,
        *,
        engine: TransitionEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._resolver = resolver
        self._repository = repository
        self._engine = engine or TransitionEngine()
        self._clock = clock

    async def issue(self, transaction_name: str, person_category: str) -> Ticket:
        flow = self._resolver.resolve(transaction_name)

        def build(sequence: int) -> Ticket:
            return self._engine.new_ticket(
                flow,
                sequence=sequence,
                person_category=person_category,
                now=self._clock(),
            )

        ticket = await self._repository.create_ticket(flow.prefix, build)
        logger.info(
            "Issued %s for %s, first window %s",
            ticket.display_number,
            ticket.transaction_name,
            ticket.current_window,
        )
        return ticket
