from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .engine import TransitionEngine
from .exceptions import ConcurrencyConflictError
from .issuer import utcnow
from .models import Ticket
from .repository import QueueRepository

logger = logging.getLogger(__name__)


class WindowSelector:
    """Pick and claim the next waiting ticket for a window, oldest first."""

    def __init__(
        self,
        repository: QueueRepository,
        *,
        engine: TransitionEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_conflict: Callable[[int], None] | None = None,
    ) -> None:
        self._repository = repository
        self._engine = engine or TransitionEngine()
        self._clock = clock
        self._on_conflict = on_conflict

    async def next_eligible(self, window_number: int) -> Ticket | None:
        return await self._repository.oldest_waiting(window_number)

    async def claim_next(self, window_number: int) -> Ticket | None:
        """Flip the oldest waiting ticket of the window to serving.

        A lost claim is retried once. If the retry finds the window already
        serving a ticket claimed by someone else, or loses again, the caller
        gets ``None`` just like an empty queue.
        """

        try:
            return await self._try_claim(window_number)
        except ConcurrencyConflictError as exc:
            self._record_conflict(window_number, exc)

        if await self._repository.find_serving(window_number) is not None:
            return None
        try:
            return await self._try_claim(window_number)
        except ConcurrencyConflictError as exc:
            self._record_conflict(window_number, exc)
            return None

    async def _try_claim(self, window_number: int) -> Ticket | None:
        candidate = await self.next_eligible(window_number)
        if candidate is None:
            return None
        serving = self._engine.start_serving(candidate, window_number, self._clock())
        return await self._repository.compare_and_set(candidate, serving)

    def _record_conflict(self, window_number: int, exc: ConcurrencyConflictError) -> None:
        logger.debug("Claim at window %s lost a race: %s", window_number, exc)
        if self._on_conflict is not None:
            self._on_conflict(window_number)
