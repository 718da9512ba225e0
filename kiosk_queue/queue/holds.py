from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .engine import TransitionEngine
from .exceptions import ConcurrencyConflictError, InvalidTransitionError, TicketNotFoundError
from .issuer import utcnow
from .models import HeldState, HeldTicket, Ticket
from .repository import QueueRepository

logger = logging.getLogger(__name__)

DEFAULT_HOLD_REASON = "Manual hold by operator"


class HoldManager:
    """Move serving tickets in and out of the on-hold store."""

    def __init__(
        self,
        repository: QueueRepository,
        *,
        engine: TransitionEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._engine = engine or TransitionEngine()
        self._clock = clock

    async def hold(self, ticket_id: str, reason: str | None = None) -> HeldTicket:
        state = await self._repository.locate(ticket_id)
        if state is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        if isinstance(state, HeldState):
            raise InvalidTransitionError(f"Ticket {state.held.display_number} is already on hold")

        ticket = state.ticket
        held = self._engine.hold(ticket, (reason or "").strip() or DEFAULT_HOLD_REASON, self._clock())
        try:
            await self._repository.move_to_held(ticket, held)
        except ConcurrencyConflictError as exc:
            raise InvalidTransitionError(str(exc)) from exc
        logger.info("Ticket %s put on hold at window %s: %s", ticket.display_number, ticket.current_window, held.hold_reason)
        return held

    async def resume(self, held_id: str, window_number: int) -> Ticket:
        held = await self._get_held(held_id)
        ticket = self._engine.resume(held, window_number)

        busy = await self._repository.find_serving(window_number)
        if busy is not None:
            raise InvalidTransitionError(f"Window {window_number} is already serving {busy.display_number}")
        try:
            await self._repository.restore_from_held(held, ticket)
        except ConcurrencyConflictError as exc:
            raise InvalidTransitionError(str(exc)) from exc
        logger.info("Held ticket %s resumed at window %s", ticket.display_number, window_number)
        return ticket

    async def discard(self, held_id: str) -> HeldTicket:
        held = await self._get_held(held_id)
        if not await self._repository.delete_held(held_id):
            raise TicketNotFoundError(f"Held ticket {held_id} not found")
        logger.info("Held ticket %s discarded", held.display_number)
        return held

    async def release_all(self) -> list[Ticket]:
        released = await self._repository.restore_all_held(self._engine.release)
        if released:
            logger.info("Released %d held tickets back to their windows", len(released))
        return released

    async def list_held(self, window_number: int | None = None) -> list[HeldTicket]:
        return await self._repository.list_held(window_number=window_number)

    async def _get_held(self, held_id: str) -> HeldTicket:
        held = await self._repository.get_held(held_id)
        if held is None:
            raise TicketNotFoundError(f"Held ticket {held_id} not found")
        return held
