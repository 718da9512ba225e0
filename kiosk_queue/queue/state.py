from __future__ import annotations

from enum import Enum

from .exceptions import InvalidTransitionError


class TicketStatus(str, Enum):
    """Primary states of an active ticket.

    Held tickets are not a status: they live in their own store and are
    modelled by :class:`~kiosk_queue.queue.models.HeldState`.
    """

    WAITING = "waiting"
    SERVING = "serving"
    COMPLETED = "completed"
    MISSED = "missed"


class TicketStateMachine:
    """Validate ticket lifecycle transitions."""

    _TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.WAITING: frozenset({TicketStatus.SERVING, TicketStatus.MISSED}),
        TicketStatus.SERVING: frozenset({TicketStatus.WAITING, TicketStatus.COMPLETED, TicketStatus.MISSED}),
        TicketStatus.COMPLETED: frozenset(),
        TicketStatus.MISSED: frozenset(),
    }

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.WAITING

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return not cls._TRANSITIONS.get(status)

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return new in cls._TRANSITIONS.get(current, frozenset())

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise InvalidTransitionError(f"Invalid ticket status transition: {current.value} -> {new.value}")
