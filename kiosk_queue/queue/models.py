from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Mapping, Sequence, Union

from .state import TicketStatus


@dataclass(frozen=True, slots=True)
class FlowStep:
    """One window a ticket has to visit, in traversal order."""

    window_number: int
    step_order: int


@dataclass(frozen=True, slots=True)
class VisitedWindow:
    """Audit entry appended each time a window starts serving the ticket."""

    window_number: int
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class Ticket:
    """Aggregate representing an issued queue number."""

    id: str
    display_number: str
    transaction_name: str
    transaction_prefix: str
    person_category: str
    flow: tuple[FlowStep, ...]
    current_step_order: int
    status: TicketStatus
    current_window: int | None
    created_at: datetime
    visited_windows: tuple[VisitedWindow, ...] = ()
    service_started_at: datetime | None = None
    service_ended_at: datetime | None = None

    @property
    def total_steps(self) -> int:
        return len(self.flow)

    @property
    def is_last_step(self) -> bool:
        return self.current_step_order >= len(self.flow)

    def window_for_step(self, step_order: int) -> int:
        """Return the window bound to a 1-based step of this ticket's flow."""

        if not 1 <= step_order <= len(self.flow):
            raise IndexError(f"Step {step_order} is outside the flow of ticket {self.display_number}")
        return self.flow[step_order - 1].window_number


@dataclass(frozen=True, slots=True)
class HeldTicket:
    """Shadow copy of a ticket parked in the on-hold store."""

    id: str
    ticket: Ticket
    held_at: datetime
    hold_reason: str

    @property
    def original_ticket_id(self) -> str:
        return self.ticket.id

    @property
    def display_number(self) -> str:
        return self.ticket.display_number

    @property
    def transaction_name(self) -> str:
        return self.ticket.transaction_name

    @property
    def current_window(self) -> int | None:
        return self.ticket.current_window

    @property
    def current_step_order(self) -> int:
        return self.ticket.current_step_order


@dataclass(frozen=True, slots=True)
class ActiveTicket:
    """Ticket located in the active store."""

    ticket: Ticket


@dataclass(frozen=True, slots=True)
class HeldState:
    """Ticket located in the on-hold store."""

    held: HeldTicket


TicketState = Union[ActiveTicket, HeldState]


@dataclass(slots=True)
class StepCompletion:
    """Outcome of completing the step served at a window."""

    completed_ticket: Ticket
    newly_serving_ticket: Ticket | None
    remaining_waiting: Sequence[Ticket]


@dataclass(slots=True)
class QueueStats:
    """Counts over the live session."""

    by_status: Mapping[str, int]
    by_transaction: Mapping[str, int]
    held: int


@dataclass(slots=True)
class SessionSummary:
    """End-of-day record written when a session is closed."""

    id: str
    session_date: date
    title: str
    total_tickets: int
    closed_at: datetime
    per_transaction: Mapping[str, int] = field(default_factory=dict)
    per_status: Mapping[str, int] = field(default_factory=dict)
    display_numbers: Sequence[str] = field(default_factory=list)
