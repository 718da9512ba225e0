"""Pure ticket transitions.

Every function takes the current snapshot of a ticket and returns the next
one; nothing here touches storage. The repository persists the result with a
conditional update keyed on the snapshot the transition started from.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime

from .exceptions import InvalidTransitionError
from .flows import ResolvedFlow
from .models import HeldTicket, Ticket, VisitedWindow
from .state import TicketStateMachine, TicketStatus


def format_display_number(prefix: str, sequence: int) -> str:
    if sequence < 1:
        raise ValueError("sequence must start at 1")
    return f"{prefix}{sequence:03d}"


class TransitionEngine:
    """State machine applying ticket transitions."""

    def __init__(self, state_machine: type[TicketStateMachine] = TicketStateMachine) -> None:
        self._state_machine = state_machine

    def new_ticket(
        self,
        flow: ResolvedFlow,
        *,
        sequence: int,
        person_category: str,
        now: datetime,
        ticket_id: str | None = None,
    ) -> Ticket:
        return Ticket(
            id=ticket_id or str(uuid.uuid4()),
            display_number=format_display_number(flow.prefix, sequence),
            transaction_name=flow.transaction_name,
            transaction_prefix=flow.prefix,
            person_category=person_category,
            flow=flow.steps,
            current_step_order=1,
            status=self._state_machine.initial_state(),
            current_window=flow.first_window,
            created_at=now,
        )

    def start_serving(self, ticket: Ticket, window_number: int, now: datetime) -> Ticket:
        if ticket.current_window != window_number:
            raise InvalidTransitionError(
                f"Ticket {ticket.display_number} is queued at window {ticket.current_window}, not {window_number}"
            )
        self._state_machine.assert_transition(ticket.status, TicketStatus.SERVING)
        return replace(
            ticket,
            status=TicketStatus.SERVING,
            service_started_at=now,
            visited_windows=(*ticket.visited_windows, VisitedWindow(window_number=window_number, timestamp=now)),
        )

    def complete_step(self, ticket: Ticket, window_number: int, now: datetime) -> Ticket:
        if ticket.status is not TicketStatus.SERVING or ticket.current_window != window_number:
            raise InvalidTransitionError(
                f"Ticket {ticket.display_number} is not being served at window {window_number}"
            )

        if not ticket.is_last_step:
            next_step = ticket.current_step_order + 1
            self._state_machine.assert_transition(ticket.status, TicketStatus.WAITING)
            return replace(
                ticket,
                status=TicketStatus.WAITING,
                current_step_order=next_step,
                current_window=ticket.window_for_step(next_step),
            )

        self._state_machine.assert_transition(ticket.status, TicketStatus.COMPLETED)
        return replace(
            ticket,
            status=TicketStatus.COMPLETED,
            current_window=None,
            service_ended_at=now,
        )

    def mark_missed(self, ticket: Ticket, now: datetime) -> Ticket:
        self._state_machine.assert_transition(ticket.status, TicketStatus.MISSED)
        return replace(ticket, status=TicketStatus.MISSED, current_window=None, service_ended_at=now)

    def hold(self, ticket: Ticket, reason: str, now: datetime, *, held_id: str | None = None) -> HeldTicket:
        if ticket.status is not TicketStatus.SERVING:
            raise InvalidTransitionError(
                f"Only a ticket being served can be put on hold; {ticket.display_number} is {ticket.status.value}"
            )
        return HeldTicket(id=held_id or str(uuid.uuid4()), ticket=ticket, held_at=now, hold_reason=reason)

    def resume(self, held: HeldTicket, window_number: int) -> Ticket:
        ticket = held.ticket
        expected = ticket.window_for_step(ticket.current_step_order)
        if window_number != expected:
            raise InvalidTransitionError(
                f"Held ticket {ticket.display_number} belongs to window {expected}, not {window_number}"
            )
        return replace(ticket, status=TicketStatus.SERVING, current_window=window_number)

    def release(self, held: HeldTicket) -> Ticket:
        """Return a held ticket to the waiting line of its current step."""

        ticket = held.ticket
        self._state_machine.assert_transition(ticket.status, TicketStatus.WAITING)
        visited = ticket.visited_windows
        # The interrupted step is served again, so its visit is recorded on the next call.
        if len(visited) >= ticket.current_step_order:
            visited = visited[: ticket.current_step_order - 1]
        return replace(
            ticket,
            status=TicketStatus.WAITING,
            current_window=ticket.window_for_step(ticket.current_step_order),
            service_started_at=None,
            visited_windows=visited,
        )
