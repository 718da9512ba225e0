from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from kiosk_queue.metrics import CLAIM_CONFLICTS, OPERATION_DURATION, TICKETS_ISSUED, TRANSITIONS, MetricsRegistry

from .engine import TransitionEngine
from .events import AnnouncementRequested, Notifier, NullNotifier, QueueEvent, TicketIssued, TicketStateChanged
from .exceptions import ConcurrencyConflictError, InvalidTransitionError, TicketNotFoundError
from .flows import FlowDefinitionSource, FlowResolver, TransactionFlow
from .holds import HoldManager
from .issuer import TicketIssuer, utcnow
from .models import ActiveTicket, HeldTicket, QueueStats, SessionSummary, StepCompletion, Ticket
from .repository import QueueRepository, summarise_tickets
from .selector import WindowSelector
from .state import TicketStatus

logger = logging.getLogger(__name__)


class QueueService:
    """High level orchestration of ticket issuance, window calls and holds."""

    def __init__(
        self,
        repository: QueueRepository,
        flows: FlowDefinitionSource,
        *,
        notifier: Notifier | None = None,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._flows = flows
        self._notifier = notifier or NullNotifier()
        self._metrics = metrics or MetricsRegistry()
        self._clock = clock
        self._engine = TransitionEngine()
        self._issuer = TicketIssuer(FlowResolver(flows), repository, engine=self._engine, clock=clock)
        self._selector = WindowSelector(
            repository,
            engine=self._engine,
            clock=clock,
            on_conflict=lambda _window: self._metrics.counter(CLAIM_CONFLICTS).inc(),
        )
        self._holds = HoldManager(repository, engine=self._engine, clock=clock)

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    def list_transactions(self) -> list[TransactionFlow]:
        list_active = getattr(self._flows, "list_active", None)
        return list(list_active()) if list_active is not None else []

    async def issue_ticket(self, transaction_name: str, person_category: str) -> Ticket:
        with self._metrics.time(OPERATION_DURATION, labels={"operation": "issue_ticket"}):
            ticket = await self._issuer.issue(transaction_name, person_category)
        self._metrics.counter(TICKETS_ISSUED, label_names=("prefix",)).inc(labels={"prefix": ticket.transaction_prefix})
        await self._emit(
            TicketIssued(
                ticket_id=ticket.id,
                display_number=ticket.display_number,
                transaction_name=ticket.transaction_name,
                window_number=ticket.current_window,
            )
        )
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_serving(self) -> list[Ticket]:
        return await self._repository.list_tickets(status=TicketStatus.SERVING)

    async def list_waiting(self, window_number: int | None = None) -> list[Ticket]:
        return await self._repository.list_tickets(status=TicketStatus.WAITING, window_number=window_number)

    async def current(self, window_number: int) -> Ticket | None:
        return await self._repository.find_serving(window_number)

    async def call_next(self, window_number: int) -> Ticket | None:
        """Serve the oldest ticket waiting at a window.

        When the window is already serving a ticket, that ticket is returned
        unchanged.
        """

        serving = await self._repository.find_serving(window_number)
        if serving is not None:
            return serving

        with self._metrics.time(OPERATION_DURATION, labels={"operation": "call_next"}):
            ticket = await self._selector.claim_next(window_number)
        if ticket is None:
            logger.debug("No ticket waiting at window %s", window_number)
            return None

        logger.info("Ticket %s called to window %s", ticket.display_number, window_number)
        self._count_transition("call_next")
        await self._emit_state(ticket, window_number)
        await self._emit(AnnouncementRequested(display_number=ticket.display_number, window_number=window_number))
        return ticket

    async def complete_step(self, window_number: int) -> StepCompletion:
        """Finish the step served at a window and call the window's next ticket."""

        with self._metrics.time(OPERATION_DURATION, labels={"operation": "complete_step"}):
            serving = await self._repository.find_serving(window_number)
            if serving is None:
                raise InvalidTransitionError(f"No ticket is being served at window {window_number}")

            advanced = self._engine.complete_step(serving, window_number, self._clock())
            try:
                await self._repository.compare_and_set(serving, advanced)
            except ConcurrencyConflictError as exc:
                raise InvalidTransitionError(str(exc)) from exc

        if advanced.status is TicketStatus.COMPLETED:
            logger.info("Ticket %s completed at window %s", advanced.display_number, window_number)
            self._count_transition("complete")
        else:
            logger.info(
                "Ticket %s moved from window %s to window %s (step %d of %d)",
                advanced.display_number,
                window_number,
                advanced.current_window,
                advanced.current_step_order,
                advanced.total_steps,
            )
            self._count_transition("advance")
        await self._emit_state(advanced, advanced.current_window or window_number)

        newly_serving = await self.call_next(window_number)
        remaining = await self.list_waiting(window_number)
        return StepCompletion(
            completed_ticket=advanced,
            newly_serving_ticket=newly_serving,
            remaining_waiting=remaining,
        )

    async def mark_missed(self, ticket_id: str) -> Ticket:
        state = await self._repository.locate(ticket_id)
        if state is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        if not isinstance(state, ActiveTicket):
            raise InvalidTransitionError(f"Ticket {state.held.display_number} is on hold")

        ticket = state.ticket
        missed = self._engine.mark_missed(ticket, self._clock())
        try:
            await self._repository.compare_and_set(ticket, missed)
        except ConcurrencyConflictError as exc:
            raise InvalidTransitionError(str(exc)) from exc

        logger.info("Ticket %s marked missed (was %s)", ticket.display_number, ticket.status.value)
        self._count_transition("missed")
        await self._emit_state(missed, ticket.current_window)
        return missed

    async def hold(self, ticket_id: str, reason: str | None = None) -> HeldTicket:
        held = await self._holds.hold(ticket_id, reason)
        self._count_transition("hold")
        await self._emit(
            TicketStateChanged(
                ticket_id=held.original_ticket_id,
                display_number=held.display_number,
                new_status="on_hold",
                window_number=held.current_window,
            )
        )
        return held

    async def list_held(self, window_number: int | None = None) -> list[HeldTicket]:
        return await self._holds.list_held(window_number)

    async def resume(self, held_ticket_id: str, window_number: int) -> Ticket:
        ticket = await self._holds.resume(held_ticket_id, window_number)
        self._count_transition("resume")
        await self._emit_state(ticket, window_number)
        await self._emit(AnnouncementRequested(display_number=ticket.display_number, window_number=window_number))
        return ticket

    async def discard_held(self, held_ticket_id: str) -> HeldTicket:
        return await self._holds.discard(held_ticket_id)

    async def release_all_held(self) -> list[Ticket]:
        released = await self._holds.release_all()
        for ticket in released:
            self._count_transition("release")
            await self._emit_state(ticket, ticket.current_window)
        return released

    async def repeat_announcement(self, window_number: int) -> Ticket:
        serving = await self._repository.find_serving(window_number)
        if serving is None:
            raise TicketNotFoundError(f"No ticket is being served at window {window_number}")
        await self._emit(
            AnnouncementRequested(display_number=serving.display_number, window_number=window_number, repeat=True)
        )
        return serving

    async def stats(self) -> QueueStats:
        return QueueStats(
            by_status=await self._repository.count_by_status(),
            by_transaction=await self._repository.count_by_transaction(),
            held=await self._repository.count_held(),
        )

    async def close_session(self, title: str = "") -> SessionSummary:
        """Record the end-of-day summary and reset tickets and counters."""

        closed_at = self._clock()

        def build(tickets) -> SessionSummary:
            per_transaction, per_status = summarise_tickets(tickets)
            return SessionSummary(
                id=str(uuid.uuid4()),
                session_date=closed_at.date(),
                title=title or f"Session {closed_at.date().isoformat()}",
                total_tickets=len(tickets),
                closed_at=closed_at,
                per_transaction=per_transaction,
                per_status=per_status,
                display_numbers=[ticket.display_number for ticket in tickets],
            )

        summary = await self._repository.close_session(build)
        logger.info("Session closed with %d tickets", summary.total_tickets)
        return summary

    async def list_summaries(self) -> list[SessionSummary]:
        return await self._repository.list_summaries()

    def _count_transition(self, transition: str) -> None:
        self._metrics.counter(TRANSITIONS, label_names=("transition",)).inc(labels={"transition": transition})

    async def _emit_state(self, ticket: Ticket, window_number: int | None) -> None:
        await self._emit(
            TicketStateChanged(
                ticket_id=ticket.id,
                display_number=ticket.display_number,
                new_status=ticket.status.value,
                window_number=window_number,
            )
        )

    async def _emit(self, event: QueueEvent) -> None:
        try:
            await self._notifier.publish(event)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to publish %s", event.event_type)
