from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from kiosk_queue.db.models import HeldTicketTable, SessionSummaryTable, TicketCounterTable, TicketTable

from .exceptions import ConcurrencyConflictError
from .models import (
    ActiveTicket,
    FlowStep,
    HeldState,
    HeldTicket,
    SessionSummary,
    Ticket,
    TicketState,
    VisitedWindow,
)
from .state import TicketStatus

logger = logging.getLogger(__name__)

_SEQUENCE_ATTEMPTS = 3


class QueueRepository:
    """Persistence for the active store, the on-hold store and the prefix counters.

    Every mutation is a compare-and-set: the row is only changed when it still
    matches the snapshot the caller's transition started from, so two windows
    acting on the same ticket can never both win.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def create_ticket(self, prefix: str, build: Callable[[int], Ticket]) -> Ticket:
        """Allocate the next sequence of ``prefix`` and insert the ticket built from it.

        The counter increment and the insert share one transaction.
        """

        last_error: IntegrityError | None = None
        for attempt in range(1, _SEQUENCE_ATTEMPTS + 1):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        sequence = await self._next_sequence(session, prefix)
                        ticket = build(sequence)
                        session.add(TicketTable(id=ticket.id, **_ticket_columns(ticket)))
                return ticket
            except IntegrityError as exc:
                # Another writer created the counter row first.
                logger.debug("Sequence allocation for %s collided (attempt %d)", prefix, attempt)
                last_error = exc
        raise ConcurrencyConflictError(f"Could not allocate a sequence for prefix {prefix}") from last_error

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            return None if row is None else _row_to_ticket(row)

    async def get_held(self, held_id: str) -> HeldTicket | None:
        async with self._session_factory() as session:
            row = await session.get(HeldTicketTable, held_id)
            return None if row is None else _row_to_held(row)

    async def locate(self, ticket_id: str) -> TicketState | None:
        """Return the store a ticket currently lives in."""

        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is not None:
                return ActiveTicket(_row_to_ticket(row))
            result = await session.execute(
                select(HeldTicketTable).where(HeldTicketTable.original_ticket_id == ticket_id)
            )
            held_row = result.scalars().first()
            if held_row is not None:
                return HeldState(_row_to_held(held_row))
        return None

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        window_number: int | None = None,
    ) -> list[Ticket]:
        statement = select(TicketTable)
        if status is not None:
            statement = statement.where(TicketTable.status == status.value)
        if window_number is not None:
            statement = statement.where(TicketTable.current_window == window_number)
        statement = statement.order_by(
            TicketTable.created_at.asc(), TicketTable.display_number.asc(), TicketTable.id.asc()
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [_row_to_ticket(row) for row in result.scalars().all()]

    async def find_serving(self, window_number: int) -> Ticket | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable).where(
                    TicketTable.status == TicketStatus.SERVING.value,
                    TicketTable.current_window == window_number,
                )
            )
            row = result.scalars().first()
            return None if row is None else _row_to_ticket(row)

    async def oldest_waiting(self, window_number: int) -> Ticket | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable)
                .where(
                    TicketTable.status == TicketStatus.WAITING.value,
                    TicketTable.current_window == window_number,
                )
                .order_by(TicketTable.created_at.asc(), TicketTable.display_number.asc(), TicketTable.id.asc())
                .limit(1)
            )
            row = result.scalars().first()
            return None if row is None else _row_to_ticket(row)

    async def compare_and_set(self, expected: Ticket, updated: Ticket) -> Ticket:
        """Persist ``updated`` only if the stored row still matches ``expected``."""

        statement = (
            update(TicketTable)
            .where(_matches_snapshot(expected))
            .values(**_mutable_columns(updated))
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(statement)
                    if result.rowcount != 1:
                        raise ConcurrencyConflictError(f"Ticket {expected.display_number} changed concurrently")
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                f"Window {updated.current_window} is already serving another ticket"
            ) from exc
        return updated

    async def move_to_held(self, expected: Ticket, held: HeldTicket) -> HeldTicket:
        """Copy a serving ticket into the on-hold store and drop it from the active one."""

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(_held_row(held))
                    await session.flush()
                    result = await session.execute(
                        delete(TicketTable)
                        .where(_matches_snapshot(expected))
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise ConcurrencyConflictError(f"Ticket {expected.display_number} changed concurrently")
        except IntegrityError as exc:
            raise ConcurrencyConflictError(f"Ticket {expected.display_number} is already on hold") from exc
        return held

    async def restore_from_held(self, held: HeldTicket, ticket: Ticket) -> Ticket:
        """Reinstate a held ticket into the active store as ``ticket``."""

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(HeldTicketTable)
                        .where(HeldTicketTable.id == held.id)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise ConcurrencyConflictError(f"Held ticket {held.display_number} was already taken")
                    session.add(TicketTable(id=ticket.id, **_ticket_columns(ticket)))
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                f"Window {ticket.current_window} is already serving another ticket"
            ) from exc
        return ticket

    async def restore_all_held(self, release: Callable[[HeldTicket], Ticket]) -> list[Ticket]:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(select(HeldTicketTable).order_by(HeldTicketTable.held_at.asc()))
                held_rows = list(result.scalars().all())
                restored: list[Ticket] = []
                for row in held_rows:
                    ticket = release(_row_to_held(row))
                    await session.delete(row)
                    session.add(TicketTable(id=ticket.id, **_ticket_columns(ticket)))
                    restored.append(ticket)
        return restored

    async def list_held(self, *, window_number: int | None = None) -> list[HeldTicket]:
        statement = select(HeldTicketTable)
        if window_number is not None:
            statement = statement.where(HeldTicketTable.current_window == window_number)
        statement = statement.order_by(HeldTicketTable.held_at.asc(), HeldTicketTable.id.asc())
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [_row_to_held(row) for row in result.scalars().all()]

    async def delete_held(self, held_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(HeldTicketTable)
                    .where(HeldTicketTable.id == held_id)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def count_by_status(self) -> dict[str, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable.status, func.count()).group_by(TicketTable.status)
            )
            return {str(status): int(count) for status, count in result.all()}

    async def count_by_transaction(self) -> dict[str, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable.transaction_name, func.count()).group_by(TicketTable.transaction_name)
            )
            return {str(name): int(count) for name, count in result.all()}

    async def count_held(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(HeldTicketTable))
            return int(result.scalar_one())

    async def close_session(self, build: Callable[[Sequence[Ticket]], SessionSummary]) -> SessionSummary:
        """Summarise every ticket of the session, then wipe tickets and counters."""

        async with self._session_factory() as session:
            async with session.begin():
                # Write first so issuers wait until the wipe commits.
                await session.execute(
                    update(TicketCounterTable)
                    .values(last_sequence=0)
                    .execution_options(synchronize_session=False)
                )
                active = await session.execute(select(TicketTable).order_by(TicketTable.created_at.asc()))
                held = await session.execute(select(HeldTicketTable).order_by(HeldTicketTable.held_at.asc()))
                tickets = [_row_to_ticket(row) for row in active.scalars().all()]
                tickets.extend(_row_to_held(row).ticket for row in held.scalars().all())
                tickets.sort(key=lambda ticket: (ticket.created_at, ticket.display_number))

                summary = build(tickets)
                session.add(
                    SessionSummaryTable(
                        id=summary.id,
                        session_date=summary.session_date,
                        title=summary.title,
                        total_tickets=summary.total_tickets,
                        per_transaction=dict(summary.per_transaction),
                        per_status=dict(summary.per_status),
                        display_numbers=list(summary.display_numbers),
                        closed_at=summary.closed_at,
                    )
                )
                for model in (HeldTicketTable, TicketTable, TicketCounterTable):
                    await session.execute(delete(model).execution_options(synchronize_session=False))
        return summary

    async def list_summaries(self) -> list[SessionSummary]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SessionSummaryTable).order_by(SessionSummaryTable.closed_at.desc())
            )
            return [_row_to_summary(row) for row in result.scalars().all()]

    async def _next_sequence(self, session: AsyncSession, prefix: str) -> int:
        result = await session.execute(
            update(TicketCounterTable)
            .where(TicketCounterTable.prefix == prefix)
            .values(last_sequence=TicketCounterTable.last_sequence + 1)
            .returning(TicketCounterTable.last_sequence)
            .execution_options(synchronize_session=False)
        )
        value = result.scalar_one_or_none()
        if value is not None:
            return int(value)
        session.add(TicketCounterTable(prefix=prefix, last_sequence=1))
        await session.flush()
        return 1


def summarise_tickets(tickets: Sequence[Ticket]) -> tuple[dict[str, int], dict[str, int]]:
    """Count tickets per transaction and per status."""

    per_transaction = Counter(ticket.transaction_name for ticket in tickets)
    per_status = Counter(ticket.status.value for ticket in tickets)
    return dict(per_transaction), dict(per_status)


def _matches_snapshot(ticket: Ticket) -> Any:
    window_clause = (
        TicketTable.current_window.is_(None)
        if ticket.current_window is None
        else TicketTable.current_window == ticket.current_window
    )
    return (
        (TicketTable.id == ticket.id)
        & (TicketTable.status == ticket.status.value)
        & (TicketTable.current_step_order == ticket.current_step_order)
        & window_clause
    )


def _mutable_columns(ticket: Ticket) -> dict[str, Any]:
    return {
        "status": ticket.status.value,
        "current_step_order": ticket.current_step_order,
        "current_window": ticket.current_window,
        "visited_windows": _dump_visits(ticket.visited_windows),
        "service_started_at": ticket.service_started_at,
        "service_ended_at": ticket.service_ended_at,
    }


def _ticket_columns(ticket: Ticket) -> dict[str, Any]:
    return {
        "display_number": ticket.display_number,
        "transaction_name": ticket.transaction_name,
        "transaction_prefix": ticket.transaction_prefix,
        "person_category": ticket.person_category,
        "flow": [{"window_number": step.window_number, "step_order": step.step_order} for step in ticket.flow],
        "created_at": ticket.created_at,
        **_mutable_columns(ticket),
    }


def _held_row(held: HeldTicket) -> HeldTicketTable:
    return HeldTicketTable(
        id=held.id,
        original_ticket_id=held.ticket.id,
        held_at=held.held_at,
        hold_reason=held.hold_reason,
        **_ticket_columns(held.ticket),
    )


def _dump_visits(visits: Sequence[VisitedWindow]) -> list[dict[str, Any]]:
    return [{"window_number": visit.window_number, "timestamp": visit.timestamp.isoformat()} for visit in visits]


def _row_to_ticket(row: TicketTable | HeldTicketTable, *, ticket_id: str | None = None) -> Ticket:
    return Ticket(
        id=ticket_id or row.id,
        display_number=row.display_number,
        transaction_name=row.transaction_name,
        transaction_prefix=row.transaction_prefix,
        person_category=row.person_category,
        flow=tuple(
            FlowStep(window_number=int(step["window_number"]), step_order=int(step["step_order"]))
            for step in row.flow or []
        ),
        current_step_order=int(row.current_step_order),
        status=TicketStatus(row.status),
        current_window=row.current_window,
        created_at=_ensure_datetime(row.created_at),
        visited_windows=tuple(
            VisitedWindow(
                window_number=int(visit["window_number"]),
                timestamp=_ensure_datetime(datetime.fromisoformat(visit["timestamp"])),
            )
            for visit in row.visited_windows or []
        ),
        service_started_at=_optional_datetime(row.service_started_at),
        service_ended_at=_optional_datetime(row.service_ended_at),
    )


def _row_to_held(row: HeldTicketTable) -> HeldTicket:
    return HeldTicket(
        id=row.id,
        ticket=_row_to_ticket(row, ticket_id=row.original_ticket_id),
        held_at=_ensure_datetime(row.held_at),
        hold_reason=row.hold_reason,
    )


def _row_to_summary(row: SessionSummaryTable) -> SessionSummary:
    return SessionSummary(
        id=row.id,
        session_date=row.session_date,
        title=row.title,
        total_tickets=int(row.total_tickets),
        closed_at=_ensure_datetime(row.closed_at),
        per_transaction={str(key): int(value) for key, value in (row.per_transaction or {}).items()},
        per_status={str(key): int(value) for key, value in (row.per_status or {}).items()},
        display_numbers=[str(number) for number in row.display_numbers or []],
    )


def _optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else _ensure_datetime(value)


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
