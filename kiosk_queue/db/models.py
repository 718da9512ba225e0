"""SQLModel table definitions for the kiosk queue data layer."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, Date, DateTime, Index, Integer, String, text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class TicketColumns(SQLModel):
    """Columns shared by the active and the on-hold ticket stores."""

    display_number: str = Field(max_length=16, unique=True)
    transaction_name: str = Field(max_length=255)
    transaction_prefix: str = Field(max_length=3)
    person_category: str = Field(max_length=100)
    flow: list[Any] = Field(default_factory=list, sa_type=JSON)
    current_step_order: int = Field(default=0)
    status: str = Field(max_length=20)
    current_window: int | None = Field(default=None)
    visited_windows: list[Any] = Field(default_factory=list, sa_type=JSON)
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))
    service_started_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    service_ended_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


class TicketTable(TicketColumns, table=True):
    """Active tickets: waiting, serving and finished ones of the session."""

    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_status_window_created", "status", "current_window", "created_at"),
        Index(
            "uq_tickets_serving_window",
            "current_window",
            unique=True,
            sqlite_where=text("status = 'serving'"),
            postgresql_where=text("status = 'serving'"),
        ),
    )

    id: str = Field(primary_key=True, max_length=36)


class HeldTicketTable(TicketColumns, table=True):
    """Tickets parked on hold, kept apart from the active queue."""

    __tablename__ = "held_tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, max_length=36)
    original_ticket_id: str = Field(max_length=36, unique=True)
    held_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))
    hold_reason: str = Field(default="", max_length=500)


class TicketCounterTable(SQLModel, table=True):
    """Last display sequence handed out per transaction prefix."""

    __tablename__ = "ticket_counters"

    prefix: str = Field(primary_key=True, max_length=3)
    last_sequence: int = Field(default=0, sa_column=Column(Integer, nullable=False))


class SessionSummaryTable(SQLModel, table=True):
    """End-of-day summaries recorded when a session is closed."""

    __tablename__ = "session_summaries"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    session_date: date = Field(sa_column=Column(Date, nullable=False))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    total_tickets: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    per_transaction: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    per_status: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    display_numbers: list[Any] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    closed_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
