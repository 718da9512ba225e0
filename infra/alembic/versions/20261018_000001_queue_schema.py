"""Queue schema: active and held tickets, counters and session summaries."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def _ticket_columns() -> list[sa.Column]:
    return [
        sa.Column("display_number", sa.String(length=16), nullable=False, unique=True),
        sa.Column("transaction_name", sa.String(length=255), nullable=False),
        sa.Column("transaction_prefix", sa.String(length=3), nullable=False),
        sa.Column("person_category", sa.String(length=100), nullable=False),
        sa.Column("flow", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("current_step_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("current_window", sa.Integer(), nullable=True),
        sa.Column("visited_windows", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("service_started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("service_ended_at", sa.TIMESTAMP(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "tickets",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_ticket_columns(),
    )
    op.create_index("ix_tickets_status_window_created", "tickets", ["status", "current_window", "created_at"])
    # At most one ticket may be serving at any window.
    op.create_index(
        "uq_tickets_serving_window",
        "tickets",
        ["current_window"],
        unique=True,
        postgresql_where=sa.text("status = 'serving'"),
        sqlite_where=sa.text("status = 'serving'"),
    )

    op.create_table(
        "held_tickets",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("original_ticket_id", sa.String(length=36), nullable=False, unique=True),
        *_ticket_columns(),
        sa.Column("held_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("hold_reason", sa.String(length=500), nullable=False, server_default=sa.text("''")),
    )

    op.create_table(
        "ticket_counters",
        sa.Column("prefix", sa.String(length=3), primary_key=True, nullable=False),
        sa.Column("last_sequence", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )

    op.create_table(
        "session_summaries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("total_tickets", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("per_transaction", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("per_status", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("display_numbers", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("closed_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_session_summaries_id", "session_summaries", ["id"])


def downgrade() -> None:
    op.drop_index("ix_session_summaries_id", table_name="session_summaries")
    op.drop_table("session_summaries")
    op.drop_table("ticket_counters")
    op.drop_table("held_tickets")
    op.drop_index("uq_tickets_serving_window", table_name="tickets")
    op.drop_index("ix_tickets_status_window_created", table_name="tickets")
    op.drop_table("tickets")
