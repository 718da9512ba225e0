"""Database models and utilities."""

from .models import HeldTicketTable, SessionSummaryTable, TicketCounterTable, TicketTable

__all__ = [
    "HeldTicketTable",
    "SessionSummaryTable",
    "TicketCounterTable",
    "TicketTable",
]
