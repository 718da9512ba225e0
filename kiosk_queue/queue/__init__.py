"""Ticket transition engine: issuance, window routing and holds."""

from .events import AnnouncementRequested, BroadcastNotifier, Notifier, NullNotifier, TicketIssued, TicketStateChanged
from .exceptions import (
    ConcurrencyConflictError,
    FlowNotFoundError,
    InvalidTransitionError,
    QueueServiceError,
    TicketNotFoundError,
)
from .flows import FlowCatalog, FlowResolver, TransactionFlow, TransactionStep
from .models import (
    ActiveTicket,
    FlowStep,
    HeldState,
    HeldTicket,
    QueueStats,
    SessionSummary,
    StepCompletion,
    Ticket,
    TicketState,
    VisitedWindow,
)
from .repository import QueueRepository
from .service import QueueService
from .state import TicketStateMachine, TicketStatus

__all__ = [
    "ActiveTicket",
    "AnnouncementRequested",
    "BroadcastNotifier",
    "ConcurrencyConflictError",
    "FlowCatalog",
    "FlowNotFoundError",
    "FlowResolver",
    "FlowStep",
    "HeldState",
    "HeldTicket",
    "InvalidTransitionError",
    "Notifier",
    "NullNotifier",
    "QueueRepository",
    "QueueService",
    "QueueServiceError",
    "QueueStats",
    "SessionSummary",
    "StepCompletion",
    "Ticket",
    "TicketIssued",
    "TicketNotFoundError",
    "TicketState",
    "TicketStateChanged",
    "TicketStateMachine",
    "TicketStatus",
    "TransactionFlow",
    "TransactionStep",
    "VisitedWindow",
]
