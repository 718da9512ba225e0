from __future__ import annotations


class QueueServiceError(RuntimeError):
    """Base error for queue engine issues."""


class FlowNotFoundError(QueueServiceError):
    """Raised when no active transaction flow matches the requested name."""


class TicketNotFoundError(QueueServiceError):
    """Raised when a ticket or held ticket could not be located."""


class InvalidTransitionError(QueueServiceError):
    """Raised when a ticket is not in the state an operation requires."""


class ConcurrencyConflictError(QueueServiceError):
    """Raised when a conditional update lost a race against another writer."""
