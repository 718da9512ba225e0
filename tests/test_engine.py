from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from kiosk_queue.queue.engine import TransitionEngine, format_display_number
from kiosk_queue.queue.exceptions import InvalidTransitionError
from kiosk_queue.queue.flows import ResolvedFlow
from kiosk_queue.queue.models import FlowStep, VisitedWindow
from kiosk_queue.queue.state import TicketStatus

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

PERMIT_RENEWAL = ResolvedFlow(
    transaction_name="Permit Renewal",
    prefix="PR",
    steps=(FlowStep(window_number=1, step_order=1), FlowStep(window_number=3, step_order=2)),
)


@pytest.fixture
def transitions() -> TransitionEngine:
    return TransitionEngine()


@pytest.fixture
def ticket(transitions):
    return transitions.new_ticket(PERMIT_RENEWAL, sequence=1, person_category="Senior Citizen", now=NOW)


def test_format_display_number_pads_to_three_digits():
    assert format_display_number("PR", 1) == "PR001"
    assert format_display_number("CSH", 42) == "CSH042"
    assert format_display_number("PR", 1000) == "PR1000"
    with pytest.raises(ValueError):
        format_display_number("PR", 0)


def test_new_ticket_waits_at_first_window(ticket):
    assert ticket.display_number == "PR001"
    assert ticket.status is TicketStatus.WAITING
    assert ticket.current_step_order == 1
    assert ticket.current_window == 1
    assert ticket.visited_windows == ()
    assert ticket.created_at == NOW


def test_start_serving_records_visit(transitions, ticket):
    serving = transitions.start_serving(ticket, 1, NOW)

    assert serving.status is TicketStatus.SERVING
    assert serving.service_started_at == NOW
    assert serving.visited_windows == (VisitedWindow(window_number=1, timestamp=NOW),)
    assert ticket.status is TicketStatus.WAITING


def test_start_serving_rejects_other_window(transitions, ticket):
    with pytest.raises(InvalidTransitionError):
        transitions.start_serving(ticket, 3, NOW)


def test_complete_step_moves_to_next_window_as_waiting(transitions, ticket):
    serving = transitions.start_serving(ticket, 1, NOW)

    advanced = transitions.complete_step(serving, 1, NOW + timedelta(minutes=5))

    assert advanced.status is TicketStatus.WAITING
    assert advanced.current_step_order == 2
    assert advanced.current_window == 3
    assert advanced.service_ended_at is None


def test_complete_last_step_finishes_ticket(transitions, ticket):
    first = transitions.complete_step(transitions.start_serving(ticket, 1, NOW), 1, NOW)
    second = transitions.start_serving(first, 3, NOW + timedelta(minutes=1))
    finished_at = NOW + timedelta(minutes=2)

    completed = transitions.complete_step(second, 3, finished_at)

    assert completed.status is TicketStatus.COMPLETED
    assert completed.current_window is None
    assert completed.service_ended_at == finished_at
    assert [visit.window_number for visit in completed.visited_windows] == [1, 3]


def test_complete_step_requires_serving_ticket(transitions, ticket):
    with pytest.raises(InvalidTransitionError):
        transitions.complete_step(ticket, 1, NOW)


def test_mark_missed_is_terminal(transitions, ticket):
    missed = transitions.mark_missed(ticket, NOW)

    assert missed.status is TicketStatus.MISSED
    assert missed.current_window is None
    with pytest.raises(InvalidTransitionError):
        transitions.mark_missed(missed, NOW)


def test_hold_requires_serving(transitions, ticket):
    with pytest.raises(InvalidTransitionError):
        transitions.hold(ticket, "lunch break", NOW)


def test_hold_and_resume_keep_route(transitions, ticket):
    serving = transitions.start_serving(ticket, 1, NOW)
    held = transitions.hold(serving, "lunch break", NOW, held_id="held-1")

    resumed = transitions.resume(held, 1)

    assert held.original_ticket_id == ticket.id
    assert resumed.id == ticket.id
    assert resumed.status is TicketStatus.SERVING
    assert resumed.flow == ticket.flow
    assert resumed.visited_windows == serving.visited_windows


def test_resume_rejects_window_outside_held_step(transitions, ticket):
    held = transitions.hold(transitions.start_serving(ticket, 1, NOW), "break", NOW)

    with pytest.raises(InvalidTransitionError, match="window 1"):
        transitions.resume(held, 3)


def test_release_returns_ticket_to_waiting(transitions, ticket):
    serving = transitions.start_serving(ticket, 1, NOW)
    held = transitions.hold(serving, "break", NOW)

    released = transitions.release(held)

    assert released.status is TicketStatus.WAITING
    assert released.current_window == 1
    assert released.created_at == ticket.created_at
    assert released.visited_windows == ()
    assert released.service_started_at is None


def test_release_after_completed_step_keeps_earlier_visits(transitions, ticket):
    advanced = transitions.complete_step(transitions.start_serving(ticket, 1, NOW), 1, NOW)
    serving = transitions.start_serving(advanced, 3, NOW + timedelta(minutes=1))

    released = transitions.release(transitions.hold(serving, "break", NOW))

    assert [visit.window_number for visit in released.visited_windows] == [1]
    assert released.current_window == 3
