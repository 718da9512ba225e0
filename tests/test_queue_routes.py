from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from kiosk_queue.api.routes import queue as queue_routes
from kiosk_queue.main import create_app
from kiosk_queue.queue.exceptions import (
    ConcurrencyConflictError,
    FlowNotFoundError,
    InvalidTransitionError,
    TicketNotFoundError,
)
from kiosk_queue.queue.flows import TransactionFlow
from kiosk_queue.queue.models import FlowStep, HeldTicket, QueueStats, SessionSummary, StepCompletion, Ticket, VisitedWindow
from kiosk_queue.queue.state import TicketStatus

NOW = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


def _make_ticket(*, status: TicketStatus = TicketStatus.WAITING, window: int | None = 1) -> Ticket:
    return Ticket(
        id=str(uuid4()),
        display_number="PR001",
        transaction_name="Permit Renewal",
        transaction_prefix="PR",
        person_category="Regular",
        flow=(FlowStep(window_number=1, step_order=1), FlowStep(window_number=3, step_order=2)),
        current_step_order=1,
        status=status,
        current_window=window,
        created_at=NOW,
        visited_windows=(VisitedWindow(window_number=1, timestamp=NOW),) if status is TicketStatus.SERVING else (),
        service_started_at=NOW if status is TicketStatus.SERVING else None,
    )


@pytest.fixture
def queue_client():
    app = create_app()
    service = AsyncMock()

    async def override_service():
        return service

    app.dependency_overrides[queue_routes.get_queue_service] = override_service

    client = TestClient(app)
    try:
        yield client, service
    finally:
        app.dependency_overrides.clear()


def test_issue_ticket_returns_created(queue_client):
    client, service = queue_client
    ticket = _make_ticket()
    service.issue_ticket = AsyncMock(return_value=ticket)

    response = client.post("/queue/tickets", json={"transaction_name": "Permit Renewal", "person_category": "Regular"})

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == ticket.id
    assert body["display_number"] == "PR001"
    assert body["status"] == "waiting"
    assert body["total_steps"] == 2
    assert body["flow"] == [{"window_number": 1, "step_order": 1}, {"window_number": 3, "step_order": 2}]
    service.issue_ticket.assert_awaited_once_with("Permit Renewal", "Regular")


def test_issue_ticket_unknown_transaction_returns_404(queue_client):
    client, service = queue_client
    service.issue_ticket = AsyncMock(side_effect=FlowNotFoundError("Transaction 'Passport' not found"))

    response = client.post("/queue/tickets", json={"transaction_name": "Passport"})

    assert response.status_code == 404
    assert "Passport" in response.json()["detail"]


def test_issue_ticket_sequence_conflict_returns_409(queue_client):
    client, service = queue_client
    service.issue_ticket = AsyncMock(side_effect=ConcurrencyConflictError("Could not allocate a sequence for prefix PR"))

    response = client.post("/queue/tickets", json={"transaction_name": "Permit Renewal"})

    assert response.status_code == 409
    assert "prefix PR" in response.json()["detail"]


def test_resume_race_returns_409(queue_client):
    client, service = queue_client
    service.resume = AsyncMock(side_effect=ConcurrencyConflictError("Held ticket PR001 was already taken"))

    response = client.post("/queue/held/held-1/resume", json={"window_number": 1})

    assert response.status_code == 409


def test_issue_ticket_validates_payload(queue_client):
    client, _ = queue_client

    response = client.post("/queue/tickets", json={"transaction_name": ""})

    assert response.status_code == 422


def test_list_transactions(queue_client):
    client, service = queue_client
    service.list_transactions = MagicMock(
        return_value=[
            TransactionFlow.model_validate(
                {
                    "name": "Permit Renewal",
                    "prefix": "PR",
                    "steps": [{"step_number": 1, "step_name": "Evaluation", "window_number": 1}],
                }
            )
        ]
    )

    response = client.get("/queue/transactions")

    assert response.status_code == 200
    assert response.json()[0]["prefix"] == "PR"


def test_call_next_returns_serving_ticket(queue_client):
    client, service = queue_client
    ticket = _make_ticket(status=TicketStatus.SERVING)
    service.call_next = AsyncMock(return_value=ticket)

    response = client.post("/queue/windows/1/next")

    assert response.status_code == 200
    assert response.json()["visited_windows"][0]["window_number"] == 1
    service.call_next.assert_awaited_once_with(1)


def test_call_next_on_empty_queue_returns_no_content(queue_client):
    client, service = queue_client
    service.call_next = AsyncMock(return_value=None)

    response = client.post("/queue/windows/1/next")

    assert response.status_code == 204


def test_window_routes_reject_unknown_windows(queue_client):
    client, service = queue_client
    service.call_next = AsyncMock()

    assert client.post("/queue/windows/99/next").status_code == 404
    assert client.post("/queue/windows/0/next").status_code == 422
    service.call_next.assert_not_awaited()


def test_complete_step_returns_completion(queue_client):
    client, service = queue_client
    advanced = _make_ticket(window=3)
    following = _make_ticket(status=TicketStatus.SERVING)
    service.complete_step = AsyncMock(
        return_value=StepCompletion(completed_ticket=advanced, newly_serving_ticket=following, remaining_waiting=[])
    )

    response = client.post("/queue/windows/1/complete")

    assert response.status_code == 200
    body = response.json()
    assert body["completed_ticket"]["current_window"] == 3
    assert body["newly_serving_ticket"]["status"] == "serving"
    assert body["remaining_waiting"] == []


def test_complete_step_conflict_returns_409(queue_client):
    client, service = queue_client
    service.complete_step = AsyncMock(side_effect=InvalidTransitionError("No ticket is being served at window 1"))

    response = client.post("/queue/windows/1/complete")

    assert response.status_code == 409


def test_current_ticket_may_be_empty(queue_client):
    client, service = queue_client
    service.current = AsyncMock(return_value=None)

    response = client.get("/queue/windows/2/current")

    assert response.status_code == 200
    assert response.json() is None


def test_hold_and_resume(queue_client):
    client, service = queue_client
    serving = _make_ticket(status=TicketStatus.SERVING)
    held = HeldTicket(id="held-1", ticket=serving, held_at=NOW, hold_reason="lunch break")
    service.hold = AsyncMock(return_value=held)
    service.resume = AsyncMock(return_value=serving)

    hold_response = client.post(f"/queue/tickets/{serving.id}/hold", json={"reason": "lunch break"})
    resume_response = client.post("/queue/held/held-1/resume", json={"window_number": 1})

    assert hold_response.status_code == 201
    assert hold_response.json()["original_ticket_id"] == serving.id
    assert hold_response.json()["hold_reason"] == "lunch break"
    assert resume_response.status_code == 200
    service.hold.assert_awaited_once_with(serving.id, "lunch break")
    service.resume.assert_awaited_once_with("held-1", 1)


def test_hold_without_body_uses_default_reason(queue_client):
    client, service = queue_client
    serving = _make_ticket(status=TicketStatus.SERVING)
    service.hold = AsyncMock(
        return_value=HeldTicket(id="held-1", ticket=serving, held_at=NOW, hold_reason="Manual hold by operator")
    )

    response = client.post(f"/queue/tickets/{serving.id}/hold")

    assert response.status_code == 201
    service.hold.assert_awaited_once_with(serving.id, None)


def test_resume_unknown_held_ticket_returns_404(queue_client):
    client, service = queue_client
    service.resume = AsyncMock(side_effect=TicketNotFoundError("Held ticket missing not found"))

    response = client.post("/queue/held/missing/resume", json={"window_number": 1})

    assert response.status_code == 404


def test_mark_missed_conflict_returns_409(queue_client):
    client, service = queue_client
    service.mark_missed = AsyncMock(side_effect=InvalidTransitionError("Ticket PR001 is on hold"))

    response = client.post("/queue/tickets/abc/missed")

    assert response.status_code == 409


def test_get_ticket_not_found(queue_client):
    client, service = queue_client
    service.get_ticket = AsyncMock(side_effect=TicketNotFoundError("Ticket abc not found"))

    response = client.get("/queue/tickets/abc")

    assert response.status_code == 404


def test_list_waiting_passes_window_filter(queue_client):
    client, service = queue_client
    service.list_waiting = AsyncMock(return_value=[_make_ticket()])

    response = client.get("/queue/waiting", params={"window": 1})

    assert response.status_code == 200
    assert len(response.json()) == 1
    service.list_waiting.assert_awaited_once_with(1)


def test_stats_and_session_close(queue_client):
    client, service = queue_client
    service.stats = AsyncMock(return_value=QueueStats(by_status={"waiting": 2}, by_transaction={"Permit Renewal": 2}, held=0))
    service.close_session = AsyncMock(
        return_value=SessionSummary(
            id="summary-1",
            session_date=date(2026, 10, 18),
            title="Friday",
            total_tickets=2,
            closed_at=NOW,
            per_transaction={"Permit Renewal": 2},
            per_status={"waiting": 2},
            display_numbers=["PR001", "PR002"],
        )
    )

    stats = client.get("/queue/stats")
    closed = client.post("/queue/session/close", json={"title": "Friday"})

    assert stats.json() == {"by_status": {"waiting": 2}, "by_transaction": {"Permit Renewal": 2}, "held": 0}
    assert closed.status_code == 200
    assert closed.json()["display_numbers"] == ["PR001", "PR002"]
    assert closed.json()["session_date"] == "2026-10-18"
    service.close_session.assert_awaited_once_with("Friday")


def test_queue_routes_unavailable_without_service():
    client = TestClient(create_app())

    response = client.get("/queue/serving")

    assert response.status_code == 503


def test_ping_and_metrics():
    client = TestClient(create_app())

    assert client.get("/ping").json() == {"status": "ok"}
    assert client.get("/ping/ready").json() == {"status": "degraded"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "# TYPE queue_transitions_total counter" in metrics.text
