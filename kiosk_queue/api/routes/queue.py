from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field

from kiosk_queue.dependencies.queue import get_event_broadcaster, get_queue_service, get_window_number
from kiosk_queue.queue.events import BroadcastNotifier, event_payload
from kiosk_queue.queue.exceptions import (
    ConcurrencyConflictError,
    FlowNotFoundError,
    InvalidTransitionError,
    TicketNotFoundError,
)
from kiosk_queue.queue.models import HeldTicket, Ticket
from kiosk_queue.queue.service import QueueService
from kiosk_queue.queue.state import TicketStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])

WindowNumber = Annotated[int, Field(ge=1)]


class TicketIssueRequest(BaseModel):
    transaction_name: str = Field(..., min_length=1, max_length=255)
    person_category: str = Field(default="Regular", min_length=1, max_length=64)


class HoldRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ResumeRequest(BaseModel):
    window_number: WindowNumber


class SessionCloseRequest(BaseModel):
    title: str = Field(default="", max_length=255)


class TransactionStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_number: int
    step_name: str
    window_number: int
    description: str


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    prefix: str
    description: str
    steps: list[TransactionStepResponse]


class FlowStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    window_number: int
    step_order: int


class VisitedWindowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    window_number: int
    timestamp: datetime


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    display_number: str
    transaction_name: str
    transaction_prefix: str
    person_category: str
    status: TicketStatus
    current_window: int | None
    current_step_order: int
    total_steps: int
    flow: list[FlowStepResponse]
    visited_windows: list[VisitedWindowResponse]
    created_at: datetime
    service_started_at: datetime | None
    service_ended_at: datetime | None


class HeldTicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    original_ticket_id: str
    display_number: str
    current_window: int | None
    held_at: datetime
    hold_reason: str
    ticket: TicketResponse


class StepCompletionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    completed_ticket: TicketResponse
    newly_serving_ticket: TicketResponse | None
    remaining_waiting: list[TicketResponse]


class QueueStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    by_status: dict[str, int]
    by_transaction: dict[str, int]
    held: int


class SessionSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_date: date
    title: str
    total_tickets: int
    closed_at: datetime
    per_transaction: dict[str, int]
    per_status: dict[str, int]
    display_numbers: list[str]


QueueServiceDep = Annotated[QueueService, Depends(get_queue_service)]
WindowDep = Annotated[int, Depends(get_window_number)]


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_held_response(held: HeldTicket) -> HeldTicketResponse:
    return HeldTicketResponse.model_validate(held)


@router.get("/transactions", response_model=list[TransactionResponse])
async def list_transactions(service: QueueServiceDep) -> list[TransactionResponse]:
    return [TransactionResponse.model_validate(flow) for flow in service.list_transactions()]


@router.post("/tickets", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def issue_ticket(payload: TicketIssueRequest, service: QueueServiceDep) -> TicketResponse:
    try:
        ticket = await service.issue_ticket(payload.transaction_name, payload.person_category)
    except FlowNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConcurrencyConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_response(ticket)


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: QueueServiceDep) -> TicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_response(ticket)


@router.post("/tickets/{ticket_id}/missed", response_model=TicketResponse)
async def mark_missed(ticket_id: str, service: QueueServiceDep) -> TicketResponse:
    try:
        ticket = await service.mark_missed(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidTransitionError, ConcurrencyConflictError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_response(ticket)


@router.post("/tickets/{ticket_id}/hold", response_model=HeldTicketResponse, status_code=status.HTTP_201_CREATED)
async def hold_ticket(
    ticket_id: str,
    service: QueueServiceDep,
    payload: HoldRequest | None = None,
) -> HeldTicketResponse:
    reason = payload.reason if payload is not None else None
    try:
        held = await service.hold(ticket_id, reason)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidTransitionError, ConcurrencyConflictError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_held_response(held)


@router.get("/serving", response_model=list[TicketResponse])
async def list_serving(service: QueueServiceDep) -> list[TicketResponse]:
    return [_to_response(ticket) for ticket in await service.list_serving()]


@router.get("/waiting", response_model=list[TicketResponse])
async def list_waiting(
    service: QueueServiceDep,
    window: int | None = Query(default=None, ge=1),
) -> list[TicketResponse]:
    return [_to_response(ticket) for ticket in await service.list_waiting(window)]


@router.get("/windows/{window_number}/current", response_model=TicketResponse | None)
async def current_ticket(window_number: WindowDep, service: QueueServiceDep) -> TicketResponse | None:
    ticket = await service.current(window_number)
    return _to_response(ticket) if ticket is not None else None


@router.post("/windows/{window_number}/next", response_model=TicketResponse)
async def call_next(window_number: WindowDep, service: QueueServiceDep) -> TicketResponse | Response:
    ticket = await service.call_next(window_number)
    if ticket is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return _to_response(ticket)


@router.post("/windows/{window_number}/complete", response_model=StepCompletionResponse)
async def complete_step(window_number: WindowDep, service: QueueServiceDep) -> StepCompletionResponse:
    try:
        completion = await service.complete_step(window_number)
    except (InvalidTransitionError, ConcurrencyConflictError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return StepCompletionResponse.model_validate(completion)


@router.post("/windows/{window_number}/announce", response_model=TicketResponse)
async def repeat_announcement(window_number: WindowDep, service: QueueServiceDep) -> TicketResponse:
    try:
        ticket = await service.repeat_announcement(window_number)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_response(ticket)


@router.get("/held", response_model=list[HeldTicketResponse])
async def list_held(
    service: QueueServiceDep,
    window: int | None = Query(default=None, ge=1),
) -> list[HeldTicketResponse]:
    return [_to_held_response(held) for held in await service.list_held(window)]


@router.post("/held/release", response_model=list[TicketResponse])
async def release_all_held(service: QueueServiceDep) -> list[TicketResponse]:
    return [_to_response(ticket) for ticket in await service.release_all_held()]


@router.post("/held/{held_id}/resume", response_model=TicketResponse)
async def resume_ticket(held_id: str, payload: ResumeRequest, service: QueueServiceDep) -> TicketResponse:
    try:
        ticket = await service.resume(held_id, payload.window_number)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidTransitionError, ConcurrencyConflictError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_response(ticket)


@router.delete("/held/{held_id}", response_model=HeldTicketResponse)
async def discard_held(held_id: str, service: QueueServiceDep) -> HeldTicketResponse:
    try:
        held = await service.discard_held(held_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_held_response(held)


@router.get("/stats", response_model=QueueStatsResponse)
async def queue_stats(service: QueueServiceDep) -> QueueStatsResponse:
    return QueueStatsResponse.model_validate(await service.stats())


@router.post("/session/close", response_model=SessionSummaryResponse)
async def close_session(service: QueueServiceDep, payload: SessionCloseRequest | None = None) -> SessionSummaryResponse:
    summary = await service.close_session(payload.title if payload is not None else "")
    return SessionSummaryResponse.model_validate(summary)


@router.get("/session/summaries", response_model=list[SessionSummaryResponse])
async def list_summaries(service: QueueServiceDep) -> list[SessionSummaryResponse]:
    return [SessionSummaryResponse.model_validate(summary) for summary in await service.list_summaries()]


@router.websocket("/events")
async def stream_events(
    websocket: WebSocket,
    notifier: Annotated[BroadcastNotifier | None, Depends(get_event_broadcaster)],
) -> None:
    """Push queue events to display boards and announcement players."""

    if notifier is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Event stream is not configured")
        return

    async with notifier.subscribe() as events:
        await websocket.accept()
        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        try:
            while True:
                next_event = asyncio.ensure_future(events.get())
                done, _ = await asyncio.wait({next_event, disconnected}, return_when=asyncio.FIRST_COMPLETED)
                if disconnected in done:
                    next_event.cancel()
                    break
                await websocket.send_json(event_payload(next_event.result()))
        except WebSocketDisconnect:
            pass
        finally:
            disconnected.cancel()
    logger.debug("Event subscriber disconnected")


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
