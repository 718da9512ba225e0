from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Path, Request, WebSocket

from kiosk_queue.core.config import Settings, get_settings
from kiosk_queue.metrics import MetricsRegistry, metrics_registry
from kiosk_queue.queue.events import BroadcastNotifier
from kiosk_queue.queue.service import QueueService


async def get_queue_service(request: Request) -> QueueService:
    service = getattr(request.app.state, "queue_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Queue service is not configured")
    return service


def get_window_number(
    window_number: Annotated[int, Path(ge=1)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> int:
    if window_number > settings.window_count:
        raise HTTPException(status_code=404, detail=f"Window {window_number} does not exist")
    return window_number


def get_event_broadcaster(websocket: WebSocket) -> BroadcastNotifier | None:
    return getattr(websocket.app.state, "notifier", None)


def get_metrics_registry(request: Request) -> MetricsRegistry:
    return getattr(request.app.state, "metrics_registry", None) or metrics_registry
