from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from kiosk_queue.dependencies.queue import get_metrics_registry
from kiosk_queue.metrics import MetricsRegistry, PrometheusExporter

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse, summary="Prometheus metrics")
async def metrics(registry: Annotated[MetricsRegistry, Depends(get_metrics_registry)]) -> PlainTextResponse:
    return PlainTextResponse(PrometheusExporter(registry).build_payload(), media_type="text/plain; version=0.0.4")
