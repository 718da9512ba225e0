from fastapi import APIRouter, Request

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready", summary="Queue service readiness probe")
async def ready(request: Request) -> dict[str, str]:
    configured = getattr(request.app.state, "queue_service", None) is not None
    return {"status": "ok" if configured else "degraded"}
