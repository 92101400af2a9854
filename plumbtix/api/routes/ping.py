from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from plumbtix.dependencies.auth import CurrentUser
from plumbtix.dependencies.services import require_contractor
from plumbtix.metrics import metrics_registry

router = APIRouter(tags=["health"])


@router.get("/ping", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ping/secure", summary="Authenticated health probe")
async def secure_ping(user: CurrentUser) -> dict[str, str]:
    return {"status": "ok", "user": user.user_id, "role": user.role.value}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    response_class=PlainTextResponse,
    dependencies=[Depends(require_contractor)],
)
async def metrics() -> str:
    return metrics_registry.render_prometheus()
