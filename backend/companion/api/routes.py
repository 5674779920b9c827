"""Service-level routes: readiness and process stats."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from companion.api.deps import get_runtime
from companion.models.chat import StatsResponse
from companion.services.runtime import ChatRuntime

health_router = APIRouter()


@health_router.get("/", summary="Readiness probe", tags=["health"])
async def healthcheck(runtime: ChatRuntime = Depends(get_runtime)) -> dict[str, str | bool]:
    """Report readiness and whether the expiry sweep is running."""

    return {"status": "ok", "sweeping": runtime.sessions.sweeping}


@health_router.get("/stats", response_model=StatsResponse, summary="In-memory session statistics")
async def stats(runtime: ChatRuntime = Depends(get_runtime)) -> StatsResponse:
    return StatsResponse.build(
        runtime.sessions.stats(),
        runtime.user_contexts.stats(),
        runtime.driver.pending,
    )
