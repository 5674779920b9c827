"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from companion.core.logging import bind_request_context
from companion.services.runtime import ChatRuntime


def get_runtime(request: Request) -> ChatRuntime:
    """Return the runtime built by the application lifespan."""

    runtime: ChatRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up.")
    return runtime


async def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """Identify the caller; authentication happens upstream of this service."""

    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id.")
    bind_request_context(user_id=user_id)
    return user_id
