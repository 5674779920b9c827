"""Chat endpoints backed by the in-process session core."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from companion.api import deps
from companion.core.errors import SessionNotFound
from companion.core.logging import bind_request_context
from companion.models.chat import (
    ChatRequest,
    ChatResponse,
    ClearContextResponse,
    EndSessionResponse,
    SessionView,
    TurnView,
)
from companion.models.session import Session, UserContext
from companion.services.runtime import ChatRuntime

router = APIRouter()


def _owned_session(runtime: ChatRuntime, session_id: str, user_id: str) -> Session:
    session = runtime.sessions.get_session(session_id)
    if session is None or session.user_id != user_id:
        raise SessionNotFound(session_id)
    return session


@router.post(
    "/message",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a message to the pregnancy assistant.",
)
async def send_message(
    request: ChatRequest,
    runtime: ChatRuntime = Depends(deps.get_runtime),
    user_id: str = Depends(deps.get_user_id),
) -> ChatResponse:
    """Append the message to the caller's session and return the assistant reply."""

    session_id = request.session_id
    if session_id is not None:
        session = runtime.sessions.get_session(session_id)
        if session is not None and session.user_id != user_id:
            session_id = None

    bind_request_context(session_id=session_id)
    try:
        result = await runtime.chat.handle_message(
            user_id,
            request.message,
            session_id=session_id,
            context=request.context,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return ChatResponse(
        session_id=result.session_id,
        user_message=result.message,
        bot_response=result.reply.text,
        response_type=result.reply.type,
        suggestions=result.reply.suggestions,
        conversation_length=result.conversation_length,
        session_ended=result.session_rotated,
        new_session=result.new_session,
    )


@router.get("/sessions/{session_id}", response_model=SessionView, summary="Inspect an active session.")
async def read_session(
    session_id: str,
    runtime: ChatRuntime = Depends(deps.get_runtime),
    user_id: str = Depends(deps.get_user_id),
) -> SessionView:
    return SessionView.from_session(_owned_session(runtime, session_id, user_id))


@router.get("/sessions/{session_id}/turns", response_model=list[TurnView], summary="Recent turns of a session.")
async def read_turns(
    session_id: str,
    limit: int | None = Query(default=None, ge=1, le=100),
    runtime: ChatRuntime = Depends(deps.get_runtime),
    user_id: str = Depends(deps.get_user_id),
) -> list[TurnView]:
    """Return the last ``limit`` turns, or the whole buffer when no limit is given."""

    _owned_session(runtime, session_id, user_id)
    if limit is None:
        turns = runtime.sessions.get_full_conversation(session_id)
    else:
        turns = runtime.sessions.get_recent_turns(session_id, limit)
    return [TurnView.from_turn(turn) for turn in turns]


@router.delete("/sessions/{session_id}", response_model=EndSessionResponse, summary="End a session now.")
async def end_session(
    session_id: str,
    runtime: ChatRuntime = Depends(deps.get_runtime),
    user_id: str = Depends(deps.get_user_id),
) -> EndSessionResponse:
    """End the conversation; its summary is merged in the background."""

    _owned_session(runtime, session_id, user_id)
    snapshot = runtime.chat.end_conversation(session_id)
    if snapshot is None:
        raise SessionNotFound(session_id)

    return EndSessionResponse(
        session_id=snapshot.session_id,
        message_count=snapshot.message_count,
        duration_seconds=snapshot.duration.total_seconds(),
        summary_pending=True,
    )


@router.get("/context", response_model=UserContext, summary="Stored personalization context.")
async def read_user_context(
    runtime: ChatRuntime = Depends(deps.get_runtime),
    user_id: str = Depends(deps.get_user_id),
) -> UserContext:
    context = runtime.user_contexts.get(user_id)
    if context is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No stored context for this user.")
    return context


@router.delete("/context", response_model=ClearContextResponse, summary="Forget stored personalization context.")
async def clear_user_context(
    runtime: ChatRuntime = Depends(deps.get_runtime),
    user_id: str = Depends(deps.get_user_id),
) -> ClearContextResponse:
    return ClearContextResponse(cleared=runtime.user_contexts.clear(user_id))
