"""
Chat endpoints.

POST /chat            -- one chat turn; JSON envelope or SSE when useStreaming
GET  /chat/history    -- recent messages of a session + agent mode + ancestry summary
POST /chat/sessions   -- new session id
GET  /chat/sessions   -- the caller's sessions, most recently active first
DELETE /chat          -- delete one session's messages and ancestry uploads

SSE wire format (one JSON object per `data:` line):
  {"type": "context", "context": {...}}   first event
  {"type": "content", "content": "..."}   one per provider chunk, in order
  {"type": "error", "error": "...", "code": "..."}   mid-stream failure
  [DONE]                                  always last
"""

import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator

from services.concierge.agent.orchestrator import AgentOrchestrator, AgentRequest, AgentResult
from services.concierge.config import settings
from services.concierge.errors import PersistenceError, UpstreamCompletionError
from services.concierge.routers._deps import (
    envelope,
    error_response,
    get_orchestrator,
    require_user_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


class ChatRequest(BaseModel):
    message: str
    sessionId: str = Field(min_length=1, max_length=128)
    useStreaming: bool = False

    @field_validator("sessionId")
    @classmethod
    def session_id_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("sessionId must not be blank")
        return v


def _sse(payload: dict | str) -> str:
    if isinstance(payload, str):
        return f"data: {payload}\n\n"
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def _sse_events(result: AgentResult) -> AsyncIterator[str]:
    yield _sse({"type": "context", "context": result.context, "warnings": result.warnings})
    try:
        async for chunk in result.stream:
            yield _sse({"type": "content", "content": chunk})
    except UpstreamCompletionError as exc:
        logger.warning("stream aborted: code=%s", exc.code)
        yield _sse({"type": "error", "error": exc.message, "code": exc.code})
    yield _sse("[DONE]")


@router.post("")
async def chat(
    body: ChatRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.process(AgentRequest(
        message=body.message,
        session_id=body.sessionId,
        user_id=user_id,
        use_streaming=body.useStreaming,
    ))

    if not result.success:
        extra = {"usage": result.quota.to_dict()} if result.quota is not None else None
        return error_response(request, result.error_code or "INTERNAL_ERROR", result.error or "", extra=extra)

    if result.stream is not None:
        return StreamingResponse(
            _sse_events(result),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Request-ID": request.state.request_id,
            },
        )

    return envelope(request, {
        "content": result.content,
        "context": result.context,
        "usage": result.usage,
        "quota": result.quota.to_dict() if result.quota is not None else None,
        "warnings": result.warnings,
    })


@router.get("/history")
async def chat_history(
    request: Request,
    sessionId: str = Query(min_length=1),
    limit: int = Query(default=50, ge=1, le=settings.history_max_messages),
    user_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    cm = orchestrator.context_manager
    try:
        messages = await cm.get_history(sessionId, user_id, limit)
    except PersistenceError as exc:
        return error_response(request, exc.code, exc.message)

    context = await cm.get_context(sessionId, user_id)
    ancestry = None
    if context is not None and context.ancestry_profile is not None:
        profile = context.ancestry_profile
        ancestry = {
            "topRegion": profile.top_region,
            "regions": len(profile.ancestry),
            "testProvider": profile.test_provider,
            "confidence": profile.confidence,
        }

    return envelope(request, {
        "sessionId": sessionId,
        "messages": [m.to_dict() for m in messages],
        "agentMode": context.agent_mode.value if context is not None else None,
        "ancestry": ancestry,
    })


@router.post("/sessions")
async def create_session(
    request: Request,
    user_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    session_id = orchestrator.context_manager.generate_session_id()
    logger.info("session_created user=%s session=%s", user_id, session_id)
    return envelope(request, {"sessionId": session_id})


@router.get("/sessions")
async def list_sessions(
    request: Request,
    user_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    try:
        sessions = await orchestrator.context_manager.list_sessions(user_id)
    except PersistenceError as exc:
        return error_response(request, exc.code, exc.message)
    return envelope(request, {"sessions": [s.to_dict() for s in sessions]})


@router.delete("")
async def delete_session(
    request: Request,
    sessionId: str = Query(min_length=1),
    user_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    try:
        removed = await orchestrator.context_manager.delete_session(sessionId, user_id)
    except PersistenceError as exc:
        return error_response(request, exc.code, exc.message)
    return envelope(request, {"sessionId": sessionId, "deletedMessages": removed})
