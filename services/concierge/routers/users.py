"""
GET /users/{user_id}/rate-limit -- pre-flight daily quota check.

Read-only: does not consume a message. Callers may only query themselves.
"""

from fastapi import APIRouter, Depends, Request

from services.concierge.agent.orchestrator import AgentOrchestrator
from services.concierge.errors import PersistenceError
from services.concierge.routers._deps import (
    envelope,
    error_response,
    get_orchestrator,
    require_user_id,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}/rate-limit")
async def rate_limit_status(
    user_id: str,
    request: Request,
    caller_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    if caller_id != user_id:
        return error_response(request, "FORBIDDEN", "Acesso negado.", status_code=403)

    try:
        decision = await orchestrator.can_send_message(user_id)
    except PersistenceError as exc:
        return error_response(request, exc.code, exc.message)

    return envelope(request, {
        "canSendMessage": decision.allowed,
        "reason": decision.reason,
        "usage": decision.usage.to_dict(),
    })
