"""Shared dependencies and response helpers for the concierge routers."""

import uuid
from typing import Any

from fastapi import HTTPException, Request
from starlette.responses import JSONResponse

from services.concierge.agent.orchestrator import AgentOrchestrator

# error code -> HTTP status
ERROR_STATUS: dict[str, int] = {
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "FILE_TOO_LARGE": 413,
    "ANCESTRY_PARSE_FAILED": 422,
    "ANCESTRY_TEXT_TOO_SHORT": 422,
    "ANCESTRY_NOT_FOUND": 422,
    "QUOTA_EXCEEDED": 429,
    "UPLOAD_LIMIT_EXCEEDED": 429,
    "PERSISTENCE_ERROR": 503,
    "UPSTREAM_AUTH": 502,
    "UPSTREAM_NOT_FOUND": 502,
    "UPSTREAM_UNKNOWN": 502,
    "UPSTREAM_RATE_LIMIT": 503,
    "UPSTREAM_QUOTA": 503,
    "UPSTREAM_TRANSIENT": 503,
    "UPSTREAM_TIMEOUT": 504,
}


def status_for(code: str | None) -> int:
    return ERROR_STATUS.get(code or "", 500)


def request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


def envelope(request: Request, data: Any) -> dict:
    return {"success": True, "data": data, "requestId": request_id(request)}


def error_response(
    request: Request,
    code: str,
    message: str,
    status_code: int | None = None,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if extra:
        error.update(extra)
    return JSONResponse(
        status_code=status_code or status_for(code),
        content={"success": False, "error": error, "requestId": request_id(request)},
    )


def get_orchestrator(request: Request) -> AgentOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "SERVICE_UNAVAILABLE", "message": "Serviço indisponível."},
        )
    return orchestrator


def require_user_id(request: Request) -> str:
    """The caller's user id from the X-User-Id header. 401 when missing."""
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHORIZED", "message": "Usuário não autenticado."},
        )
    return user_id
