"""
Ancestry report upload and management.

GET    /ancestry              -- the caller's uploads, newest first; optional sessionId filter
DELETE /ancestry/{upload_id}  -- remove one upload

POST /ancestry  (multipart: file, sessionId)
- PDF or plain-text export, max 10MB
- At most 3 uploads per user per day
- Parsed profile supersedes any earlier one for the same session
"""

import logging

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from services.concierge.agent.orchestrator import AgentOrchestrator
from services.concierge.ancestry.extraction import AncestryDocument
from services.concierge.ancestry.parser import summarize_profile
from services.concierge.conversation.types import AgentMode
from services.concierge.errors import ConciergeError, PersistenceError
from services.concierge.routers._deps import (
    envelope,
    error_response,
    get_orchestrator,
    require_user_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ancestry", tags=["ancestry"])


@router.post("")
async def upload_ancestry(
    request: Request,
    file: UploadFile = File(...),
    sessionId: str = Form(..., min_length=1),
    user_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    # One byte past the ceiling is enough to reject without buffering the rest
    data = await file.read(orchestrator.max_file_bytes + 1)
    document = AncestryDocument(
        filename=file.filename or "upload",
        content_type=file.content_type or "",
        data=data,
    )

    try:
        profile = await orchestrator.ingest_ancestry_document(user_id, sessionId, document)
    except ConciergeError as exc:
        return error_response(request, exc.code, exc.message)

    return envelope(request, {
        "sessionId": sessionId,
        "agentMode": AgentMode.DNA_SPECIALIST.value,
        "profile": profile.to_dict(),
        "summary": summarize_profile(profile),
        "warnings": list(profile.warnings),
    })


@router.get("")
async def list_uploads(
    request: Request,
    sessionId: str | None = Query(default=None, min_length=1),
    user_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    try:
        uploads = await orchestrator.context_manager.list_ancestry_uploads(user_id, sessionId)
    except PersistenceError as exc:
        return error_response(request, exc.code, exc.message)
    return envelope(request, {"uploads": [u.to_dict() for u in uploads]})


@router.delete("/{upload_id}")
async def delete_upload(
    upload_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    try:
        deleted = await orchestrator.context_manager.delete_ancestry_upload(user_id, upload_id)
    except PersistenceError as exc:
        return error_response(request, exc.code, exc.message)
    if not deleted:
        return error_response(request, "NOT_FOUND", "Upload não encontrado.")
    return envelope(request, {"id": upload_id, "deleted": True})
