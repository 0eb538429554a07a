"""Health check endpoint."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    state = request.app.state
    orchestrator = getattr(state, "orchestrator", None)
    return {
        "success": True,
        "data": {
            "status": "healthy" if orchestrator is not None else "degraded",
            "version": state.settings.app_version,
            "store": getattr(state, "store_kind", "unknown"),
            "completionModel": orchestrator.provider.model if orchestrator is not None else None,
        },
        "requestId": request.state.request_id,
    }
