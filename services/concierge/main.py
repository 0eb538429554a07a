"""
Ancestral travel concierge FastAPI service: chat, ancestry uploads, quotas.

Entrypoint: uvicorn services.concierge.main:app --host 0.0.0.0 --port 8000
"""

import logging
import uuid
from contextlib import asynccontextmanager

import anthropic
import redis.asyncio as aioredis
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from services.concierge.agent.orchestrator import AgentOrchestrator
from services.concierge.completion.providers import (
    AnthropicCompletionProvider,
    CompletionProvider,
    FallbackCompletionProvider,
)
from services.concierge.config import settings
from services.concierge.conversation.context_manager import ContextManager
from services.concierge.conversation.memory_store import InMemoryChatStore
from services.concierge.conversation.sql_store import SqlChatStore
from services.concierge.conversation.store import ChatStore
from services.concierge.middleware.cors import setup_cors
from services.concierge.middleware.rate_limit import RateLimitMiddleware
from services.concierge.middleware.sentry import setup_sentry
from services.concierge.routers import ancestry, chat, health, users

logger = logging.getLogger(__name__)

# Shared redis reference -- set during lifespan, read by rate limiter
_redis_holder: dict = {"client": None}


def build_provider(client: anthropic.AsyncAnthropic) -> CompletionProvider:
    primary = AnthropicCompletionProvider(
        client, settings.completion_model, timeout_s=settings.completion_timeout_s
    )
    if not settings.completion_fallback_model:
        return primary
    secondary = AnthropicCompletionProvider(
        client, settings.completion_fallback_model, timeout_s=settings.completion_timeout_s
    )
    return FallbackCompletionProvider(primary, secondary, settings.completion_fallback_categories)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    logging.basicConfig(level=settings.log_level.upper())
    setup_sentry()

    # Redis for per-minute rate limiting
    redis_client = None
    if settings.redis_url:
        try:
            redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            await redis_client.ping()
        except Exception as e:
            # Rate limiting degrades gracefully -- requests pass through
            logger.warning("Redis unavailable, rate limiting disabled: %s", e)
            redis_client = None

    _redis_holder["client"] = redis_client
    app.state.redis = redis_client
    app.state.settings = settings

    # Persistence -- SA engine, or process-local store when no database is configured
    from services.concierge.db.engine import create_engine as create_sa_engine
    from services.concierge.db.engine import create_session_factory

    sa_engine = None
    store: ChatStore
    if settings.database_url:
        sa_engine = create_sa_engine()
        if settings.db_auto_create:
            from services.concierge.db.models import Base

            async with sa_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        app.state.db_engine = sa_engine
        app.state.db_session_factory = create_session_factory(sa_engine)
        store = SqlChatStore(app.state.db_session_factory)
        app.state.store_kind = "sql"
    else:
        logger.warning("DATABASE_URL empty: using in-memory chat store")
        store = InMemoryChatStore()
        app.state.store_kind = "memory"

    anthropic_client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key or None)
    app.state.anthropic = anthropic_client

    app.state.orchestrator = AgentOrchestrator(
        ContextManager(store),
        build_provider(anthropic_client),
    )

    yield

    await anthropic_client.close()
    if sa_engine:
        await sa_engine.dispose()
    if redis_client:
        await redis_client.aclose()


app = FastAPI(
    title="Ancestral Travel Concierge API",
    version=settings.app_version,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

# -- Middleware (order matters: last added = outermost in Starlette) --

# Routers first (innermost)
app.include_router(health.router)
app.include_router(chat.router)
app.include_router(ancestry.router)
app.include_router(users.router)

# CORS (needs to be outermost to handle preflight)
setup_cors(app)


# Request ID injection
@app.middleware("http")
async def request_envelope_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Rate limiting -- uses lazy redis reference from lifespan
class _LazyRateLimitMiddleware(RateLimitMiddleware):
    """Rate limiter that picks up Redis client after lifespan init."""

    def __init__(self, app):
        super().__init__(app, redis_client=None)

    async def dispatch(self, request, call_next):
        self.redis = _redis_holder.get("client")
        return await super().dispatch(request, call_next)


app.add_middleware(_LazyRateLimitMiddleware)


# -- Exception Handlers --

def _error_body(request: Request, code: str, message: str) -> dict:
    return {
        "success": False,
        "error": {"code": code, "message": message},
        "requestId": getattr(request.state, "request_id", str(uuid.uuid4())),
    }


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        code, message = exc.detail["code"], exc.detail.get("message", "")
    elif exc.status_code == 404:
        code, message = "NOT_FOUND", "Resource not found."
    else:
        code, message = "HTTP_ERROR", str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_body(request, code, message))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_error_body(request, "VALIDATION_ERROR", "Requisição inválida."),
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=_error_body(request, "INTERNAL_ERROR", "An unexpected error occurred."),
    )
