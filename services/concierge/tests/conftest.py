"""
Shared test fixtures for the concierge test suite.

Provides:
- in-memory chat store + ContextManager with a controllable clock
- fake completion provider (no network)
- async FastAPI test client wired to the fakes
- factory functions for messages, profiles and documents
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test env vars before any app imports
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("ANTHROPIC_API_KEY", "")

from services.concierge.agent.orchestrator import AgentOrchestrator  # noqa: E402
from services.concierge.ancestry.extraction import AncestryDocument  # noqa: E402
from services.concierge.ancestry.types import AncestryProfile, AncestryRecord  # noqa: E402
from services.concierge.completion.providers import (  # noqa: E402
    Completion,
    CompletionProvider,
    CompletionStream,
)
from services.concierge.conversation.context_manager import ContextManager  # noqa: E402
from services.concierge.conversation.memory_store import InMemoryChatStore  # noqa: E402
from services.concierge.conversation.types import AgentMode, ConversationMessage  # noqa: E402


SAMPLE_ANCESTRY_TEXT = (
    "Relatório de Ancestralidade Genera\n"
    "Ibérica: 45.2%\n"
    "Italiana: 25.1%\n"
    "Alemã: 15.5%\n"
    "Africana: 8.9%\n"
    "Indígena: 5.3%\n"
    "Grupos Étnicos: Portugueses, Italianos, Alemães\n"
)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FixedClock:
    """Callable clock; advance() moves time forward for day-boundary tests."""

    def __init__(self, now: datetime | None = None) -> None:
        self.current = now or datetime(2025, 3, 10, 14, 0, tzinfo=timezone(timedelta(hours=-3)))

    def __call__(self) -> datetime:
        # Strictly increasing so message timestamps never tie
        self.current = self.current + timedelta(milliseconds=1)
        return self.current

    def advance(self, **kwargs: Any) -> None:
        self.current = self.current + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Fake completion provider
# ---------------------------------------------------------------------------

class FakeCompletionProvider(CompletionProvider):
    """
    Scripted provider. `error` is raised from complete()/stream();
    `stream_error` is raised after the scripted chunks have been yielded.
    """

    def __init__(
        self,
        content: str = "Resposta de teste.",
        chunks: list[str] | None = None,
        error: Exception | None = None,
        stream_error: Exception | None = None,
        model: str = "claude-sonnet-4-6",
    ) -> None:
        self.model = model
        self.content = content
        self.chunks = chunks if chunks is not None else ["Olá", ", ", "viajante!"]
        self.error = error
        self.stream_error = stream_error
        self.calls: list[dict[str, Any]] = []

    def _record(self, mode: str, system_prompt: str, user_prompt: str) -> None:
        self.calls.append({"mode": mode, "system": system_prompt, "prompt": user_prompt})

    async def complete(self, system_prompt, user_prompt, max_tokens, temperature) -> Completion:
        self._record("complete", system_prompt, user_prompt)
        if self.error is not None:
            raise self.error
        return Completion(
            content=self.content,
            prompt_tokens=120,
            completion_tokens=30,
            model=self.model,
        )

    async def stream(self, system_prompt, user_prompt, max_tokens, temperature) -> CompletionStream:
        self._record("stream", system_prompt, user_prompt)
        if self.error is not None:
            raise self.error
        result = CompletionStream(model=self.model)
        result.attach(self._chunks(result))
        return result

    async def _chunks(self, result: CompletionStream) -> AsyncIterator[str]:
        result.prompt_tokens = 120
        for chunk in self.chunks:
            result.completion_tokens += 1
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryChatStore()


@pytest.fixture
def context_manager(store, clock):
    return ContextManager(
        store,
        daily_limit=5,
        window_size=20,
        history_size=10,
        ancestry_top_n=5,
        clock=clock,
    )


@pytest.fixture
def provider():
    return FakeCompletionProvider()


@pytest.fixture
def orchestrator(context_manager, provider):
    return AgentOrchestrator(
        context_manager,
        provider,
        max_message_chars=5000,
        max_tokens=2000,
        temperature=0.7,
        max_file_bytes=10 * 1024 * 1024,
        min_text_chars=50,
        max_daily_uploads=3,
    )


@pytest.fixture
async def app(orchestrator):
    """The FastAPI app with the fake orchestrator injected (lifespan not run)."""
    from services.concierge.config import settings
    from services.concierge.main import app as _app

    _app.state.settings = settings
    _app.state.orchestrator = orchestrator
    _app.state.store_kind = "memory"
    _app.state.redis = None
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------

def make_message(**overrides: Any) -> ConversationMessage:
    defaults: dict[str, Any] = {
        "session_id": "session-1",
        "user_id": "user-1",
        "role": "user",
        "content": "Olá!",
        "agent_mode": AgentMode.TRADITIONAL_PLANNER,
        "timestamp": datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    return ConversationMessage(**defaults)


def make_profile(**overrides: Any) -> AncestryProfile:
    defaults: dict[str, Any] = {
        "ancestry": (
            AncestryRecord("Ibérica", 45.2, ("Portugal", "Espanha")),
            AncestryRecord("Italiana", 25.1, ("Itália",)),
            AncestryRecord("Alemã", 15.5, ("Alemanha",)),
        ),
        "ethnic_groups": ("Portugueses",),
        "test_provider": "genera",
        "confidence": 0.9,
    }
    defaults.update(overrides)
    return AncestryProfile(**defaults)


def make_document(**overrides: Any) -> AncestryDocument:
    defaults: dict[str, Any] = {
        "filename": "relatorio.txt",
        "content_type": "text/plain",
        "data": SAMPLE_ANCESTRY_TEXT.encode("utf-8"),
    }
    defaults.update(overrides)
    return AncestryDocument(**defaults)
