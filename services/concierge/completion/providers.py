"""
Completion capability.

The orchestrator only sees CompletionProvider: `complete()` for a single-shot
answer and `stream()` for pass-through streaming. Provider-specific errors are
re-categorised into UpstreamCompletionError before they leave this module, so
raw provider payloads never reach the user.

Streaming: `stream()` sends the request before returning, so authentication,
missing-model and rate-limit failures surface as exceptions from the call
itself. Errors raised mid-stream are re-categorised the same way.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Iterable

import anthropic

from services.concierge.errors import UpstreamCompletionError

logger = logging.getLogger(__name__)

# USD per 1M tokens, (input, output). Matched by model-name prefix.
_PRICING_PER_1M: tuple[tuple[str, tuple[float, float]], ...] = (
    ("claude-opus", (15.00, 75.00)),
    ("claude-sonnet", (3.00, 15.00)),
    ("claude-haiku", (0.80, 4.00)),
)
_DEFAULT_PRICING_PER_1M = (3.00, 15.00)


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Rough USD cost estimate from token counts."""
    input_cost, output_cost = _DEFAULT_PRICING_PER_1M
    for prefix, pricing in _PRICING_PER_1M:
        if model.startswith(prefix):
            input_cost, output_cost = pricing
            break
    return round((prompt_tokens * input_cost + completion_tokens * output_cost) / 1_000_000, 6)


@dataclass
class Completion:
    content: str
    prompt_tokens: int
    completion_tokens: int
    model: str

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class CompletionStream:
    """
    Async iterator of text chunks in provider emission order.

    Token counts fill in as the provider reports them and are final once
    iteration ends.
    """

    def __init__(self, model: str, chunks: AsyncIterator[str] | None = None) -> None:
        self.model = model
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self._chunks = chunks

    def attach(self, chunks: AsyncIterator[str]) -> None:
        self._chunks = chunks

    def __aiter__(self) -> AsyncIterator[str]:
        if self._chunks is None:
            raise RuntimeError("CompletionStream has no chunk source attached")
        return self._chunks.__aiter__()

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    async def aclose(self) -> None:
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()


class CompletionProvider(abc.ABC):
    model: str

    @abc.abstractmethod
    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> Completion:
        """Raises UpstreamCompletionError."""

    @abc.abstractmethod
    async def stream(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> CompletionStream:
        """Raises UpstreamCompletionError."""


def categorize_error(exc: BaseException) -> str:
    """Map a provider exception onto an UpstreamCompletionError category."""
    # APITimeoutError subclasses APIConnectionError: check it first
    if isinstance(exc, (anthropic.APITimeoutError, asyncio.TimeoutError)):
        return "timeout"
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return "auth"
    if isinstance(exc, anthropic.RateLimitError):
        return "rate_limit"
    if isinstance(exc, anthropic.NotFoundError):
        return "not_found"
    if isinstance(exc, anthropic.APIConnectionError):
        return "transient"
    if isinstance(exc, anthropic.BadRequestError) and "credit balance" in str(exc).lower():
        return "quota"
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code >= 500:
        return "transient"
    return "unknown"


class AnthropicCompletionProvider(CompletionProvider):

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str,
        timeout_s: float = 30.0,
    ) -> None:
        self._client = client
        self.model = model
        self.timeout_s = timeout_s

    def _request(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> dict:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }

    def _upstream_error(self, exc: BaseException) -> UpstreamCompletionError:
        category = categorize_error(exc)
        logger.warning(
            "Completion failed: model=%s category=%s error=%s",
            self.model, category, type(exc).__name__,
        )
        return UpstreamCompletionError(category, detail=str(exc)[:500])

    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> Completion:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    **self._request(system_prompt, user_prompt, max_tokens, temperature)
                ),
                timeout=self.timeout_s,
            )
        except (anthropic.APIError, asyncio.TimeoutError) as exc:
            raise self._upstream_error(exc) from exc

        latency_ms = int((time.monotonic() - start) * 1000)
        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        completion = Completion(
            content=content,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            model=self.model,
        )

        logger.info(
            "Completion done: model=%s latency=%dms in=%d out=%d cost=$%.6f",
            self.model,
            latency_ms,
            completion.prompt_tokens,
            completion.completion_tokens,
            estimate_cost(self.model, completion.prompt_tokens, completion.completion_tokens),
        )
        return completion

    async def stream(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> CompletionStream:
        try:
            events = await asyncio.wait_for(
                self._client.messages.create(
                    **self._request(system_prompt, user_prompt, max_tokens, temperature),
                    stream=True,
                ),
                timeout=self.timeout_s,
            )
        except (anthropic.APIError, asyncio.TimeoutError) as exc:
            raise self._upstream_error(exc) from exc

        result = CompletionStream(model=self.model)
        result.attach(self._iter_text(events, result))
        return result

    async def _iter_text(self, events, result: CompletionStream) -> AsyncIterator[str]:
        start = time.monotonic()
        try:
            async for event in events:
                if event.type == "message_start":
                    result.prompt_tokens = event.message.usage.input_tokens
                elif event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield event.delta.text
                elif event.type == "message_delta":
                    result.completion_tokens = event.usage.output_tokens
        except anthropic.APIError as exc:
            raise self._upstream_error(exc) from exc
        finally:
            # AsyncStream holds the HTTP response open until closed
            close = getattr(events, "close", None)
            if close is not None:
                await close()

        logger.info(
            "Completion stream done: model=%s latency=%dms in=%d out=%d cost=$%.6f",
            self.model,
            int((time.monotonic() - start) * 1000),
            result.prompt_tokens,
            result.completion_tokens,
            estimate_cost(self.model, result.prompt_tokens, result.completion_tokens),
        )


class FallbackCompletionProvider(CompletionProvider):
    """
    Retry once against `secondary` when `primary` fails with one of
    `categories`. Mid-stream failures are not retried.
    """

    def __init__(
        self,
        primary: CompletionProvider,
        secondary: CompletionProvider,
        categories: Iterable[str] = ("not_found", "timeout", "transient"),
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.categories = frozenset(categories)

    @property
    def model(self) -> str:  # type: ignore[override]
        return self.primary.model

    def _should_fall_back(self, exc: UpstreamCompletionError) -> bool:
        if exc.category not in self.categories:
            return False
        logger.warning(
            "Completion falling back: %s -> %s (category=%s)",
            self.primary.model, self.secondary.model, exc.category,
        )
        return True

    async def complete(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> Completion:
        try:
            return await self.primary.complete(system_prompt, user_prompt, max_tokens, temperature)
        except UpstreamCompletionError as exc:
            if not self._should_fall_back(exc):
                raise
        return await self.secondary.complete(system_prompt, user_prompt, max_tokens, temperature)

    async def stream(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> CompletionStream:
        try:
            return await self.primary.stream(system_prompt, user_prompt, max_tokens, temperature)
        except UpstreamCompletionError as exc:
            if not self._should_fall_back(exc):
                raise
        return await self.secondary.stream(system_prompt, user_prompt, max_tokens, temperature)
