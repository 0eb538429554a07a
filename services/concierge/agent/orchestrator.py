"""
Agent orchestrator: one chat turn end to end.

Order of operations for `process`:
  1. Input validation
  2. Read-only quota pre-check
  3. Optional ancestry ingestion
  4. Context assembly (fresh default when the store has nothing)
  5. Intent classification (metadata only) + preference merge
  6. Atomic quota claim, persist user turn, build prompt, call completion
  7. Persist assistant turn (streaming: after the last chunk)

Every failure is a terminal AgentResult carrying a stable error code and a
user-facing Portuguese message. Nothing here raises to the caller except
programming errors.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from services.concierge.ancestry.extraction import (
    AncestryDocument,
    extract_plain_text,
    validate_document,
)
from services.concierge.ancestry.parser import parse_ancestry_text
from services.concierge.ancestry.types import AncestryProfile
from services.concierge.completion.providers import (
    CompletionProvider,
    CompletionStream,
    estimate_cost,
)
from services.concierge.config import settings
from services.concierge.conversation.context_manager import ContextManager
from services.concierge.conversation.types import (
    ConversationContext,
    QuotaDecision,
    UsageSnapshot,
)
from services.concierge.errors import (
    ConciergeError,
    InputValidationError,
    PersistenceError,
    QuotaExceeded,
    UploadLimitExceeded,
    UpstreamCompletionError,
)
from services.concierge.nlp import classify_intent, extract_preferences

logger = logging.getLogger(__name__)

MESSAGE_TOO_LONG = "Mensagem muito longa. Máximo {limit} caracteres."
MESSAGE_EMPTY = "Mensagem não pode estar vazia."
MISSING_IDS = "Sessão ou usuário não informado."
UPLOAD_LIMIT_REACHED = "Limite diário de uploads de DNA atingido. Tente novamente amanhã."


@dataclass
class AgentRequest:
    message: str
    session_id: str
    user_id: str
    use_streaming: bool = False
    document: AncestryDocument | None = None


@dataclass
class AgentResult:
    success: bool
    content: str | None = None
    stream: AsyncIterator[str] | None = None
    error: str | None = None
    error_code: str | None = None
    # agent_mode, message_count, remaining_messages, dna_processed, intent, follow_up_questions
    context: dict[str, Any] | None = None
    # tokens_used, estimated_cost_usd, response_time_ms (single-shot only)
    usage: dict[str, Any] | None = None
    quota: UsageSnapshot | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def failure(
        cls,
        error: ConciergeError,
        quota: UsageSnapshot | None = None,
        warnings: list[str] | None = None,
    ) -> AgentResult:
        return cls(
            success=False,
            error=error.message,
            error_code=error.code,
            quota=quota,
            warnings=warnings or [],
        )


class AgentOrchestrator:

    def __init__(
        self,
        context_manager: ContextManager,
        provider: CompletionProvider,
        *,
        text_extractor: Callable[[AncestryDocument], str] = extract_plain_text,
        max_message_chars: int | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        max_file_bytes: int | None = None,
        min_text_chars: int | None = None,
        max_daily_uploads: int | None = None,
    ) -> None:
        self.context_manager = context_manager
        self.provider = provider
        self.text_extractor = text_extractor
        self.max_message_chars = max_message_chars or settings.max_message_chars
        self.max_tokens = max_tokens or settings.completion_max_tokens
        self.temperature = settings.completion_temperature if temperature is None else temperature
        self.max_file_bytes = max_file_bytes or settings.ancestry_max_file_bytes
        self.min_text_chars = min_text_chars or settings.ancestry_min_text_chars
        self.max_daily_uploads = (
            settings.ancestry_max_daily_uploads if max_daily_uploads is None else max_daily_uploads
        )

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    async def can_send_message(self, user_id: str) -> QuotaDecision:
        return await self.context_manager.can_send_message(user_id)

    async def ingest_ancestry_document(
        self, user_id: str, session_id: str, document: AncestryDocument
    ) -> AncestryProfile:
        """
        Validate, extract, parse and persist an ancestry report.

        Raises InputValidationError, FileTooLarge, UploadLimitExceeded,
        ParseError subclasses or PersistenceError.
        """
        validate_document(document, self.max_file_bytes)

        now = self.context_manager.now()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        uploads_today = await self.context_manager.store.count_ancestry_uploads_since(user_id, day_start)
        if uploads_today >= self.max_daily_uploads:
            raise UploadLimitExceeded(UPLOAD_LIMIT_REACHED)

        # PDF extraction is CPU-bound
        text = await asyncio.to_thread(self.text_extractor, document)
        profile = parse_ancestry_text(text, min_length=self.min_text_chars)

        await self.context_manager.store.save_ancestry(user_id, session_id, profile, now)
        logger.info(
            "ancestry_ingested user=%s session=%s provider=%s regions=%d confidence=%.2f",
            user_id, session_id, profile.test_provider, len(profile.ancestry), profile.confidence,
        )
        return profile

    async def process(self, request: AgentRequest) -> AgentResult:
        error = self._validate(request)
        if error is not None:
            return AgentResult.failure(error)

        try:
            decision = await self.context_manager.can_send_message(request.user_id)
        except PersistenceError as exc:
            return AgentResult.failure(exc)
        if not decision.allowed:
            return AgentResult.failure(
                QuotaExceeded(decision.reason, decision.usage), quota=decision.usage
            )

        warnings: list[str] = []
        dna_processed = False
        if request.document is not None:
            try:
                profile = await self.ingest_ancestry_document(
                    request.user_id, request.session_id, request.document
                )
            except ConciergeError as exc:
                logger.info("ancestry_rejected user=%s code=%s", request.user_id, exc.code)
                return AgentResult.failure(exc, quota=decision.usage)
            dna_processed = True
            warnings.extend(profile.warnings)

        context = await self.context_manager.get_context(request.session_id, request.user_id)
        if context is None:
            context = ConversationContext.fresh(
                request.session_id, request.user_id, self.context_manager.daily_limit
            )

        intent = classify_intent(request.message)
        await self._merge_preferences(context, request.message)

        try:
            claim = await self.context_manager.claim_message_slot(request.user_id)
        except PersistenceError as exc:
            return AgentResult.failure(exc, warnings=warnings)
        if not claim.allowed:
            return AgentResult.failure(
                QuotaExceeded(claim.reason, claim.usage), quota=claim.usage, warnings=warnings
            )

        await self.context_manager.save_message(
            request.session_id,
            request.user_id,
            "user",
            request.message,
            agent_mode=context.agent_mode,
        )

        system_prompt = self.context_manager.system_prompt(context.agent_mode)
        prompt = self.context_manager.build_prompt(context, request.message)

        meta = {
            "agent_mode": context.agent_mode.value,
            "message_count": claim.usage.messages_sent_today,
            "remaining_messages": claim.usage.remaining_messages,
            "dna_processed": dna_processed,
            "intent": intent.intent,
            "follow_up_questions": self.context_manager.follow_up_questions(context),
        }
        logger.info(
            "chat_turn user=%s session=%s mode=%s intent=%s (%.1f) streaming=%s",
            request.user_id, request.session_id, context.agent_mode.value,
            intent.intent, intent.confidence, request.use_streaming,
        )

        started = time.monotonic()
        if request.use_streaming:
            try:
                stream = await self.provider.stream(
                    system_prompt, prompt, self.max_tokens, self.temperature
                )
            except UpstreamCompletionError as exc:
                return AgentResult.failure(exc, quota=claim.usage, warnings=warnings)
            return AgentResult(
                success=True,
                stream=self._relay(stream, request, context, started),
                context=meta,
                quota=claim.usage,
                warnings=warnings,
            )

        try:
            completion = await self.provider.complete(
                system_prompt, prompt, self.max_tokens, self.temperature
            )
        except UpstreamCompletionError as exc:
            return AgentResult.failure(exc, quota=claim.usage, warnings=warnings)

        response_time_ms = int((time.monotonic() - started) * 1000)
        await self.context_manager.save_message(
            request.session_id,
            request.user_id,
            "assistant",
            completion.content,
            metadata={"tokens_used": completion.total_tokens, "response_time_ms": response_time_ms},
            agent_mode=context.agent_mode,
        )

        return AgentResult(
            success=True,
            content=completion.content,
            context=meta,
            usage={
                "tokens_used": completion.total_tokens,
                "estimated_cost_usd": estimate_cost(
                    completion.model, completion.prompt_tokens, completion.completion_tokens
                ),
                "response_time_ms": response_time_ms,
            },
            quota=claim.usage,
            warnings=warnings,
        )

    process_chat = process

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, request: AgentRequest) -> ConciergeError | None:
        if not request.session_id or not request.user_id:
            return InputValidationError(MISSING_IDS)
        if not request.message or not request.message.strip():
            return InputValidationError(MESSAGE_EMPTY)
        if len(request.message) > self.max_message_chars:
            return InputValidationError(MESSAGE_TOO_LONG.format(limit=self.max_message_chars))
        return None

    async def _merge_preferences(self, context: ConversationContext, message: str) -> None:
        found = extract_preferences(message)
        if found.is_empty():
            return
        try:
            context.user_preferences = await self.context_manager.update_preferences(
                context.user_id, found
            )
        except PersistenceError:
            logger.warning("preference update not persisted user=%s", context.user_id)
            context.user_preferences = context.user_preferences.merged_with(found)

    async def _relay(
        self,
        stream: CompletionStream,
        request: AgentRequest,
        context: ConversationContext,
        started: float,
    ) -> AsyncIterator[str]:
        """
        Forward provider chunks unchanged. The assistant turn is saved only
        when the stream runs to completion; a disconnect closes this
        generator at the pending yield and nothing is saved.
        """
        parts: list[str] = []
        try:
            async for chunk in stream:
                parts.append(chunk)
                yield chunk

            await self.context_manager.save_message(
                request.session_id,
                request.user_id,
                "assistant",
                "".join(parts),
                metadata={
                    "tokens_used": stream.total_tokens,
                    "response_time_ms": int((time.monotonic() - started) * 1000),
                },
                agent_mode=context.agent_mode,
            )
        finally:
            # Releases the provider connection on disconnect or error
            await stream.aclose()
