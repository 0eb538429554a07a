"""
Conversation context and daily quota manager.

Stateless per request: every call re-reads the store. The daily quota lives in
the persisted per-user-per-day counter, so the pre-check (`can_send_message`),
the context snapshot (`get_context`) and the atomic claim
(`claim_message_slot`) all agree on one number and one day boundary.

Day boundary: server-local midnight, taken from the injectable clock.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from services.concierge.ancestry.parser import summarize_profile
from services.concierge.config import settings
from services.concierge.conversation import prompts
from services.concierge.conversation.store import ChatStore
from services.concierge.conversation.types import (
    VALID_ROLES,
    AgentMode,
    AncestryUploadRecord,
    ConversationContext,
    ConversationMessage,
    QuotaDecision,
    SessionSummary,
    UsageSnapshot,
    UserPreferences,
)
from services.concierge.errors import PersistenceError

logger = logging.getLogger(__name__)

QUOTA_REACHED_MESSAGE = "Limite diário de mensagens atingido. Faça upgrade para acesso ilimitado."


def _local_now() -> datetime:
    return datetime.now().astimezone()


class ContextManager:

    def __init__(
        self,
        store: ChatStore,
        *,
        daily_limit: int | None = None,
        window_size: int | None = None,
        history_size: int | None = None,
        ancestry_top_n: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.daily_limit = settings.free_tier_daily_limit if daily_limit is None else daily_limit
        self.window_size = settings.context_window_messages if window_size is None else window_size
        self.history_size = settings.prompt_history_messages if history_size is None else history_size
        self.ancestry_top_n = settings.prompt_ancestry_top_n if ancestry_top_n is None else ancestry_top_n
        self._clock = clock or _local_now

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    def _snapshot(self, count: int, subscribed: bool) -> UsageSnapshot:
        if subscribed:
            return UsageSnapshot(
                messages_sent_today=count,
                is_free_tier=False,
                daily_limit=None,
                remaining_messages=None,
            )
        return UsageSnapshot(
            messages_sent_today=count,
            is_free_tier=True,
            daily_limit=self.daily_limit,
            remaining_messages=max(0, self.daily_limit - count),
        )

    async def _usage_snapshot(self, user_id: str) -> UsageSnapshot:
        now = self.now()
        subscribed = await self.store.has_active_subscription(user_id, now)
        count = await self.store.messages_today(user_id, now.date())
        return self._snapshot(count, subscribed)

    async def can_send_message(self, user_id: str) -> QuotaDecision:
        """Read-only pre-flight check. Does not consume quota."""
        usage = await self._usage_snapshot(user_id)
        if not usage.is_free_tier:
            return QuotaDecision(allowed=True, usage=usage)
        if usage.messages_sent_today >= self.daily_limit:
            return QuotaDecision(allowed=False, usage=usage, reason=QUOTA_REACHED_MESSAGE)
        return QuotaDecision(allowed=True, usage=usage)

    async def claim_message_slot(self, user_id: str) -> QuotaDecision:
        """
        Consume one message from today's quota, atomically.

        Two concurrent requests at limit-1 cannot both succeed: the store's
        increment-if-below-limit is the only writer of the counter.
        """
        now = self.now()
        subscribed = await self.store.has_active_subscription(user_id, now)
        limit = None if subscribed else self.daily_limit
        new_count = await self.store.try_increment_daily_usage(user_id, now.date(), limit)

        if new_count is None:
            current = await self.store.messages_today(user_id, now.date())
            usage = self._snapshot(current, subscribed)
            logger.info("quota_rejected user=%s count=%d limit=%s", user_id, current, limit)
            return QuotaDecision(allowed=False, usage=usage, reason=QUOTA_REACHED_MESSAGE)

        return QuotaDecision(allowed=True, usage=self._snapshot(new_count, subscribed))

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def get_context(self, session_id: str, user_id: str | None) -> ConversationContext | None:
        """
        Assemble the context for (session, user). Returns None when no user id
        resolves or the store is unreachable; callers fall back to a fresh
        default context.
        """
        if not user_id:
            return None

        try:
            messages = await self.store.recent_messages(user_id, session_id, self.window_size)
            profile = await self.store.latest_ancestry(user_id, session_id)
            usage = await self._usage_snapshot(user_id)
            preferences = await self.store.get_preferences(user_id)
        except PersistenceError:
            logger.warning("get_context degraded: store unavailable user=%s session=%s", user_id, session_id)
            return None

        has_ancestry = profile is not None and bool(profile.ancestry)
        return ConversationContext(
            session_id=session_id,
            user_id=user_id,
            agent_mode=AgentMode.DNA_SPECIALIST if has_ancestry else AgentMode.TRADITIONAL_PLANNER,
            usage=usage,
            messages=messages[-self.window_size:] if self.window_size > 0 else [],
            user_preferences=preferences,
            ancestry_profile=profile if has_ancestry else None,
        )

    async def save_message(
        self,
        session_id: str,
        user_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        agent_mode: AgentMode | None = None,
    ) -> bool:
        """
        Append one message. The row is tagged with the agent mode in effect
        at write time. Returns False (and logs) on storage failure; no retry.
        """
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid role: {role!r}")

        try:
            if agent_mode is None:
                profile = await self.store.latest_ancestry(user_id, session_id)
                agent_mode = (
                    AgentMode.DNA_SPECIALIST
                    if profile is not None and profile.ancestry
                    else AgentMode.TRADITIONAL_PLANNER
                )
            await self.store.insert_message(ConversationMessage(
                session_id=session_id,
                user_id=user_id,
                role=role,
                content=content,
                agent_mode=agent_mode,
                timestamp=self.now(),
                metadata=metadata,
            ))
        except PersistenceError:
            logger.exception("save_message failed user=%s session=%s role=%s", user_id, session_id, role)
            return False
        return True

    async def get_history(self, session_id: str, user_id: str, limit: int) -> list[ConversationMessage]:
        """Recent messages of a session, oldest first. Raises PersistenceError."""
        return await self.store.recent_messages(user_id, session_id, limit)

    async def list_sessions(self, user_id: str) -> list[SessionSummary]:
        return await self.store.list_sessions(user_id)

    async def delete_session(self, session_id: str, user_id: str) -> int:
        """
        Remove a session's messages and ancestry uploads. The daily message
        counter is not refunded.
        """
        removed = await self.store.delete_session(user_id, session_id)
        logger.info("session_deleted user=%s session=%s messages=%d", user_id, session_id, removed)
        return removed

    async def list_ancestry_uploads(
        self, user_id: str, session_id: str | None = None
    ) -> list[AncestryUploadRecord]:
        return await self.store.list_ancestry_uploads(user_id, session_id)

    async def delete_ancestry_upload(self, user_id: str, upload_id: str) -> bool:
        deleted = await self.store.delete_ancestry_upload(user_id, upload_id)
        if deleted:
            logger.info("ancestry_upload_deleted user=%s upload=%s", user_id, upload_id)
        return deleted

    async def update_preferences(self, user_id: str, new: UserPreferences) -> UserPreferences:
        """Fill-missing merge of `new` into the persisted preferences."""
        current = await self.store.get_preferences(user_id)
        if new.is_empty():
            return current
        merged = current.merged_with(new)
        if merged != current:
            await self.store.save_preferences(user_id, merged)
        return merged

    @staticmethod
    def generate_session_id() -> str:
        return f"session_{uuid.uuid4().hex}"

    # ------------------------------------------------------------------
    # Prompting
    # ------------------------------------------------------------------

    def system_prompt(self, agent_mode: AgentMode) -> str:
        return prompts.SYSTEM_PROMPTS[agent_mode]

    def build_prompt(self, context: ConversationContext, current_message: str | None = None) -> str:
        sections = [prompts.MODE_INSTRUCTIONS[context.agent_mode]]

        pref_lines = prompts.preference_lines(context.user_preferences)
        if pref_lines:
            sections.append("\n".join(pref_lines))

        if context.agent_mode is AgentMode.DNA_SPECIALIST and context.ancestry_profile is not None:
            summary = summarize_profile(context.ancestry_profile, top_n=self.ancestry_top_n)
            sections.append(f"{prompts.ANCESTRY_HEADER}\n{summary}")

        history = context.messages[-self.history_size:] if self.history_size > 0 else []
        if history:
            lines = [prompts.HISTORY_HEADER]
            lines += [f"{prompts.ROLE_LABELS[m.role]}: {m.content}" for m in history]
            sections.append("\n".join(lines))

        if current_message:
            sections.append(f"{prompts.CURRENT_MESSAGE_LABEL} {current_message}")

        sections.append(prompts.CLOSING_INSTRUCTION)
        return "\n\n".join(sections)

    def follow_up_questions(self, context: ConversationContext) -> list[str]:
        questions: list[str] = []
        prefs = context.user_preferences

        if context.agent_mode is AgentMode.DNA_SPECIALIST and context.ancestry_profile is not None:
            top = context.ancestry_profile.top_region
            if top:
                questions.append(prompts.DNA_FOLLOW_UP_TOP_REGION.format(region=top))
            questions.append(prompts.DNA_FOLLOW_UP_TRADITIONS)
        else:
            questions.append(prompts.PLANNER_FOLLOW_UP_DAYS)
            if not prefs.travel_style:
                questions.append(prompts.PLANNER_FOLLOW_UP_STYLE)

        if not prefs.budget:
            questions.append(prompts.FOLLOW_UP_BUDGET)
        if not prefs.interests:
            questions.append(prompts.FOLLOW_UP_INTERESTS)

        return questions[:prompts.MAX_FOLLOW_UPS]
