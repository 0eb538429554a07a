"""
Conversation data model.

ConversationContext is derived state: rebuilt from the store on every request
and never cached across requests.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from services.concierge.ancestry.types import AncestryProfile


class AgentMode(str, Enum):
    DNA_SPECIALIST = "DNA_SPECIALIST"
    TRADITIONAL_PLANNER = "TRADITIONAL_PLANNER"


VALID_ROLES = ("user", "assistant")


@dataclass
class ConversationMessage:
    session_id: str
    user_id: str
    role: str  # "user" | "assistant"
    content: str
    agent_mode: AgentMode
    timestamp: datetime
    metadata: dict[str, Any] | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "role": self.role,
            "content": self.content,
            "agentMode": self.agent_mode.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class AncestryUploadRecord:
    """One stored ancestry upload. The profile is stored without parser warnings."""
    id: str
    session_id: str
    profile: AncestryProfile
    uploaded_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "testProvider": self.profile.test_provider,
            "confidence": self.profile.confidence,
            "topRegion": self.profile.top_region,
            "profile": self.profile.to_dict(),
            "uploadedAt": self.uploaded_at.isoformat(),
        }


SESSION_PREVIEW_CHARS = 100
EMPTY_SESSION_PREVIEW = "Nova conversa"


@dataclass(frozen=True)
class SessionSummary:
    """
    A user's session as listed in the conversation sidebar. `preview` is the
    first message of the session, cut to SESSION_PREVIEW_CHARS.
    """
    session_id: str
    preview: str
    message_count: int
    has_ancestry: bool
    created_at: datetime
    last_message_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "preview": self.preview,
            "messageCount": self.message_count,
            "hasDnaData": self.has_ancestry,
            "createdAt": self.created_at.isoformat(),
            "lastMessageAt": self.last_message_at.isoformat(),
        }


@dataclass
class UserPreferences:
    budget: str | None = None
    travel_style: str | None = None
    interests: list[str] = field(default_factory=list)
    previous_destinations: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.budget or self.travel_style or self.interests or self.previous_destinations)

    def merged_with(self, new: UserPreferences) -> UserPreferences:
        """
        Fill-missing merge. A field that is already set is never replaced by a
        later heuristic guess; list fields only gain items they did not have.
        """
        interests = list(self.interests)
        interests += [i for i in new.interests if i not in interests]
        destinations = list(self.previous_destinations)
        destinations += [d for d in new.previous_destinations if d not in destinations]
        return replace(
            self,
            budget=self.budget or new.budget,
            travel_style=self.travel_style or new.travel_style,
            interests=interests,
            previous_destinations=destinations,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "budget": self.budget,
            "travelStyle": self.travel_style,
            "interests": list(self.interests),
            "previousDestinations": list(self.previous_destinations),
        }


@dataclass(frozen=True)
class UsageSnapshot:
    """daily_limit / remaining_messages are None for subscribed (unlimited) users."""
    messages_sent_today: int
    is_free_tier: bool
    daily_limit: int | None
    remaining_messages: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "messagesSentToday": self.messages_sent_today,
            "isFreeTier": self.is_free_tier,
            "dailyLimit": self.daily_limit,
            "remainingMessages": self.remaining_messages,
        }


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    usage: UsageSnapshot
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "usage": self.usage.to_dict(),
        }


@dataclass
class ConversationContext:
    session_id: str
    user_id: str
    agent_mode: AgentMode
    usage: UsageSnapshot
    messages: list[ConversationMessage] = field(default_factory=list)
    user_preferences: UserPreferences = field(default_factory=UserPreferences)
    ancestry_profile: AncestryProfile | None = None

    @classmethod
    def fresh(cls, session_id: str, user_id: str, daily_limit: int) -> ConversationContext:
        """Default context for a session the store knows nothing about."""
        return cls(
            session_id=session_id,
            user_id=user_id,
            agent_mode=AgentMode.TRADITIONAL_PLANNER,
            usage=UsageSnapshot(
                messages_sent_today=0,
                is_free_tier=True,
                daily_limit=daily_limit,
                remaining_messages=daily_limit,
            ),
        )
