"""
Persistence interface for the conversation core.

Implementations raise PersistenceError on storage failure. Every read is
filtered by user id.
"""

from __future__ import annotations

import abc
from datetime import date, datetime

from services.concierge.ancestry.types import AncestryProfile
from services.concierge.conversation.types import (
    AncestryUploadRecord,
    ConversationMessage,
    SessionSummary,
    UserPreferences,
)


class ChatStore(abc.ABC):

    @abc.abstractmethod
    async def insert_message(self, message: ConversationMessage) -> None:
        ...

    @abc.abstractmethod
    async def recent_messages(
        self, user_id: str, session_id: str, limit: int
    ) -> list[ConversationMessage]:
        """Last `limit` messages of the session, timestamp ascending."""

    @abc.abstractmethod
    async def list_sessions(self, user_id: str) -> list[SessionSummary]:
        """
        Sessions with at least one message or upload, most recently active
        first.
        """

    @abc.abstractmethod
    async def delete_session(self, user_id: str, session_id: str) -> int:
        """
        Delete the session's messages and ancestry uploads. Returns the number
        of messages removed.
        """

    @abc.abstractmethod
    async def save_ancestry(
        self, user_id: str, session_id: str, profile: AncestryProfile, uploaded_at: datetime
    ) -> None:
        ...

    @abc.abstractmethod
    async def latest_ancestry(self, user_id: str, session_id: str) -> AncestryProfile | None:
        ...

    @abc.abstractmethod
    async def list_ancestry_uploads(
        self, user_id: str, session_id: str | None = None
    ) -> list[AncestryUploadRecord]:
        """The user's uploads, newest first, optionally for one session."""

    @abc.abstractmethod
    async def delete_ancestry_upload(self, user_id: str, upload_id: str) -> bool:
        """Delete one of the user's uploads. False when no such upload belongs to the user."""

    @abc.abstractmethod
    async def count_ancestry_uploads_since(self, user_id: str, since: datetime) -> int:
        ...

    @abc.abstractmethod
    async def messages_today(self, user_id: str, day: date) -> int:
        ...

    @abc.abstractmethod
    async def try_increment_daily_usage(
        self, user_id: str, day: date, limit: int | None
    ) -> int | None:
        """
        Atomically add one to the user's counter for `day` if it is below
        `limit` (None = unlimited). Returns the new count, or None when the
        limit was already reached.
        """

    @abc.abstractmethod
    async def has_active_subscription(self, user_id: str, now: datetime) -> bool:
        ...

    @abc.abstractmethod
    async def get_preferences(self, user_id: str) -> UserPreferences:
        ...

    @abc.abstractmethod
    async def save_preferences(self, user_id: str, preferences: UserPreferences) -> None:
        ...
