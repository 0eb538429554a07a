"""
Process-local ChatStore for local development and tests.

Used when DATABASE_URL is empty. State is not shared across workers and is
lost on restart.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import date, datetime

from services.concierge.ancestry.types import AncestryProfile
from services.concierge.conversation.store import ChatStore
from services.concierge.conversation.types import (
    EMPTY_SESSION_PREVIEW,
    SESSION_PREVIEW_CHARS,
    AncestryUploadRecord,
    ConversationMessage,
    SessionSummary,
    UserPreferences,
)


class InMemoryChatStore(ChatStore):

    def __init__(self) -> None:
        self._messages: dict[tuple[str, str], list[ConversationMessage]] = defaultdict(list)
        self._ancestry: dict[tuple[str, str], list[AncestryUploadRecord]] = defaultdict(list)
        self._usage: dict[tuple[str, date], int] = {}
        self._subscriptions: dict[str, datetime | None] = {}
        self._preferences: dict[str, UserPreferences] = {}
        self._lock = asyncio.Lock()

    # -- helpers for seeding (dev / tests) ---------------------------------

    def set_subscription(self, user_id: str, active: bool = True, expires_at: datetime | None = None) -> None:
        if active:
            self._subscriptions[user_id] = expires_at
        else:
            self._subscriptions.pop(user_id, None)

    # -- ChatStore ---------------------------------------------------------

    async def insert_message(self, message: ConversationMessage) -> None:
        self._messages[(message.user_id, message.session_id)].append(message)

    async def recent_messages(
        self, user_id: str, session_id: str, limit: int
    ) -> list[ConversationMessage]:
        if limit <= 0:
            return []
        # sorted() is stable: equal timestamps keep insertion order
        rows = sorted(self._messages.get((user_id, session_id), []), key=lambda m: m.timestamp)
        return rows[-limit:]

    async def list_sessions(self, user_id: str) -> list[SessionSummary]:
        session_ids = {
            sid
            for table in (self._messages, self._ancestry)
            for (uid, sid), rows in table.items()
            if uid == user_id and rows
        }

        summaries = []
        for session_id in session_ids:
            messages = sorted(self._messages.get((user_id, session_id), []), key=lambda m: m.timestamp)
            uploads = self._ancestry.get((user_id, session_id), [])
            times = [m.timestamp for m in messages] + [u.uploaded_at for u in uploads]
            summaries.append(SessionSummary(
                session_id=session_id,
                preview=(
                    messages[0].content[:SESSION_PREVIEW_CHARS] if messages else EMPTY_SESSION_PREVIEW
                ),
                message_count=len(messages),
                has_ancestry=bool(uploads),
                created_at=min(times),
                last_message_at=max(times),
            ))
        summaries.sort(key=lambda s: s.last_message_at, reverse=True)
        return summaries

    async def delete_session(self, user_id: str, session_id: str) -> int:
        removed = self._messages.pop((user_id, session_id), [])
        self._ancestry.pop((user_id, session_id), None)
        return len(removed)

    async def save_ancestry(
        self, user_id: str, session_id: str, profile: AncestryProfile, uploaded_at: datetime
    ) -> None:
        # Stored without parser warnings, like the SQL row
        self._ancestry[(user_id, session_id)].append(AncestryUploadRecord(
            id=str(uuid.uuid4()),
            session_id=session_id,
            profile=replace(profile, warnings=()),
            uploaded_at=uploaded_at,
        ))

    async def latest_ancestry(self, user_id: str, session_id: str) -> AncestryProfile | None:
        uploads = self._ancestry.get((user_id, session_id))
        if not uploads:
            return None
        return max(uploads, key=lambda u: u.uploaded_at).profile

    async def list_ancestry_uploads(
        self, user_id: str, session_id: str | None = None
    ) -> list[AncestryUploadRecord]:
        uploads = [
            upload
            for (uid, sid), rows in self._ancestry.items()
            if uid == user_id and (session_id is None or sid == session_id)
            for upload in rows
        ]
        return sorted(uploads, key=lambda u: u.uploaded_at, reverse=True)

    async def delete_ancestry_upload(self, user_id: str, upload_id: str) -> bool:
        for (uid, _), rows in self._ancestry.items():
            if uid != user_id:
                continue
            for upload in rows:
                if upload.id == upload_id:
                    rows.remove(upload)
                    return True
        return False

    async def count_ancestry_uploads_since(self, user_id: str, since: datetime) -> int:
        return sum(
            1
            for (uid, _), uploads in self._ancestry.items()
            if uid == user_id
            for upload in uploads
            if upload.uploaded_at >= since
        )

    async def messages_today(self, user_id: str, day: date) -> int:
        return self._usage.get((user_id, day), 0)

    async def try_increment_daily_usage(
        self, user_id: str, day: date, limit: int | None
    ) -> int | None:
        async with self._lock:
            current = self._usage.get((user_id, day), 0)
            if limit is not None and current >= limit:
                return None
            self._usage[(user_id, day)] = current + 1
            return current + 1

    async def has_active_subscription(self, user_id: str, now: datetime) -> bool:
        if user_id not in self._subscriptions:
            return False
        expires_at = self._subscriptions[user_id]
        return expires_at is None or expires_at > now

    async def get_preferences(self, user_id: str) -> UserPreferences:
        stored = self._preferences.get(user_id)
        if stored is None:
            return UserPreferences()
        return replace(
            stored,
            interests=list(stored.interests),
            previous_destinations=list(stored.previous_destinations),
        )

    async def save_preferences(self, user_id: str, preferences: UserPreferences) -> None:
        self._preferences[user_id] = replace(
            preferences,
            interests=list(preferences.interests),
            previous_destinations=list(preferences.previous_destinations),
        )
