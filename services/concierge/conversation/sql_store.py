"""
PostgreSQL ChatStore on SQLAlchemy async + asyncpg.

One short-lived session per operation, taken from the app-wide
async_sessionmaker. SQLAlchemyError is logged and re-raised as
PersistenceError so callers never see driver exceptions.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.concierge.ancestry.types import AncestryProfile
from services.concierge.conversation.store import ChatStore
from services.concierge.conversation.types import (
    EMPTY_SESSION_PREVIEW,
    SESSION_PREVIEW_CHARS,
    AgentMode,
    AncestryUploadRecord,
    ConversationMessage,
    SessionSummary,
    UserPreferences,
)
from services.concierge.db.models import (
    AncestryUpload,
    ChatMessage,
    DailyUsage,
    UserPreference,
    UserSubscription,
)
from services.concierge.errors import PersistenceError

logger = logging.getLogger(__name__)


def _row_to_message(row: ChatMessage) -> ConversationMessage:
    return ConversationMessage(
        id=row.id,
        session_id=row.sessionId,
        user_id=row.userId,
        role=row.role,
        content=row.content,
        agent_mode=AgentMode(row.agentMode),
        timestamp=row.createdAt,
        metadata=row.meta,
    )


def _row_to_upload(row: AncestryUpload) -> AncestryUploadRecord:
    return AncestryUploadRecord(
        id=row.id,
        session_id=row.sessionId,
        profile=AncestryProfile.from_dict(row.ancestryData),
        uploaded_at=row.uploadedAt,
    )


class SqlChatStore(ChatStore):

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("chat_store %s failed: %s", operation, exc)
            raise PersistenceError() from exc

    async def insert_message(self, message: ConversationMessage) -> None:
        async with self._session("insert_message") as session:
            session.add(ChatMessage(
                id=message.id,
                sessionId=message.session_id,
                userId=message.user_id,
                role=message.role,
                content=message.content,
                agentMode=message.agent_mode.value,
                meta=message.metadata,
                createdAt=message.timestamp,
            ))
            await session.commit()

    async def recent_messages(
        self, user_id: str, session_id: str, limit: int
    ) -> list[ConversationMessage]:
        if limit <= 0:
            return []
        stmt = (
            select(ChatMessage)
            .where(and_(ChatMessage.userId == user_id, ChatMessage.sessionId == session_id))
            .order_by(ChatMessage.createdAt.desc())
            .limit(limit)
        )
        async with self._session("recent_messages") as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [_row_to_message(r) for r in reversed(rows)]

    async def list_sessions(self, user_id: str) -> list[SessionSummary]:
        message_stats = (
            select(
                ChatMessage.sessionId,
                func.count(ChatMessage.id),
                func.min(ChatMessage.createdAt),
                func.max(ChatMessage.createdAt),
            )
            .where(ChatMessage.userId == user_id)
            .group_by(ChatMessage.sessionId)
        )
        # DISTINCT ON (sessionId) keeps the earliest message per session
        first_messages = (
            select(ChatMessage.sessionId, ChatMessage.content)
            .where(ChatMessage.userId == user_id)
            .order_by(ChatMessage.sessionId, ChatMessage.createdAt.asc())
            .distinct(ChatMessage.sessionId)
        )
        upload_stats = (
            select(
                AncestryUpload.sessionId,
                func.min(AncestryUpload.uploadedAt),
                func.max(AncestryUpload.uploadedAt),
            )
            .where(AncestryUpload.userId == user_id)
            .group_by(AncestryUpload.sessionId)
        )
        async with self._session("list_sessions") as session:
            stats = {row[0]: row[1:] for row in (await session.execute(message_stats)).all()}
            previews = {row[0]: row[1] for row in (await session.execute(first_messages)).all()}
            uploads = {row[0]: row[1:] for row in (await session.execute(upload_stats)).all()}

        summaries = []
        for session_id in stats.keys() | uploads.keys():
            count, first_at, last_at = stats.get(session_id, (0, None, None))
            times = [t for t in (first_at, last_at, *uploads.get(session_id, ())) if t is not None]
            preview = previews.get(session_id)
            summaries.append(SessionSummary(
                session_id=session_id,
                preview=preview[:SESSION_PREVIEW_CHARS] if preview else EMPTY_SESSION_PREVIEW,
                message_count=int(count),
                has_ancestry=session_id in uploads,
                created_at=min(times),
                last_message_at=max(times),
            ))
        summaries.sort(key=lambda s: s.last_message_at, reverse=True)
        return summaries

    async def delete_session(self, user_id: str, session_id: str) -> int:
        async with self._session("delete_session") as session:
            result = await session.execute(
                delete(ChatMessage).where(
                    and_(ChatMessage.userId == user_id, ChatMessage.sessionId == session_id)
                )
            )
            await session.execute(
                delete(AncestryUpload).where(
                    and_(AncestryUpload.userId == user_id, AncestryUpload.sessionId == session_id)
                )
            )
            await session.commit()
        return result.rowcount or 0

    async def save_ancestry(
        self, user_id: str, session_id: str, profile: AncestryProfile, uploaded_at: datetime
    ) -> None:
        async with self._session("save_ancestry") as session:
            session.add(AncestryUpload(
                userId=user_id,
                sessionId=session_id,
                ancestryData=profile.to_dict(),
                testProvider=profile.test_provider,
                confidence=profile.confidence,
                uploadedAt=uploaded_at,
            ))
            await session.commit()

    async def latest_ancestry(self, user_id: str, session_id: str) -> AncestryProfile | None:
        stmt = (
            select(AncestryUpload)
            .where(and_(AncestryUpload.userId == user_id, AncestryUpload.sessionId == session_id))
            .order_by(AncestryUpload.uploadedAt.desc())
            .limit(1)
        )
        async with self._session("latest_ancestry") as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
        if row is None:
            return None
        return AncestryProfile.from_dict(row.ancestryData)

    async def list_ancestry_uploads(
        self, user_id: str, session_id: str | None = None
    ) -> list[AncestryUploadRecord]:
        stmt = select(AncestryUpload).where(AncestryUpload.userId == user_id)
        if session_id is not None:
            stmt = stmt.where(AncestryUpload.sessionId == session_id)
        stmt = stmt.order_by(AncestryUpload.uploadedAt.desc())
        async with self._session("list_ancestry_uploads") as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [_row_to_upload(r) for r in rows]

    async def delete_ancestry_upload(self, user_id: str, upload_id: str) -> bool:
        stmt = delete(AncestryUpload).where(
            and_(AncestryUpload.id == upload_id, AncestryUpload.userId == user_id)
        )
        async with self._session("delete_ancestry_upload") as session:
            result = await session.execute(stmt)
            await session.commit()
        return bool(result.rowcount)

    async def count_ancestry_uploads_since(self, user_id: str, since: datetime) -> int:
        stmt = select(func.count(AncestryUpload.id)).where(
            and_(AncestryUpload.userId == user_id, AncestryUpload.uploadedAt >= since)
        )
        async with self._session("count_ancestry_uploads") as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def messages_today(self, user_id: str, day: date) -> int:
        stmt = select(DailyUsage.messageCount).where(
            and_(DailyUsage.userId == user_id, DailyUsage.day == day)
        )
        async with self._session("messages_today") as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def try_increment_daily_usage(
        self, user_id: str, day: date, limit: int | None
    ) -> int | None:
        if limit is not None and limit <= 0:
            return None

        # Atomic check-and-increment: the conditional upsert only touches the
        # row while it is below the limit, so concurrent claims cannot overshoot.
        stmt = pg_insert(DailyUsage).values(userId=user_id, day=day, messageCount=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DailyUsage.userId, DailyUsage.day],
            set_={"messageCount": DailyUsage.messageCount + 1},
            where=(DailyUsage.messageCount < limit) if limit is not None else None,
        ).returning(DailyUsage.messageCount)

        async with self._session("try_increment_daily_usage") as session:
            result = await session.execute(stmt)
            new_count = result.scalar()
            await session.commit()
        return int(new_count) if new_count is not None else None

    async def has_active_subscription(self, user_id: str, now: datetime) -> bool:
        stmt = select(func.count(UserSubscription.id)).where(
            and_(
                UserSubscription.userId == user_id,
                UserSubscription.isActive.is_(True),
                or_(UserSubscription.expiresAt.is_(None), UserSubscription.expiresAt > now),
            )
        )
        async with self._session("has_active_subscription") as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0) > 0

    async def get_preferences(self, user_id: str) -> UserPreferences:
        stmt = select(UserPreference).where(UserPreference.userId == user_id)
        async with self._session("get_preferences") as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
        if row is None:
            return UserPreferences()
        return UserPreferences(
            budget=row.budget,
            travel_style=row.travelStyle,
            interests=list(row.interests or []),
            previous_destinations=list(row.previousDestinations or []),
        )

    async def save_preferences(self, user_id: str, preferences: UserPreferences) -> None:
        now = datetime.now().astimezone()
        values = {
            "budget": preferences.budget,
            "travelStyle": preferences.travel_style,
            "interests": list(preferences.interests),
            "previousDestinations": list(preferences.previous_destinations),
            "updatedAt": now,
        }
        stmt = pg_insert(UserPreference).values(userId=user_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=[UserPreference.userId], set_=values)
        async with self._session("save_preferences") as session:
            await session.execute(stmt)
            await session.commit()
