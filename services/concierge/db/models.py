"""
SQLAlchemy DeclarativeBase models for the concierge tables.

Column names use camelCase to match the PostgreSQL column names shared with
the web app. Python attribute names follow the columns, except where a
column name collides with DeclarativeBase reserved attributes ("metadata").
"""

import uuid as _uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, Float, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


AgentModeEnum = Enum("DNA_SPECIALIST", "TRADITIONAL_PLANNER", name="AgentMode", create_type=False)
MessageRoleEnum = Enum("user", "assistant", name="MessageRole", create_type=False)


class Base(DeclarativeBase):
    pass


class ChatMessage(Base):
    """Append-only conversation log. Rows are never updated."""

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    sessionId: Mapped[str] = mapped_column(String, index=True)
    userId: Mapped[str] = mapped_column(String, index=True)
    role: Mapped[str] = mapped_column(MessageRoleEnum)
    content: Mapped[str] = mapped_column(Text)
    agentMode: Mapped[str] = mapped_column(AgentModeEnum)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AncestryUpload(Base):
    """One row per successful parse. The latest row for a (user, session) pair wins."""

    __tablename__ = "ancestry_uploads"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    userId: Mapped[str] = mapped_column(String, index=True)
    sessionId: Mapped[str] = mapped_column(String, index=True)
    ancestryData: Mapped[dict] = mapped_column(JSON)
    testProvider: Mapped[str] = mapped_column(String, default="unknown")
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    uploadedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    userId: Mapped[str] = mapped_column(String, index=True)
    isActive: Mapped[bool] = mapped_column(Boolean, default=False)
    expiresAt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class UserPreference(Base):
    __tablename__ = "user_preferences"

    userId: Mapped[str] = mapped_column(String, primary_key=True)
    budget: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    travelStyle: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    interests: Mapped[list] = mapped_column(JSON, default=list)
    previousDestinations: Mapped[list] = mapped_column(JSON, default=list)
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class DailyUsage(Base):
    """Per-user per-day count of user turns. Incremented atomically, never decremented."""

    __tablename__ = "daily_usage"

    userId: Mapped[str] = mapped_column(String, primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    messageCount: Mapped[int] = mapped_column(Integer, default=0)
