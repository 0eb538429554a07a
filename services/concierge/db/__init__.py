"""
SQLAlchemy async database module.

Re-exports engine and model utilities for the concierge service.
"""

from services.concierge.db.engine import create_engine, create_session_factory
from services.concierge.db.models import (
    Base,
    AncestryUpload,
    ChatMessage,
    DailyUsage,
    UserPreference,
    UserSubscription,
)

__all__ = [
    "create_engine",
    "create_session_factory",
    "Base",
    "AncestryUpload",
    "ChatMessage",
    "DailyUsage",
    "UserPreference",
    "UserSubscription",
]
