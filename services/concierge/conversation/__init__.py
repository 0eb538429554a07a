"""
Conversation context, quota and persistence.
"""

from services.concierge.conversation.context_manager import ContextManager
from services.concierge.conversation.memory_store import InMemoryChatStore
from services.concierge.conversation.store import ChatStore
from services.concierge.conversation.types import (
    AgentMode,
    ConversationContext,
    ConversationMessage,
    QuotaDecision,
    UsageSnapshot,
    UserPreferences,
)

__all__ = [
    "AgentMode",
    "ChatStore",
    "ContextManager",
    "ConversationContext",
    "ConversationMessage",
    "InMemoryChatStore",
    "QuotaDecision",
    "UsageSnapshot",
    "UserPreferences",
]
