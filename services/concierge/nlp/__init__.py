"""
Intent and preference extraction for chat messages.

No database access in this package: pure text-in / results-out.
"""

from services.concierge.nlp.intent import IntentResult, classify_intent, extract_destination
from services.concierge.nlp.preference_extractor import extract_preferences

__all__ = [
    "IntentResult",
    "classify_intent",
    "extract_destination",
    "extract_preferences",
]
