"""
Rule-based preference extraction from free-text chat messages.

DB-free: accepts raw text, returns a UserPreferences holding only the fields
it found. Callers merge the result into the persisted preferences.
"""

from __future__ import annotations

import logging

from services.concierge.conversation.types import UserPreferences
from services.concierge.nlp.patterns import (
    INTEREST_KEYWORDS,
    PREFERENCE_BUDGET_PATTERN,
    PREVIOUS_DESTINATION_PATTERN,
    TRAVEL_STYLE_KEYWORDS,
)

logger = logging.getLogger(__name__)


def _match_budget(lowered: str) -> str | None:
    match = PREFERENCE_BUDGET_PATTERN.search(lowered)
    if match is None:
        return None
    return f"{match.group(1)} {match.group(2)}"


def _match_travel_style(lowered: str) -> str | None:
    for style, keywords in TRAVEL_STYLE_KEYWORDS:
        if any(k in lowered for k in keywords):
            return style
    return None


def _match_interests(lowered: str) -> list[str]:
    return [
        interest
        for interest, keywords in INTEREST_KEYWORDS
        if any(k in lowered for k in keywords)
    ]


def _match_previous_destinations(text: str) -> list[str]:
    destinations: list[str] = []
    for match in PREVIOUS_DESTINATION_PATTERN.finditer(text):
        place = match.group(1).strip()
        if place and place not in destinations:
            destinations.append(place)
    return destinations


def extract_preferences(text: str) -> UserPreferences:
    if not text or not text.strip():
        return UserPreferences()

    lowered = text.lower()
    prefs = UserPreferences(
        budget=_match_budget(lowered),
        travel_style=_match_travel_style(lowered),
        interests=_match_interests(lowered),
        previous_destinations=_match_previous_destinations(text),
    )
    if not prefs.is_empty():
        logger.debug("Preferences extracted: %s", prefs.to_dict())
    return prefs
