"""
Rule-based intent classification for chat messages.

The result is metadata only: it is attached to the response and logged, but
never changes which prompt template is used.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from services.concierge.nlp.patterns import (
    DEFAULT_TRAVELERS,
    DESTINATION_GAZETTEER,
    GENERAL_CHAT_CONFIDENCE,
    GENERAL_CHAT_INTENT,
    INTENT_BUDGET_PATTERN,
    INTENT_RULES,
    TRAVELERS_PATTERN,
)


@dataclass
class IntentResult:
    intent: str
    confidence: float
    entities: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent,
            "confidence": self.confidence,
            "entities": dict(self.entities),
        }


def extract_destination(message: str) -> str | None:
    lowered = message.lower()
    for name in DESTINATION_GAZETTEER:
        if name.lower() in lowered:
            return name
    return None


def _extract_budget(lowered: str) -> str | None:
    match = INTENT_BUDGET_PATTERN.search(lowered)
    return match.group(1) if match else None


def _extract_travelers(lowered: str) -> int:
    match = TRAVELERS_PATTERN.search(lowered)
    return int(match.group(1)) if match else DEFAULT_TRAVELERS


def _extract_entities(names: tuple[str, ...], message: str) -> dict[str, Any]:
    lowered = message.lower()
    entities: dict[str, Any] = {}
    if "budget" in names:
        budget = _extract_budget(lowered)
        if budget is not None:
            entities["budget"] = budget
    if "travelers" in names:
        entities["travelers"] = _extract_travelers(lowered)
    if "destination" in names:
        destination = extract_destination(message)
        if destination is not None:
            entities["destination"] = destination
    return entities


def classify_intent(message: str) -> IntentResult:
    """
    Walk INTENT_RULES in order; the first rule with a keyword in the message
    wins. Falls back to general_chat.
    """
    lowered = message.lower()
    for rule in INTENT_RULES:
        if any(keyword in lowered for keyword in rule["keywords"]):
            return IntentResult(
                intent=rule["intent"],
                confidence=rule["confidence"],
                entities=_extract_entities(rule["entities"], message),
            )
    return IntentResult(intent=GENERAL_CHAT_INTENT, confidence=GENERAL_CHAT_CONFIDENCE)
