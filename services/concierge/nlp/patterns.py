"""
Rule tables for intent classification and preference extraction.

INTENT_RULES is ORDERED: the classifier walks it top to bottom and the first
rule with a keyword present in the lower-cased message wins. A message with
both "planejar" and "quanto custa" is therefore `planning`. Confidence is a
fixed constant per rule, not computed.

Each IntentRule:
  - "intent":     intent label
  - "keywords":   substrings checked against the lower-cased message
  - "confidence": fixed score assigned when the rule fires
  - "entities":   names of entity extractors to run for this rule

General chat is the implicit last rule (GENERAL_CHAT_CONFIDENCE).
"""

from __future__ import annotations

import re
from typing import TypedDict


class IntentRule(TypedDict):
    intent: str
    keywords: tuple[str, ...]
    confidence: float
    entities: tuple[str, ...]


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        intent="planning",
        keywords=("planejar", "roteiro", "viagem"),
        confidence=0.9,
        entities=("budget", "travelers", "destination"),
    ),
    IntentRule(
        intent="budget_question",
        keywords=("quanto custa", "preço", "orçamento"),
        confidence=0.8,
        entities=("destination",),
    ),
    IntentRule(
        intent="destination_info",
        keywords=("me fale sobre", "turismo", "sobre"),
        confidence=0.7,
        entities=("destination",),
    ),
    IntentRule(
        intent="modify_itinerary",
        keywords=("alterar", "mudar", "modificar"),
        confidence=0.6,
        entities=(),
    ),
)

GENERAL_CHAT_INTENT = "general_chat"
GENERAL_CHAT_CONFIDENCE = 0.3

VALID_INTENTS: frozenset[str] = frozenset(
    [r["intent"] for r in INTENT_RULES] + [GENERAL_CHAT_INTENT]
)

# ---------------------------------------------------------------------------
# Entity patterns (run on the lower-cased message)
# ---------------------------------------------------------------------------

INTENT_BUDGET_PATTERN = re.compile(r"(\d+)\s*(mil|reais|r\$)")
TRAVELERS_PATTERN = re.compile(r"(\d+)\s*(pessoas?|viajantes?)")
DEFAULT_TRAVELERS = 1

# Known-weak gazetteer: anything outside it yields no destination.
# First case-insensitive substring match wins, so order matters.
DESTINATION_GAZETTEER: tuple[str, ...] = (
    "Portugal", "Espanha", "Itália", "Alemanha", "França", "Brasil",
    "Argentina", "Chile", "Peru", "México", "Japão", "China", "Tailândia",
    "Lisboa", "Madrid", "Roma", "Paris", "Londres", "Nova York", "Tóquio",
)

# ---------------------------------------------------------------------------
# Preference patterns
# ---------------------------------------------------------------------------

# Distinct from the intent budget pattern: needs an explicit "orçamento" label.
PREFERENCE_BUDGET_PATTERN = re.compile(r"orçamento.*?(\d+(?:\.\d+)?)\s*(mil|reais|r\$)")

# First style whose keyword set hits wins
TRAVEL_STYLE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("relaxante", ("relaxante", "tranquil")),
    ("aventura", ("aventura", "radical")),
    ("cultural", ("cultural", "museu", "história")),
    ("gastronômico", ("gastronomi", "comida")),
)

INTEREST_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("praias", ("praia",)),
    ("montanhas", ("montanha",)),
    ("cidades", ("cidade",)),
    ("natureza", ("natureza",)),
    ("vida noturna", ("vida noturna", "festa", "balada")),
)

# Runs on the original message (IGNORECASE) so the captured place keeps its casing
PREVIOUS_DESTINATION_PATTERN = re.compile(
    r"já\s+(?:visitei|fui|conheço)\s+([^.!?]+)", re.IGNORECASE
)
