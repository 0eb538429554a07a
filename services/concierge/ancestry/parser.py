"""
Ancestry report text parser.

Format-agnostic: takes plain text already extracted from an uploaded report
(Genera, MyHeritage, 23andMe or anything similar) and returns an
AncestryProfile. Pure function, no I/O.

Pipeline:
  1. Length gate (EmptyOrTooShort)
  2. Provider identification (feeds the confidence score)
  3. Two regex passes: "<label>: 45.2%" and "45.2% <label>"
  4. Label cleanup, range/length filtering, first-wins dedup by lower-cased label
  5. Region -> country mapping
  6. Ethnic group line scan
  7. Confidence score + warnings
"""

from __future__ import annotations

import logging
import re

from services.concierge.ancestry.regions import map_region_to_countries
from services.concierge.ancestry.types import AncestryProfile, AncestryRecord
from services.concierge.errors import EmptyOrTooShort, NoAncestryExtracted

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 50
LOW_CONFIDENCE_THRESHOLD = 0.3

# Labels stay on one line: letters (Latin-1 accents included), spaces, tabs, "&"
_LABEL = r"[A-Za-zÀ-ÿ &\t]+"
_PERCENT = r"\d+(?:\.\d+)?"

_LABEL_FIRST = re.compile(rf"({_LABEL})[ \t:]+({_PERCENT})\s*%")
_PERCENT_FIRST = re.compile(rf"({_PERCENT})\s*%[ \t]*({_LABEL})")

_ETHNIC_LINE = re.compile(
    r"(?:grupos?\s+étnicos?|ethnic\s+groups?|etnia|ethnicity)[ \t]*:\s*([A-Za-zÀ-ÿ ,\t]+)",
    re.IGNORECASE,
)

# (provider, substrings) checked in order
_PROVIDER_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("genera", ("genera",)),
    ("myheritage", ("myheritage", "my heritage")),
    ("23andme", ("23andme", "23 and me")),
)

_EDGE_PUNCT = re.compile(r"^[:\-\s]+|[:\-\s]+$")
_WHITESPACE = re.compile(r"\s+")
_GENERIC_WORDS = (
    re.compile(r"peninsula", re.IGNORECASE),
    re.compile(r"europe", re.IGNORECASE),
)


def identify_provider(text: str) -> str:
    lowered = text.lower()
    for provider, markers in _PROVIDER_MARKERS:
        if any(m in lowered for m in markers):
            return provider
    return "unknown"


def clean_region_label(label: str) -> str:
    """Strip edge punctuation, collapse whitespace, drop generic geography words."""
    cleaned = _EDGE_PUNCT.sub("", label)
    cleaned = _WHITESPACE.sub(" ", cleaned)
    for pattern in _GENERIC_WORDS:
        cleaned = pattern.sub("", cleaned, count=1)
    return cleaned.strip()


def _iter_matches(text: str):
    """Yield (raw_label, percentage) from both passes, label-first pass first."""
    for match in _LABEL_FIRST.finditer(text):
        yield match.group(1), float(match.group(2))
    for match in _PERCENT_FIRST.finditer(text):
        yield match.group(2), float(match.group(1))


def extract_ancestry_records(text: str) -> list[AncestryRecord]:
    records: list[AncestryRecord] = []
    seen: set[str] = set()

    for raw_label, percentage in _iter_matches(text):
        region = clean_region_label(raw_label)
        if not (0 < percentage <= 100) or len(region) <= 2:
            continue
        key = region.lower()
        if key in seen:
            continue
        seen.add(key)
        records.append(AncestryRecord(
            region=region,
            percentage=percentage,
            countries=tuple(map_region_to_countries(region)),
        ))

    records.sort(key=lambda r: r.percentage, reverse=True)
    return records


def extract_ethnic_groups(text: str) -> list[str]:
    match = _ETHNIC_LINE.search(text)
    if match is None:
        return []
    groups: list[str] = []
    for part in match.group(1).split(","):
        group = part.strip()
        if len(group) >= 3 and group not in groups:
            groups.append(group)
    return groups


def calculate_confidence(
    records: list[AncestryRecord] | tuple[AncestryRecord, ...],
    ethnic_groups: list[str] | tuple[str, ...],
    provider: str,
) -> float:
    score = 0.0
    if records:
        score += 0.4
        total = sum(r.percentage for r in records)
        if 90 <= total <= 110:
            score += 0.3
        if len(records) >= 3:
            score += 0.1
    if ethnic_groups:
        score += 0.1
    if provider != "unknown":
        score += 0.1
    return round(min(score, 1.0), 2)


def parse_ancestry_text(raw_text: str, min_length: int = MIN_TEXT_LENGTH) -> AncestryProfile:
    """
    Parse an ancestry report into an AncestryProfile.

    Raises:
        EmptyOrTooShort:      text empty or shorter than `min_length`
        NoAncestryExtracted:  no valid "<label> <pct>%" pair found
    """
    if not raw_text or len(raw_text.strip()) < min_length:
        raise EmptyOrTooShort(
            "O documento parece estar vazio ou não contém dados de ancestralidade."
        )

    provider = identify_provider(raw_text)
    records = extract_ancestry_records(raw_text)
    if not records:
        raise NoAncestryExtracted(
            "Não foi possível extrair dados de ancestralidade do documento."
        )

    ethnic_groups = extract_ethnic_groups(raw_text)
    confidence = calculate_confidence(records, ethnic_groups, provider)

    warnings: list[str] = []
    if confidence < LOW_CONFIDENCE_THRESHOLD:
        warnings.append(
            "Baixa confiança na extração dos dados. Verifique se o documento contém dados de ancestralidade."
        )
    if provider == "unknown":
        warnings.append("Provedor do teste não identificado automaticamente.")

    logger.info(
        "Ancestry parsed: provider=%s regions=%d ethnic_groups=%d confidence=%.2f",
        provider, len(records), len(ethnic_groups), confidence,
    )

    return AncestryProfile(
        ancestry=tuple(records),
        ethnic_groups=tuple(ethnic_groups),
        test_provider=provider,
        confidence=confidence,
        warnings=tuple(warnings),
    )


def summarize_profile(profile: AncestryProfile, top_n: int = 5) -> str:
    """
    Render the ancestry block used in prompts and upload responses.

    Lines are "region: pct% (country, country)" for the top_n records by
    percentage, then ethnic groups and the priority countries of the top 3
    regions.
    """
    ranked = sorted(profile.ancestry, key=lambda r: r.percentage, reverse=True)
    lines = ["Composição ancestral:"]
    for record in ranked[:top_n]:
        lines.append(
            f"- {record.region}: {_format_pct(record.percentage)}% ({', '.join(record.countries)})"
        )

    if profile.ethnic_groups:
        lines.append(f"Grupos étnicos: {', '.join(profile.ethnic_groups)}")

    priority: list[str] = []
    for record in ranked[:3]:
        for country in record.countries:
            if country not in priority:
                priority.append(country)
    if priority:
        lines.append(f"Países prioritários: {', '.join(priority[:5])}")

    return "\n".join(lines)


def _format_pct(value: float) -> str:
    """45.2 -> '45.2', 30.0 -> '30'."""
    return f"{value:g}"
