"""
Ancestry data model.

AncestryProfile is immutable once parsed. A later upload in the same session
supersedes it; profiles are never merged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

VALID_PROVIDERS = ("genera", "myheritage", "23andme", "unknown")


@dataclass(frozen=True)
class AncestryRecord:
    region: str
    percentage: float
    countries: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "region": self.region,
            "percentage": self.percentage,
            "countries": list(self.countries),
        }


@dataclass(frozen=True)
class AncestryProfile:
    """
    ancestry:       records sorted by percentage descending
    ethnic_groups:  ordered, de-duplicated labels
    test_provider:  one of VALID_PROVIDERS
    confidence:     0.0-1.0 extraction quality heuristic
    warnings:       human-readable notes from the parser (not persisted)
    """
    ancestry: tuple[AncestryRecord, ...]
    ethnic_groups: tuple[str, ...] = ()
    test_provider: str = "unknown"
    confidence: float = 0.0
    warnings: tuple[str, ...] = field(default=(), compare=False)

    @property
    def top_region(self) -> str | None:
        return self.ancestry[0].region if self.ancestry else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ancestry": [r.to_dict() for r in self.ancestry],
            "ethnicGroups": list(self.ethnic_groups),
            "testProvider": self.test_provider,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AncestryProfile:
        records = [
            AncestryRecord(
                region=r["region"],
                percentage=float(r["percentage"]),
                countries=tuple(r.get("countries") or [r["region"]]),
            )
            for r in data.get("ancestry", [])
        ]
        records.sort(key=lambda r: r.percentage, reverse=True)
        provider = data.get("testProvider", "unknown")
        if provider not in VALID_PROVIDERS:
            provider = "unknown"
        return cls(
            ancestry=tuple(records),
            ethnic_groups=tuple(data.get("ethnicGroups", [])),
            test_provider=provider,
            confidence=float(data.get("confidence", 0.0)),
        )
