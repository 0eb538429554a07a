"""
Ancestry report ingestion.

Text-in / profile-out. No database access in this package; callers persist
the resulting AncestryProfile.
"""

from services.concierge.ancestry.extraction import (
    AncestryDocument,
    extract_plain_text,
    validate_document,
)
from services.concierge.ancestry.parser import parse_ancestry_text, summarize_profile
from services.concierge.ancestry.regions import map_region_to_countries
from services.concierge.ancestry.types import AncestryProfile, AncestryRecord

__all__ = [
    "AncestryDocument",
    "AncestryProfile",
    "AncestryRecord",
    "extract_plain_text",
    "map_region_to_countries",
    "parse_ancestry_text",
    "summarize_profile",
    "validate_document",
]
