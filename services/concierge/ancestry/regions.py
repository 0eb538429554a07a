"""
Static region -> country lookup for ancestry labels.

REGION_TABLE is scanned top to bottom and the FIRST key that appears as a
substring of the lower-cased label wins. Order matters where keys
overlap: "Sub-Saharan African" contains "african", which is listed before
"sub-saharan", so it maps to the generic African countries. Unmatched
labels map to themselves.

Country names are in Portuguese, the language the assistant answers in.
"""

from __future__ import annotations

REGION_TABLE: tuple[tuple[str, tuple[str, ...]], ...] = (
    # Iberia
    ("ibérica", ("Portugal", "Espanha")),
    ("iberian", ("Portugal", "Espanha")),
    ("spanish", ("Espanha",)),
    ("portuguese", ("Portugal",)),
    ("portuguesa", ("Portugal",)),
    ("espanhola", ("Espanha",)),

    # Italy
    ("italiana", ("Itália",)),
    ("italian", ("Itália",)),
    ("italy", ("Itália",)),

    # Germanic
    ("alemã", ("Alemanha",)),
    ("german", ("Alemanha",)),
    ("deutschland", ("Alemanha",)),

    # France
    ("francesa", ("França",)),
    ("french", ("França",)),
    ("france", ("França",)),

    # Africa
    ("africana", ("Nigéria", "Gana", "Angola")),
    ("african", ("Nigéria", "Gana", "Angola")),
    ("sub-saharan", ("Nigéria", "Gana", "Senegal")),
    ("west africa", ("Nigéria", "Gana", "Senegal")),

    # Indigenous Americas
    ("indígena", ("Brasil", "México", "Peru")),
    ("indigenous", ("Brasil", "México", "Peru")),
    ("native american", ("Brasil", "México", "Estados Unidos")),
    ("ameríndio", ("Brasil", "México", "Peru")),

    # British Isles
    ("irlandesa", ("Irlanda",)),
    ("irish", ("Irlanda",)),
    ("inglesa", ("Inglaterra",)),
    ("english", ("Inglaterra",)),
    ("escocesa", ("Escócia",)),
    ("scottish", ("Escócia",)),

    # Middle East
    ("judaica", ("Israel",)),
    ("jewish", ("Israel",)),
    ("árabe", ("Líbano", "Síria")),
    ("arab", ("Líbano", "Síria")),

    # Asia
    ("asiática", ("China", "Japão")),
    ("asian", ("China", "Japão")),
)


def map_region_to_countries(label: str) -> list[str]:
    """Countries for an ancestry label; `[label]` when nothing matches."""
    lowered = label.lower()
    for key, countries in REGION_TABLE:
        if key in lowered:
            return list(countries)
    return [label]
