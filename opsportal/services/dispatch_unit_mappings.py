"""Unit of measure lookup for dispatch items.

Most kitchen items ship by weight. The items below ship by count, box or
pack instead. Matching is case-insensitive: an exact name match first, then
the first pattern contained in the name.
"""
from typing import Dict, List, Optional, Tuple

from opsportal.config import settings


ITEM_UNIT_MAPPINGS: Dict[str, str] = {
    "cling flim": "box",
    "cling film": "box",
    "gloves": "box",
    "maxi roll": "pack",
    "garbage bag": "kg",
    "waffle": "unit",
    "yorkshire pudding": "unit",
    "eggs unit": "unit",
    "ketchup sachet": "unit",
}

# Checked in order
PARTIAL_MATCH_PATTERNS: List[Tuple[str, str]] = [
    # Dough and loaf
    ("dough manakish", "unit"),
    ("dough pizza", "unit"),
    ("loaf english", "unit"),
    # Bread
    ("bread samoun", "unit"),
    ("bread, brioche", "unit"),
    ("bread, burger", "unit"),
    ("bread, ciabatta", "unit"),
    ("bread, club sandwich", "unit"),
    ("bread, tortilla", "unit"),
    # Beverages and dairy
    ("laban up", "unit"),
    ("milk 180", "unit"),
    ("milkshake", "unit"),
    ("fruit yogurt", "unit"),
    ("eggs unit", "unit"),
    # Packaging
    ("pckg,", "unit"),
    ("ketchup sachet", "unit"),
    # Bakery
    ("waffle", "unit"),
    ("yorkshire pudding", "unit"),
    # Consumables
    ("cling fl", "box"),
    ("gloves", "box"),
    ("maxi roll", "pack"),
    ("garbage bag", "kg"),
]


def _lookup(item_name: str) -> Optional[str]:
    normalized = (item_name or "").lower().strip()
    if not normalized:
        return None

    if normalized in ITEM_UNIT_MAPPINGS:
        return ITEM_UNIT_MAPPINGS[normalized]

    for pattern, unit in PARTIAL_MATCH_PATTERNS:
        if pattern in normalized:
            return unit

    return None


def get_item_unit(item_name: str, default_unit: Optional[str] = None) -> str:
    """Unit for an item name, falling back to the configured default (KG)."""
    unit = _lookup(item_name)
    if unit is not None:
        return unit
    return default_unit or settings.DISPATCH_DEFAULT_UNIT


def has_special_unit_mapping(item_name: str) -> bool:
    return _lookup(item_name) is not None
