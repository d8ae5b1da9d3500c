"""
Compatibility checks between categorical trait values.
"""

from typing import Optional

from ..reid_types import UNKNOWN

COLOR_EQUIVALENCE_GROUPS = (
    frozenset({"navy", "dark_blue", "blue"}),
    frozenset({"dark_blonde", "blonde", "light_brown"}),
)


def _has_value(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(value) and value != UNKNOWN


def colors_equivalent(a: Optional[str], b: Optional[str], lighting_uncertainty: float = 0) -> bool:
    """
    Decide whether two normalised color tokens describe the same color.

    Unknown or empty values never match. Colors in the same equivalence group
    match whatever the lighting uncertainty; the parameter is accepted so the
    gate can be tightened later but it does not currently restrict anything.
    """
    if not _has_value(a) or not _has_value(b):
        return False
    if a == b:
        return True
    return any(a in group and b in group for group in COLOR_EQUIVALENCE_GROUPS)


def token_substring_match(short_text: Optional[str], long_text: Optional[str]) -> bool:
    """True when any whitespace token of ``short_text`` occurs inside ``long_text``."""
    if not _has_value(short_text) or not _has_value(long_text):
        return False
    haystack = long_text.lower()
    return any(token in haystack for token in short_text.lower().split())
