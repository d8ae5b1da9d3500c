"""
Hard-veto gate for candidate groups.

A fatal mismatch excludes a group no matter how much positive evidence the
other traits accumulate. Every check requires both conflicting observations to
be confident: their confidence product must reach the configured threshold.
"""

from typing import Dict, Optional

from loguru import logger

from ..reid_config import get_section
from ..reid_types import AGE_BANDS, UNKNOWN, FatalMismatch, PersonDescription
from .clarity import compute_clarity
from .equivalence import colors_equivalent
from .metrics import confidence_product, round_half_up

LOWER_GARMENT = "lower_garment"
HAIR_COLOR = "hair_color"
GENDER = "gender"
AGE = "age"
MARK = "mark"

# Checked in this order; the first family with a keyword in the text wins.
LOWER_GARMENT_KEYWORDS = (
    ("full_length", ("pant", "pants", "jean", "jeans", "slack", "trouser", "trousers",
                     "chino", "chinos", "jogger", "joggers", "cargo")),
    ("skirt", ("skirt",)),
    ("shorts", ("short", "shorts", "bermuda")),
    ("one_piece", ("dress", "gown", "romper", "jumper", "onesie")),
)

LOWER_GARMENT_LABELS = {
    "full_length": "full-length pants/jeans",
    "skirt": "skirt",
    "shorts": "shorts",
    "one_piece": "dress/one-piece",
}

ABSENCE_KEYWORDS = ("no ", "none", "without", "absent")
PERMANENT_MARK_TYPES = ("tattoo", "scar")


def has_absence_keyword(text: Optional[str]) -> bool:
    if not text:
        return False
    return any(keyword in text for keyword in ABSENCE_KEYWORDS)


def age_adjacent(a: str, b: str) -> bool:
    """True when two age bands are exactly one step apart."""
    if a not in AGE_BANDS or b not in AGE_BANDS:
        return False
    return abs(AGE_BANDS.index(a) - AGE_BANDS.index(b)) == 1


def classify_lower_garment(description: PersonDescription) -> Optional[Dict]:
    """
    Family of the lower garment: a usable dress slot means one_piece, otherwise
    the trousers text is matched against keyword lists.
    """
    dress = description.garment("dress")
    if dress.usable:
        return {"family": "one_piece", "label": LOWER_GARMENT_LABELS["one_piece"], "confidence": dress.confidence}

    trousers = description.garment("trousers")
    if not trousers.usable:
        return None
    for family, keywords in LOWER_GARMENT_KEYWORDS:
        if any(keyword in trousers.description for keyword in keywords):
            return {"family": family, "label": LOWER_GARMENT_LABELS[family], "confidence": trousers.confidence}
    return None


def lower_families_contradict(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b or a == b:
        return False
    return "full_length" in (a, b)


def summarize_mark_state(description: PersonDescription, min_confidence: float) -> Dict[str, int]:
    """Strongest confidence of each tattoo/scar being present or explicitly absent."""
    summary = {f"{kind}_{state}": 0 for kind in PERMANENT_MARK_TYPES for state in ("present", "absent")}
    for mark in description.distinctive_marks:
        if mark.confidence is None or mark.confidence < min_confidence or mark.type not in PERMANENT_MARK_TYPES:
            continue
        if mark.description == UNKNOWN:
            continue
        state = "absent" if has_absence_keyword(mark.description) else "present"
        key = f"{mark.type}_{state}"
        summary[key] = max(summary[key], mark.confidence)
    return summary


def _fatal(kind: str, detail: str, pair: float) -> FatalMismatch:
    return FatalMismatch(type=kind, detail=detail, confidence_pair=round_half_up(pair, 2))


def _detect_mark_fatal(new: PersonDescription, canonical: PersonDescription, fatal_cfg: dict) -> Optional[FatalMismatch]:
    threshold = fatal_cfg["confidence_product_threshold"]
    new_marks = summarize_mark_state(new, fatal_cfg["mark_min_confidence"])
    group_marks = summarize_mark_state(canonical, fatal_cfg["mark_min_confidence"])
    for kind in PERMANENT_MARK_TYPES:
        pairs = (
            confidence_product(new_marks[f"{kind}_present"], group_marks[f"{kind}_absent"]),
            confidence_product(group_marks[f"{kind}_present"], new_marks[f"{kind}_absent"]),
        )
        for pair in pairs:
            if pair >= threshold:
                return _fatal(MARK, f"{kind} present vs explicitly absent", pair)
    return None


def detect_fatal_mismatch(
    new: PersonDescription,
    canonical: PersonDescription,
    config: Optional[dict] = None
) -> Optional[FatalMismatch]:
    """
    Check the veto conditions in order and return the first that fires.

    Args:
        new: Description of the incoming photo
        canonical: Canonical description of the candidate group
        config: Full configuration; the "fatal" section is used

    Returns:
        FatalMismatch or None when the candidate may be scored
    """
    fatal_cfg = get_section(config, "fatal")
    if not fatal_cfg["enabled"] or new is None or canonical is None:
        return None
    threshold = fatal_cfg["confidence_product_threshold"]

    lower_new = classify_lower_garment(new)
    lower_group = classify_lower_garment(canonical)
    if lower_new and lower_group and lower_families_contradict(lower_new["family"], lower_group["family"]):
        pair = confidence_product(lower_new["confidence"], lower_group["confidence"])
        if pair >= threshold:
            return _fatal(LOWER_GARMENT, f"{lower_new['label']} vs {lower_group['label']}", pair)

    hair_new, hair_group = new.hair.color, canonical.hair.color
    if hair_new.known and hair_group.known:
        min_clarity = fatal_cfg["min_clarity_for_hair"]
        if compute_clarity(new) >= min_clarity and compute_clarity(canonical) >= min_clarity:
            pair = confidence_product(hair_new.confidence, hair_group.confidence)
            if pair >= threshold and not colors_equivalent(hair_new.value, hair_group.value, new.lighting_uncertainty):
                return _fatal(HAIR_COLOR, f"{hair_new.value} vs {hair_group.value}", pair)

    gender_new, gender_group = new.gender_presentation, canonical.gender_presentation
    if gender_new.known and gender_group.known and gender_new.value != gender_group.value:
        pair = confidence_product(gender_new.confidence, gender_group.confidence)
        if pair >= threshold:
            return _fatal(GENDER, f"{gender_new.value} vs {gender_group.value}", pair)

    age_new, age_group = new.age_band, canonical.age_band
    if age_new.known and age_group.known:
        pair = confidence_product(age_new.confidence, age_group.confidence)
        compatible = age_new.value == age_group.value or age_adjacent(age_new.value, age_group.value)
        if pair >= threshold and not compatible:
            return _fatal(AGE, f"{age_new.value} vs {age_group.value}", pair)

    mark_fatal = _detect_mark_fatal(new, canonical, fatal_cfg)
    if mark_fatal:
        return mark_fatal

    logger.trace("No fatal mismatch between descriptions")
    return None


def format_fatal_mismatch(fatal: Optional[FatalMismatch]) -> str:
    if fatal is None:
        return ""
    conf_text = f" (conf_pair={fatal.confidence_pair:.2f})" if fatal.confidence_pair is not None else ""
    return f"Fatal mismatch: {fatal.detail}{conf_text}."
