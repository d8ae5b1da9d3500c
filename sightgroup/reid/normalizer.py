"""
Canonicalisation of raw description-provider output into PersonDescription records.
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from ..reid_types import (
    CLOTHING_SLOTS,
    PERMANENCE_VALUES,
    PHYSICAL_TRAITS,
    UNKNOWN,
    Accessory,
    ClothingItem,
    DistinctiveMark,
    HairDescription,
    PersonDescription,
    TraitObservation,
)
from .metrics import finite_or_zero, round_half_up

REQUIRED_FIELDS = (
    "visible_area",
    "gender_presentation",
    "age_band",
    "build",
    "height_impression",
    "skin_tone",
    "hair",
    "clothing",
    "distinctiveness_score",
    "lighting_uncertainty",
    "visible_confidence",
)

_TOKEN_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_text(value: Any) -> str:
    """Trim and lowercase free text; anything that is not a non-empty string becomes "unknown"."""
    if not isinstance(value, str):
        return UNKNOWN
    text = " ".join(value.split()).lower()
    return text or UNKNOWN


def normalize_token(value: Any) -> str:
    """Vocabulary token: "Dark Blue" and "dark-blue" both become "dark_blue"."""
    text = normalize_text(value)
    if text == UNKNOWN:
        return text
    return _TOKEN_SEPARATORS.sub("_", text).strip("_") or UNKNOWN


def normalize_age_band(value: Any) -> str:
    text = normalize_text(value)
    return text.replace(" ", "") if text != UNKNOWN else text


def normalize_score_field(value: Any) -> int:
    """Integer 0-100; booleans, non-numeric and non-finite input become 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip()
    number = finite_or_zero(value)
    return int(max(0, min(100, round_half_up(number))))


def _optional_score(value: Any) -> Optional[int]:
    return None if value is None else normalize_score_field(value)


def _trait(raw: Any, token=normalize_token) -> TraitObservation:
    if not isinstance(raw, Mapping):
        return TraitObservation()
    value = token(raw.get("value"))
    confidence = normalize_score_field(raw.get("confidence"))
    return TraitObservation(value=value, confidence=confidence)


def _permanence(value: Any) -> str:
    token = normalize_token(value)
    return token if token in PERMANENCE_VALUES else "possibly_removable"


def _clothing_item(raw: Any) -> ClothingItem:
    if not isinstance(raw, Mapping):
        return ClothingItem()
    return ClothingItem(
        description=normalize_text(raw.get("description")),
        color=normalize_token(raw.get("color")),
        permanence=_permanence(raw.get("permanence")),
        confidence=normalize_score_field(raw.get("confidence")),
        rare_flag=raw.get("rare_flag") is True,
    )


def _object_list(raw: Any) -> List[Mapping]:
    if not isinstance(raw, list):
        return []
    return [entry for entry in raw if isinstance(entry, Mapping) and entry]


def _marks(raw: Any) -> List[DistinctiveMark]:
    marks = []
    for entry in _object_list(raw):
        mark = DistinctiveMark(
            type=normalize_token(entry.get("type")),
            description=normalize_text(entry.get("description")),
            location=normalize_text(entry.get("location")),
            rarity_score=normalize_score_field(entry.get("rarity_score")),
            confidence=_optional_score(entry.get("confidence")),
        )
        if mark.type == UNKNOWN and mark.description == UNKNOWN:
            continue
        marks.append(mark)
    return marks


def _accessories(raw: Any) -> List[Accessory]:
    accessories = []
    for entry in _object_list(raw):
        accessory = Accessory(
            type=normalize_token(entry.get("type")),
            description=normalize_text(entry.get("description")),
            location=normalize_text(entry.get("location")),
            permanence=_permanence(entry.get("permanence")),
            confidence=normalize_score_field(entry.get("confidence")),
            rare_flag=entry.get("rare_flag") is True,
        )
        if accessory.type == UNKNOWN and accessory.description == UNKNOWN:
            continue
        accessories.append(accessory)
    return accessories


def unwrap_schema(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Return the description mapping from provider output.

    Providers answer ``{"description_schema": {...}, "image_clarity": n}``; a
    bare schema mapping is accepted as well.
    """
    if not isinstance(raw, Mapping):
        return None
    schema = raw.get("description_schema")
    if schema is None:
        return dict(raw)
    if not isinstance(schema, Mapping):
        return None
    schema = dict(schema)
    if "image_clarity" not in schema and "image_clarity" in raw:
        schema["image_clarity"] = raw["image_clarity"]
    return schema


def missing_required_fields(raw: Any) -> List[str]:
    """Top-level keys the provider omitted; omission is a data-quality defect, not "unknown"."""
    schema = unwrap_schema(raw)
    if schema is None:
        return list(REQUIRED_FIELDS)
    return [key for key in REQUIRED_FIELDS if key not in schema]


def normalize_description(raw: Any) -> Optional[PersonDescription]:
    """
    Build a well-formed PersonDescription from raw provider output.

    Args:
        raw: JSON-like structure returned by a description provider

    Returns:
        PersonDescription, or None when the input is not a structured object
        and the description is unusable
    """
    schema = unwrap_schema(raw)
    if schema is None:
        logger.warning(f"Description unusable: expected an object, got {type(raw).__name__}")
        return None

    traits = {}
    for name in PHYSICAL_TRAITS:
        token = normalize_age_band if name == "age_band" else normalize_token
        traits[name] = _trait(schema.get(name), token)

    hair_raw = schema.get("hair") if isinstance(schema.get("hair"), Mapping) else {}
    hair = HairDescription(
        color=_trait(hair_raw.get("color")),
        length=_trait(hair_raw.get("length")),
        style=_trait(hair_raw.get("style"), normalize_text),
        facial_hair=_trait(hair_raw.get("facial_hair")),
    )

    clothing_raw = schema.get("clothing") if isinstance(schema.get("clothing"), Mapping) else {}
    clothing = {slot: _clothing_item(clothing_raw.get(slot)) for slot in CLOTHING_SLOTS}

    summary = schema.get("natural_summary")
    return PersonDescription(
        visible_area=normalize_token(schema.get("visible_area")),
        hair=hair,
        clothing=clothing,
        accessories=_accessories(schema.get("accessories")),
        distinctive_marks=_marks(schema.get("distinctive_marks")),
        visible_confidence=normalize_score_field(schema.get("visible_confidence")),
        lighting_uncertainty=normalize_score_field(schema.get("lighting_uncertainty")),
        distinctiveness_score=normalize_score_field(schema.get("distinctiveness_score")),
        image_clarity=normalize_score_field(schema.get("image_clarity")),
        natural_summary=summary.strip() if isinstance(summary, str) else "",
        **traits,
    )
