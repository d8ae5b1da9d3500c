"""
Shared fixtures for the sightgroup test suite.
"""

from typing import Optional

import pytest

from sightgroup.reid_config import merge_config
from sightgroup.reid_types import (
    CLOTHING_SLOTS,
    Accessory,
    ClothingItem,
    DistinctiveMark,
    HairDescription,
    PersonDescription,
    PersonGroup,
    TraitObservation,
)


def trait(value: str, confidence: int = 100) -> TraitObservation:
    return TraitObservation(value=value, confidence=confidence)


def garment(description: str, color: str, permanence: str = "stable", confidence: int = 100) -> ClothingItem:
    return ClothingItem(description=description, color=color, permanence=permanence, confidence=confidence)


def build_description(clothing=None, hair=None, **overrides) -> PersonDescription:
    """
    A fully visible man in a white t-shirt, blue jeans and white sneakers.

    ``clothing`` entries replace single slots; ``hair`` entries replace single
    hair traits; any other keyword replaces a top-level field.
    """
    slots = {slot: ClothingItem() for slot in CLOTHING_SLOTS}
    slots.update({
        "top": garment("white t-shirt", "white"),
        "trousers": garment("blue jeans", "blue"),
        "shoes": garment("white sneakers", "white"),
    })
    slots.update(clothing or {})

    hair_fields = {
        "color": trait("brown"),
        "length": trait("short"),
        "style": trait("side part"),
        "facial_hair": trait("stubble"),
    }
    hair_fields.update(hair or {})

    fields = {
        "visible_area": "full_body",
        "gender_presentation": trait("male"),
        "age_band": trait("25-34"),
        "build": trait("average"),
        "height_impression": trait("tall"),
        "skin_tone": trait("light"),
        "hair": HairDescription(**hair_fields),
        "clothing": slots,
        "accessories": [
            Accessory(type="watch", description="silver watch", location="left wrist",
                      permanence="removable", confidence=90),
        ],
        "distinctive_marks": [],
        "visible_confidence": 100,
        "lighting_uncertainty": 10,
        "distinctiveness_score": 40,
        "image_clarity": 85,
        "natural_summary": "Man in a white t-shirt and blue jeans.",
    }
    fields.update(overrides)
    return PersonDescription(**fields)


def dragon_tattoo(confidence: Optional[int] = 100, rarity: int = 90) -> DistinctiveMark:
    return DistinctiveMark(
        type="tattoo",
        description="dragon tattoo",
        location="left forearm",
        rarity_score=rarity,
        confidence=confidence,
    )


def group_of(description: PersonDescription, group_id=1, member_count=1, **kwargs) -> PersonGroup:
    return PersonGroup(group_id=group_id, canonical=description, member_count=member_count, **kwargs)


def raw_schema() -> dict:
    """Provider-shaped output for the same person as ``build_description``."""
    return {
        "description_schema": {
            "visible_area": "full_body",
            "gender_presentation": {"value": "Male", "confidence": 95},
            "age_band": {"value": "25-34", "confidence": 80},
            "build": {"value": "average", "confidence": 75},
            "height_impression": {"value": "tall", "confidence": 60},
            "skin_tone": {"value": "light", "confidence": 85},
            "hair": {
                "color": {"value": "brown", "confidence": 90},
                "length": {"value": "short", "confidence": 90},
                "style": {"value": "Side Part", "confidence": 70},
                "facial_hair": {"value": "stubble", "confidence": 80},
            },
            "clothing": {
                "top": {"description": "White T-Shirt", "color": "white", "permanence": "stable",
                        "confidence": 90, "rare_flag": False},
                "jacket": {"description": "unknown", "color": "unknown", "permanence": "removable",
                           "confidence": 0, "rare_flag": False},
                "trousers": {"description": "blue jeans", "color": "Dark Blue", "permanence": "stable",
                             "confidence": 90, "rare_flag": False},
                "shoes": {"description": "white sneakers", "color": "white", "permanence": "stable",
                          "confidence": 85, "rare_flag": False},
                "dress": {"description": "unknown", "color": "unknown", "permanence": "stable",
                          "confidence": 0, "rare_flag": False},
            },
            "accessories": [
                {"type": "watch", "description": "silver watch", "location": "left wrist",
                 "permanence": "removable", "confidence": 80, "rare_flag": False},
            ],
            "distinctive_marks": [
                {"type": "tattoo", "description": "dragon tattoo", "location": "left forearm",
                 "rarity_score": 85, "confidence": 90},
            ],
            "distinctiveness_score": 55,
            "lighting_uncertainty": 10,
            "visible_confidence": 90,
            "natural_summary": "  A man in a white t-shirt and blue jeans.  ",
        },
        "image_clarity": 82,
    }


@pytest.fixture
def make_description():
    return build_description


@pytest.fixture
def person() -> PersonDescription:
    return build_description()


@pytest.fixture
def config() -> dict:
    return merge_config()
