"""
Composite 0-100 quality score for a person description.
"""

from ..reid_types import CLOTHING_SLOTS, UNKNOWN, PersonDescription, TraitObservation
from .metrics import clamp, finite_or_zero, round_half_up

MIN_TRAIT_CONFIDENCE = 50
ACCESSORY_POINTS = 2
ACCESSORY_CAP = 10
DISTINCTIVENESS_CAP = 10
COVERAGE_POINTS = 2
COVERAGE_CAP = 15


def _trait_score(observation: TraitObservation, weight: float) -> float:
    if not observation.known or observation.confidence < MIN_TRAIT_CONFIDENCE:
        return 0.0
    return min(weight, observation.confidence / 100 * weight)


def _filled(value: str) -> bool:
    return bool(value) and value != UNKNOWN


def compute_clarity(description: PersonDescription) -> int:
    """
    Blend the self-reported image clarity with how complete the description is.

    Each trait read with at least 50% confidence adds a capped bonus; a
    coverage bonus rewards filled key fields. The result picks a group's
    canonical description and gates the clarity override.
    """
    if description is None:
        return 0
    base = clamp(description.image_clarity, 0, 100)

    hair = description.hair
    hair_score = (
        _trait_score(hair.color, 10)
        + _trait_score(hair.length, 4)
        + _trait_score(hair.facial_hair, 4)
    )

    physical_score = (
        _trait_score(description.gender_presentation, 6)
        + _trait_score(description.age_band, 6)
        + _trait_score(description.build, 4)
        + _trait_score(description.skin_tone, 4)
        + _trait_score(description.height_impression, 2)
    )

    clothing_score = 0.0
    for slot in CLOTHING_SLOTS:
        item = description.garment(slot)
        clothing_score += _trait_score(TraitObservation(value=item.color, confidence=item.confidence), 8)
        if _filled(item.description):
            clothing_score += min(5, item.confidence / 100 * 5)

    accessory_score = min(
        ACCESSORY_CAP,
        sum(ACCESSORY_POINTS for item in description.accessories if item.confidence >= MIN_TRAIT_CONFIDENCE),
    )

    distinct_score = min(DISTINCTIVENESS_CAP, finite_or_zero(description.distinctiveness_score) / 10)

    coverage_fields = [
        hair.color.value,
        hair.length.value,
        description.gender_presentation.value,
        description.age_band.value,
        description.build.value,
        description.skin_tone.value,
        description.garment("top").description,
        description.garment("trousers").description,
        description.garment("shoes").description,
    ]
    coverage_bonus = min(COVERAGE_CAP, COVERAGE_POINTS * sum(1 for value in coverage_fields if _filled(value)))

    composite = base + hair_score + physical_score + clothing_score + accessory_score + distinct_score + coverage_bonus
    return int(clamp(round_half_up(composite), 0, 100))
