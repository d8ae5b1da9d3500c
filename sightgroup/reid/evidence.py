"""
Pro/contra evidence accumulation between a new description and a group canonical.

Scores are unbounded; the grouping engine normalises them. A contribution is
only made when both sides hold a known value with nonzero confidence, and every
contribution is scaled by the effective confidence of the pair and by the
visibility of the new photo.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..reid_config import get_section
from ..reid_types import (
    CLOTHING_SLOTS,
    PHYSICAL_TRAITS,
    UNKNOWN,
    ClothingItem,
    DistinctiveMark,
    EvidenceBreakdown,
    EvidenceScore,
    PersonDescription,
    TraitObservation,
)
from .equivalence import colors_equivalent, token_substring_match
from .fatal import age_adjacent, has_absence_keyword
from .metrics import confidence_product, round_half_up, visibility_factor

# Clothing weights (stable items dominate)
CLOTHING_PRO_WEIGHTS = {"top": 40, "jacket": 35, "trousers": 40, "shoes": 35, "dress": 40}
CLOTHING_CONTRA_WEIGHTS = {"top": 30, "jacket": 30, "trousers": 30, "shoes": 25, "dress": 30}
COLOR_MATCH_WEIGHT = 0.6
TYPE_MATCH_WEIGHT = 0.4
CONTRA_MISMATCH_THRESHOLD = 0.2
STABILITY_MULTIPLIERS = {"removable": 0.3, "possibly_removable": 0.6, "stable": 1.0}
OUTER_LAYER_KEYWORDS = ("blazer", "jacket", "coat", "cardigan", "sport coat", "suit jacket")
CROSS_SLOT_OUTER_LAYER_BONUS = 10

# Rare / distinctive marks
RARE_PRO_BASE = 80
RARE_CONTRA_BASE = 40
LOCATION_MATCH_BONUS = 8

PHYSICAL_PRO_WEIGHTS = {
    "gender_presentation": 25,
    "age_band": 20,
    "build": 15,
    "height_impression": 10,
    "skin_tone": 15,
}
PHYSICAL_CONTRA_WEIGHTS = {
    "gender_presentation": 120,  # near-fatal
    "age_band": 25,
    "build": 15,
    "height_impression": 15,
    "skin_tone": 20,
}
ADJACENT_AGE_PRO_FRACTION = 0.4
ADJACENT_AGE_CONTRA_FRACTION = 0.2

HAIR_PRO_WEIGHTS = {"color": 15, "length": 8, "style": 5, "facial_hair": 8}
HAIR_CONTRA_WEIGHTS = {"color": 15, "length": 10, "facial_hair": 20}


@dataclass
class ClothingMetrics:
    econf: float
    stability_multiplier: float
    color_ok: bool
    desc_ok: bool
    both_stable: bool


def garment_category(slot: str, description: str) -> Optional[str]:
    """Coarse garment category so a shirt and a blazer in the same slot are not compared."""
    if slot == "trousers":
        return "lower"
    if slot == "shoes":
        return "footwear"
    if slot == "dress":
        return "one_piece"
    if slot == "jacket":
        return "outer_layer"
    text = (description or "").lower()
    if any(keyword in text for keyword in OUTER_LAYER_KEYWORDS):
        return "outer_layer"
    if slot == "top":
        return "base_top"
    return None


def stability_multiplier(item_a: ClothingItem, item_b: ClothingItem) -> float:
    return min(STABILITY_MULTIPLIERS.get(item.permanence, 1.0) for item in (item_a, item_b))


def clothing_metrics(
    new_item: ClothingItem,
    group_item: ClothingItem,
    visibility: float,
    lighting_uncertainty: float
) -> Optional[ClothingMetrics]:
    if not new_item.usable or not group_item.usable:
        return None
    econf = confidence_product(new_item.confidence, group_item.confidence) * visibility
    if econf <= 0:
        return None
    return ClothingMetrics(
        econf=econf,
        stability_multiplier=stability_multiplier(new_item, group_item),
        color_ok=colors_equivalent(new_item.color, group_item.color, lighting_uncertainty),
        desc_ok=token_substring_match(new_item.description, group_item.description),
        both_stable=new_item.permanence == "stable" and group_item.permanence == "stable",
    )


def clothing_contribution(
    base_pro: float,
    base_contra: float,
    metrics: Optional[ClothingMetrics],
    allow_contra: bool = True
) -> Tuple[float, float]:
    """Return (pro, contra) for one garment comparison."""
    if metrics is None or base_pro <= 0:
        return 0.0, 0.0
    match_score = 0.0
    pro = 0.0
    if metrics.color_ok:
        pro += base_pro * COLOR_MATCH_WEIGHT * metrics.stability_multiplier * metrics.econf
        match_score += COLOR_MATCH_WEIGHT
    if metrics.desc_ok:
        pro += base_pro * TYPE_MATCH_WEIGHT * metrics.stability_multiplier * metrics.econf
        match_score += TYPE_MATCH_WEIGHT

    contra = 0.0
    if allow_contra and metrics.both_stable and base_contra > 0 and match_score <= CONTRA_MISMATCH_THRESHOLD:
        contra = base_contra * (1 - match_score) * metrics.econf
    return pro, contra


def _outer_layers(description: PersonDescription) -> List[Tuple[str, ClothingItem]]:
    garments = []
    for slot in ("top", "jacket"):
        item = description.garment(slot)
        if item.usable and garment_category(slot, item.description) == "outer_layer":
            garments.append((slot, item))
    return garments


def score_cross_slot_outer_layers(
    new: PersonDescription,
    canonical: PersonDescription,
    visibility: float
) -> float:
    """
    Match outer layers recorded in different slots (a blazer read as "top" in
    one photo and as "jacket" in the other). Pro only; each canonical garment
    is used at most once.
    """
    new_outer = _outer_layers(new)
    group_outer = _outer_layers(canonical)
    if not new_outer or not group_outer:
        return 0.0

    used = set()
    total = 0.0
    for new_slot, new_item in new_outer:
        best_pro, best_index = 0.0, None
        for index, (group_slot, group_item) in enumerate(group_outer):
            if index in used or group_slot == new_slot:
                continue
            metrics = clothing_metrics(new_item, group_item, visibility, new.lighting_uncertainty)
            if metrics is None:
                continue
            base_pro = CLOTHING_PRO_WEIGHTS[new_slot] + CLOTHING_PRO_WEIGHTS[group_slot] + CROSS_SLOT_OUTER_LAYER_BONUS
            pro, _ = clothing_contribution(base_pro, 0, metrics, allow_contra=False)
            if pro > best_pro:
                best_pro, best_index = pro, index
        if best_index is not None:
            used.add(best_index)
            total += best_pro
    return total


def _score_clothing(new, canonical, visibility, breakdown: EvidenceBreakdown, clothing_cap: float) -> Tuple[float, float]:
    accumulated = 0.0
    contra_total = 0.0
    for slot in CLOTHING_SLOTS:
        new_item = new.garment(slot)
        group_item = canonical.garment(slot)
        if not new_item.usable or not group_item.usable:
            continue
        new_category = garment_category(slot, new_item.description)
        group_category = garment_category(slot, group_item.description)
        if new_category and group_category and new_category != group_category:
            continue

        metrics = clothing_metrics(new_item, group_item, visibility, new.lighting_uncertainty)
        pro, contra = clothing_contribution(CLOTHING_PRO_WEIGHTS[slot], CLOTHING_CONTRA_WEIGHTS[slot], metrics)
        accumulated += pro
        contra_total += contra

    accumulated += score_cross_slot_outer_layers(new, canonical, visibility)

    applied = min(accumulated, clothing_cap)
    breakdown.clothing_pro = accumulated
    breakdown.clothing_pro_raw = accumulated
    breakdown.clothing_pro_applied = applied
    breakdown.clothing_pro_cap = clothing_cap
    breakdown.clothing_contra = contra_total
    return applied, contra_total


def _types_compatible(a: DistinctiveMark, b: DistinctiveMark) -> bool:
    return a.type == UNKNOWN or b.type == UNKNOWN or a.type == b.type


def _asserts_presence(mark: DistinctiveMark) -> bool:
    return mark.description != UNKNOWN and not has_absence_keyword(mark.description)


def _strongest_absence(
    rare: DistinctiveMark,
    others: List[DistinctiveMark],
    visibility: float
) -> float:
    strongest = 0.0
    for other in others:
        if not _types_compatible(rare, other) or _asserts_presence(other):
            continue
        strongest = max(strongest, confidence_product(other.confidence, rare.effective_confidence) * visibility)
    return strongest


def _score_rare_marks(new, canonical, visibility, breakdown: EvidenceBreakdown, min_rarity: float) -> Tuple[float, float]:
    pro_total = 0.0
    contra_total = 0.0
    new_marks = new.distinctive_marks
    group_marks = canonical.distinctive_marks

    for group_mark in group_marks:
        if group_mark.rarity_score < min_rarity or not _asserts_presence(group_mark):
            continue
        rarity = group_mark.rarity_score / 100
        matched = next(
            (
                mark for mark in new_marks
                if _types_compatible(group_mark, mark)
                and _asserts_presence(mark)
                and token_substring_match(mark.description, group_mark.description)
            ),
            None,
        )
        if matched is not None:
            econf = confidence_product(matched.confidence, group_mark.effective_confidence) * visibility
            if econf > 0:
                contribution = RARE_PRO_BASE * rarity * econf
                if matched.location == group_mark.location:
                    contribution += LOCATION_MATCH_BONUS * econf
                pro_total += contribution
        else:
            missing = _strongest_absence(group_mark, new_marks, visibility)
            contra_total += RARE_CONTRA_BASE * rarity * missing

    # The same explicit-absence check the other way round: a rare mark on the
    # new photo that the canonical confidently says is not there.
    for new_mark in new_marks:
        if new_mark.rarity_score < min_rarity or not _asserts_presence(new_mark):
            continue
        if any(
            _types_compatible(new_mark, mark) and _asserts_presence(mark)
            and token_substring_match(mark.description, new_mark.description)
            for mark in group_marks
        ):
            continue
        missing = _strongest_absence(new_mark, group_marks, visibility)
        contra_total += RARE_CONTRA_BASE * (new_mark.rarity_score / 100) * missing

    breakdown.rare_pro = pro_total
    breakdown.rare_contra = contra_total
    return pro_total, contra_total


def _score_physical(new, canonical, visibility, breakdown: EvidenceBreakdown) -> Tuple[float, float]:
    pro_total = 0.0
    contra_total = 0.0
    for field in PHYSICAL_TRAITS:
        new_trait: TraitObservation = new.trait(field)
        group_trait: TraitObservation = canonical.trait(field)
        if not new_trait.known or not group_trait.known:
            continue
        econf = confidence_product(new_trait.confidence, group_trait.confidence) * visibility
        if econf <= 0:
            continue
        if new_trait.value == group_trait.value:
            pro_total += PHYSICAL_PRO_WEIGHTS[field] * econf
        elif field == "age_band" and age_adjacent(new_trait.value, group_trait.value):
            pro_total += PHYSICAL_PRO_WEIGHTS[field] * ADJACENT_AGE_PRO_FRACTION * econf
            contra_total += PHYSICAL_CONTRA_WEIGHTS[field] * ADJACENT_AGE_CONTRA_FRACTION * econf
        else:
            contra_total += PHYSICAL_CONTRA_WEIGHTS[field] * econf

    breakdown.physical_pro = pro_total
    breakdown.physical_contra = contra_total
    return pro_total, contra_total


def _score_hair(new, canonical, visibility, breakdown: EvidenceBreakdown) -> Tuple[float, float]:
    pro_total = 0.0
    contra_total = 0.0
    comparisons = (
        ("color", lambda a, b: colors_equivalent(a, b, new.lighting_uncertainty), True),
        ("length", lambda a, b: a == b, True),
        ("style", token_substring_match, False),  # free text is too noisy to penalise
        ("facial_hair", lambda a, b: a == b, True),
    )
    for field, same, penalise in comparisons:
        new_trait: TraitObservation = getattr(new.hair, field)
        group_trait: TraitObservation = getattr(canonical.hair, field)
        if not new_trait.known or not group_trait.known:
            continue
        econf = confidence_product(new_trait.confidence, group_trait.confidence) * visibility
        if econf <= 0:
            continue
        if same(new_trait.value, group_trait.value):
            pro_total += HAIR_PRO_WEIGHTS[field] * econf
        elif penalise:
            contra_total += HAIR_CONTRA_WEIGHTS[field] * econf

    breakdown.hair_pro = pro_total
    breakdown.hair_contra = contra_total
    return pro_total, contra_total


def clothing_pro_cap(config: Optional[dict] = None) -> float:
    weights = get_section(config, "weights")
    if weights.get("clothing_pro_cap") is not None:
        return max(0.0, float(weights["clothing_pro_cap"]))
    pro_min = get_section(config, "grouping")["pro_min"]
    return float(round_half_up(pro_min * weights["clothing_pro_cap_ratio"]))


def score_evidence(
    new: PersonDescription,
    canonical: PersonDescription,
    config: Optional[dict] = None
) -> EvidenceScore:
    """
    Compute unbounded pro and contra scores between two descriptions.

    Args:
        new: Description of the incoming photo
        canonical: Canonical description of a candidate group
        config: Full configuration; "weights" and "grouping" sections are used

    Returns:
        EvidenceScore with the per-domain breakdown
    """
    breakdown = EvidenceBreakdown()
    if new is None or canonical is None:
        return EvidenceScore(breakdown=breakdown)

    weights = get_section(config, "weights")
    visibility = visibility_factor(new.visible_confidence)

    domains: Dict[str, Tuple[float, float]] = {
        "clothing": _score_clothing(new, canonical, visibility, breakdown, clothing_pro_cap(config)),
        "rare": _score_rare_marks(new, canonical, visibility, breakdown, weights["rare_min_rarity"]),
        "physical": _score_physical(new, canonical, visibility, breakdown),
        "hair": _score_hair(new, canonical, visibility, breakdown),
    }
    pro_score = sum(pro for pro, _ in domains.values())
    contra_score = sum(contra for _, contra in domains.values())
    return EvidenceScore(pro_score=pro_score, contra_score=contra_score, breakdown=breakdown)
