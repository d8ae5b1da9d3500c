"""
Type definitions and data structures for the sighting re-identification system.
"""

from datetime import datetime
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

# Basic types
GroupID = Union[int, str]
Score = float
Probability = int

UNKNOWN = "unknown"

CLOTHING_SLOTS = ("top", "jacket", "trousers", "shoes", "dress")
PHYSICAL_TRAITS = ("gender_presentation", "age_band", "build", "height_impression", "skin_tone")
AGE_BANDS = ("18-24", "25-34", "35-44", "45-54", "55+")
PERMANENCE_VALUES = ("stable", "possibly_removable", "removable")


class GroupNotFoundError(KeyError):
    """Raised when a sighting is attached to a group the repository does not hold."""


class TraitObservation(BaseModel):
    """A single confidence-tagged trait read from a photo."""
    model_config = ConfigDict(frozen=True)

    value: str = UNKNOWN
    confidence: int = 0

    @property
    def known(self) -> bool:
        return bool(self.value) and self.value != UNKNOWN


class HairDescription(BaseModel):
    model_config = ConfigDict(frozen=True)

    color: TraitObservation = Field(default_factory=TraitObservation)
    length: TraitObservation = Field(default_factory=TraitObservation)
    style: TraitObservation = Field(default_factory=TraitObservation)
    facial_hair: TraitObservation = Field(default_factory=TraitObservation)


class ClothingItem(BaseModel):
    """A garment in one clothing slot."""
    model_config = ConfigDict(frozen=True)

    description: str = UNKNOWN
    color: str = UNKNOWN
    permanence: str = "possibly_removable"
    confidence: int = 0
    rare_flag: bool = False

    @property
    def usable(self) -> bool:
        return bool(self.description) and self.description != UNKNOWN


class Accessory(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = UNKNOWN
    description: str = UNKNOWN
    location: str = UNKNOWN
    permanence: str = "possibly_removable"
    confidence: int = 0
    rare_flag: bool = False


class DistinctiveMark(BaseModel):
    """Tattoo, scar, logo or other mark, with how rare it is (0 common, 100 unique)."""
    model_config = ConfigDict(frozen=True)

    type: str = UNKNOWN
    description: str = UNKNOWN
    location: str = UNKNOWN
    rarity_score: int = 0
    confidence: Optional[int] = None  # None when the provider stated no confidence

    @property
    def effective_confidence(self) -> int:
        """Stated confidence; a mark reported without one counts as certain."""
        return 100 if self.confidence is None else self.confidence


def _empty_clothing() -> Dict[str, ClothingItem]:
    return {slot: ClothingItem() for slot in CLOTHING_SLOTS}


class PersonDescription(BaseModel):
    """Structured, confidence-annotated description of the person in one photo."""
    model_config = ConfigDict(frozen=True)

    visible_area: str = UNKNOWN
    gender_presentation: TraitObservation = Field(default_factory=TraitObservation)
    age_band: TraitObservation = Field(default_factory=TraitObservation)
    build: TraitObservation = Field(default_factory=TraitObservation)
    height_impression: TraitObservation = Field(default_factory=TraitObservation)
    skin_tone: TraitObservation = Field(default_factory=TraitObservation)
    hair: HairDescription = Field(default_factory=HairDescription)
    clothing: Dict[str, ClothingItem] = Field(default_factory=_empty_clothing)
    accessories: List[Accessory] = Field(default_factory=list)
    distinctive_marks: List[DistinctiveMark] = Field(default_factory=list)
    visible_confidence: int = 0
    lighting_uncertainty: int = 0
    distinctiveness_score: int = 0
    image_clarity: int = 0
    natural_summary: str = ""

    def trait(self, name: str) -> TraitObservation:
        return getattr(self, name)

    def garment(self, slot: str) -> ClothingItem:
        return self.clothing.get(slot) or ClothingItem()


class PersonGroup(BaseModel):
    """A person group as supplied by the group repository."""
    group_id: GroupID
    canonical: PersonDescription
    member_count: int = 1
    identifier: Optional[str] = None
    representative_image: Optional[str] = None
    representative_captured_at: Optional[datetime] = None
    canonical_clarity: Optional[int] = None


class Sighting(BaseModel):
    """One admitted photo and its description, attached to a group."""
    sighting_id: Optional[int] = None
    group_id: GroupID
    description: PersonDescription
    image_ref: Optional[str] = None
    captured_at: datetime = Field(default_factory=datetime.now)
    explanation: Optional[str] = None  # packed explanation text and details of the decision


class FatalMismatch(BaseModel):
    """Hard veto excluding a candidate group regardless of positive evidence."""
    type: str
    detail: str
    confidence_pair: Optional[float] = None


class EvidenceBreakdown(BaseModel):
    """Per-domain pro/contra contributions for one candidate."""
    clothing_pro: Score = 0.0
    clothing_pro_raw: Score = 0.0
    clothing_pro_applied: Score = 0.0
    clothing_pro_cap: Score = 0.0
    clothing_contra: Score = 0.0
    rare_pro: Score = 0.0
    rare_contra: Score = 0.0
    physical_pro: Score = 0.0
    physical_contra: Score = 0.0
    hair_pro: Score = 0.0
    hair_contra: Score = 0.0


class EvidenceScore(BaseModel):
    pro_score: Score = 0.0
    contra_score: Score = 0.0
    breakdown: EvidenceBreakdown = Field(default_factory=EvidenceBreakdown)


class Contribution(BaseModel):
    category: str
    value: int
    note: Optional[str] = None


class NormalizedScores(BaseModel):
    norm_pro: float = 0.0
    norm_contra: float = 0.0
    probability: Probability = 0
    required_norm_pro: float = 0.0
    required_norm_contra: float = 0.0


class ClarityPair(BaseModel):
    new_image: Optional[int] = None
    canonical: Optional[int] = None


class ExplanationDetails(BaseModel):
    """Machine-readable companion to the human-readable explanation."""
    raw_scores: Dict[str, Optional[int]] = Field(default_factory=dict)
    normalized: NormalizedScores = Field(default_factory=NormalizedScores)
    pro_contributions: List[Contribution] = Field(default_factory=list)
    contra_contributions: List[Contribution] = Field(default_factory=list)
    clarity: ClarityPair = Field(default_factory=ClarityPair)
    fallback_applied: bool = False
    fallback_reason: Optional[str] = None


class CandidateSummary(BaseModel):
    """Scores of one candidate group, safe to serialise (no NaN/inf)."""
    group_id: GroupID
    member_count: int = 0
    probability: Probability = 0
    norm_pro: float = 0.0
    norm_contra: float = 0.0
    pro_score: int = 0
    contra_score: Optional[int] = None
    group_clarity: Optional[int] = None
    fatal_mismatch: Optional[FatalMismatch] = None


class GroupingResult(BaseModel):
    """Outcome of evaluating one description against the candidate groups."""
    best_group_id: Optional[GroupID] = None
    best_group_probability: Probability = 0
    explanation: str = ""
    explanation_details: Optional[ExplanationDetails] = None
    shortlist: List[CandidateSummary] = Field(default_factory=list)
    best_candidate: Optional[CandidateSummary] = None
    fallback_applied: bool = False


class NeighborResult(BaseModel):
    group_id: GroupID
    score: Probability
    explanation: str = ""
    representative_image: Optional[str] = None


class PairJudgment(BaseModel):
    """Whether two photos show the same person."""
    same_person: bool
    probability: Probability = 0
    explanation: str = ""
    fatal_mismatch: Optional[FatalMismatch] = None
    result: Optional[GroupingResult] = None


class VisionMatch(BaseModel):
    """Verdict of a vision model shown both photos side by side."""
    similarity: Probability = 0
    confidence: str = "medium"
    reasoning: str = "No reasoning provided"
    fatal_mismatch: Optional[str] = None
    time_diff_minutes: Optional[int] = None


class VisionComparison(BaseModel):
    """One shortlisted group checked against the new photo."""
    group_id: GroupID
    probability: Probability = 0
    similarity: Optional[Probability] = None
    confidence: Optional[str] = None
    fatal_mismatch: Optional[str] = None
    reasoning: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None


class VisionVerification(BaseModel):
    """
    Result of checking the shortlist photo by photo.

    ``applied`` is False when the check could not run at all (``reason``
    says why); ``approved_group_id`` is the first group the model accepted.
    """
    applied: bool = False
    reason: Optional[str] = None
    approved_group_id: Optional[GroupID] = None
    comparisons: List[VisionComparison] = Field(default_factory=list)
    error: Optional[str] = None


class SightingOutcome(BaseModel):
    """Results from resolving one photo against the stored person groups."""
    status: str  # "matched", "created" or "unclear"
    group_id: Optional[GroupID] = None
    identifier: Optional[str] = None
    probability: Probability = 0
    clarity: Optional[int] = None
    result: Optional[GroupingResult] = None
    vision: Optional[VisionVerification] = None
