"""
Grouping decision engine: picks the person group a new description belongs to.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from loguru import logger

from ..reid_config import get_section
from ..reid_types import (
    CandidateSummary,
    ClarityPair,
    EvidenceBreakdown,
    ExplanationDetails,
    FatalMismatch,
    GroupID,
    GroupingResult,
    NeighborResult,
    NormalizedScores,
    PairJudgment,
    PersonDescription,
    PersonGroup,
)
from .clarity import compute_clarity
from .evidence import score_evidence
from .explanation import build_details, contributions, format_contributions
from .fatal import detect_fatal_mismatch, format_fatal_mismatch
from .metrics import NORMALIZED_SCORE_SCALE, normalize_score, normalized_probability, one_decimal, rounded

CLARITY_OVERRIDE = "clarity_override"


@dataclass
class ScoredCandidate:
    """Working record for one group; contra is +inf when vetoed."""
    group_id: GroupID
    member_count: int
    pro_score: float
    contra_score: float
    norm_pro: float
    norm_contra: float
    probability: int
    breakdown: EvidenceBreakdown
    fatal_mismatch: Optional[FatalMismatch]
    group_clarity: Optional[int]

    @property
    def vetoed(self) -> bool:
        return self.fatal_mismatch is not None

    @property
    def finite_contra(self) -> Optional[float]:
        return self.contra_score if math.isfinite(self.contra_score) else None

    def summary(self) -> CandidateSummary:
        contra = self.finite_contra
        return CandidateSummary(
            group_id=self.group_id,
            member_count=self.member_count,
            probability=self.probability,
            norm_pro=one_decimal(self.norm_pro),
            norm_contra=one_decimal(self.norm_contra),
            pro_score=rounded(self.pro_score),
            contra_score=None if contra is None else rounded(contra),
            group_clarity=self.group_clarity,
            fatal_mismatch=self.fatal_mismatch,
        )


class GroupingEngine:
    """
    Scores a new description against each group's canonical description and
    decides membership.

    Every candidate first passes the fatal-mismatch gate, then gets pro/contra
    evidence compressed onto 0-100 with diminishing returns. Candidates that
    clear both normalised thresholds survive; near-ties between survivors go
    to the group with less contradicting evidence. When nothing survives, a
    sharper new photo may still be admitted to a near-miss group whose
    canonical is blurrier (the clarity override).
    """

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize grouping engine.

        Args:
            config: Full configuration dictionary; the "grouping", "weights",
                "fatal" and "override" sections are read
        """
        self.config = config or {}
        grouping = get_section(self.config, "grouping")
        override = get_section(self.config, "override")

        self.pro_min = grouping.get("pro_min", 120)
        self.contra_max = grouping.get("contra_max", 40)
        self.pro_soft_max = grouping.get("pro_soft_max", 180)
        self.contra_soft_max = grouping.get("contra_soft_max", 120)
        self.norm_pro_min = grouping.get("norm_pro_min", 35)
        self.norm_contra_max = grouping.get("norm_contra_max", 40)
        self.tie_delta = grouping.get("tie_delta", 6)
        self.shortlist_limit = grouping.get("shortlist_limit", 3)
        self.match_threshold = grouping.get("match_threshold", 60)

        self.clarity_delta = override.get("clarity_delta", 5)
        self.override_pro_min = self.pro_min - override.get("pro_slack", 5)
        self.override_contra_max = self.contra_max + override.get("contra_slack", 5)
        self.min_new_clarity = override.get("min_new_clarity", 60)

    def score_group(self, new: PersonDescription, group: PersonGroup) -> ScoredCandidate:
        """Fatal gate plus normalised evidence for a single group."""
        canonical = group.canonical
        group_clarity = group.canonical_clarity
        if group_clarity is None:
            group_clarity = compute_clarity(canonical)

        fatal = detect_fatal_mismatch(new, canonical, self.config)
        if fatal is not None:
            logger.debug(f"Group {group.group_id} vetoed: {fatal.detail}")
            return ScoredCandidate(
                group_id=group.group_id,
                member_count=group.member_count,
                pro_score=0.0,
                contra_score=math.inf,
                norm_pro=0.0,
                norm_contra=NORMALIZED_SCORE_SCALE,
                probability=0,
                breakdown=EvidenceBreakdown(),
                fatal_mismatch=fatal,
                group_clarity=group_clarity,
            )

        evidence = score_evidence(new, canonical, self.config)
        norm_pro = normalize_score(evidence.pro_score, self.pro_soft_max)
        norm_contra = normalize_score(evidence.contra_score, self.contra_soft_max)
        return ScoredCandidate(
            group_id=group.group_id,
            member_count=group.member_count,
            pro_score=evidence.pro_score,
            contra_score=evidence.contra_score,
            norm_pro=norm_pro,
            norm_contra=norm_contra,
            probability=normalized_probability(norm_pro, norm_contra),
            breakdown=evidence.breakdown,
            fatal_mismatch=None,
            group_clarity=group_clarity,
        )

    def passes_thresholds(self, candidate: ScoredCandidate) -> bool:
        return (
            not candidate.vetoed
            and candidate.norm_pro >= self.norm_pro_min
            and candidate.norm_contra <= self.norm_contra_max
        )

    def _normalized(self, candidate: ScoredCandidate, probability: int) -> NormalizedScores:
        return NormalizedScores(
            norm_pro=one_decimal(candidate.norm_pro),
            norm_contra=one_decimal(candidate.norm_contra),
            probability=probability,
            required_norm_pro=self.norm_pro_min,
            required_norm_contra=self.norm_contra_max,
        )

    def candidate_details(
        self,
        candidate: ScoredCandidate,
        new_clarity: int,
        probability: Optional[int] = None,
        fallback_reason: Optional[str] = None
    ) -> ExplanationDetails:
        if probability is None:
            probability = candidate.probability
        return build_details(
            candidate.breakdown,
            candidate.pro_score,
            candidate.finite_contra,
            self._normalized(candidate, probability),
            ClarityPair(new_image=new_clarity, canonical=candidate.group_clarity),
            fallback_reason=fallback_reason,
        )

    def _override_applies(self, candidate: ScoredCandidate, new_clarity: int) -> bool:
        if candidate.vetoed or new_clarity < self.min_new_clarity:
            return False
        if candidate.group_clarity is None or new_clarity < candidate.group_clarity + self.clarity_delta:
            return False
        return candidate.pro_score >= self.override_pro_min and candidate.contra_score <= self.override_contra_max

    def _survivor_explanation(self, best: ScoredCandidate, new_clarity: int) -> str:
        pros, contras = contributions(best.breakdown)
        lines = [
            f"Raw scores: pro={rounded(best.pro_score)}, contra={rounded(best.contra_score)}.",
            f"Pro contributions: {format_contributions(pros)}.",
            f"Contra penalties: {format_contributions(contras)}.",
            f"Normalized scores: normPro={one_decimal(best.norm_pro)} (needs ≥{self.norm_pro_min}), "
            f"normContra={one_decimal(best.norm_contra)} (needs ≤{self.norm_contra_max}), "
            f"probability={best.probability}%.",
        ]
        if best.group_clarity is not None:
            lines.append(f"Image clarity: new={new_clarity or 'unknown'}, canonical={best.group_clarity}.")
        return " ".join(lines)

    def _fallback_explanation(self, reason: str, candidate: ScoredCandidate, probability: int, new_clarity: int) -> str:
        pros, contras = contributions(candidate.breakdown)
        lines = [
            reason,
            f"Fallback candidate raw scores: pro={rounded(candidate.pro_score)}, contra={rounded(candidate.contra_score)}.",
            f"Pros: {format_contributions(pros)}.",
            f"Contras: {format_contributions(contras)}.",
            f"Normalized fallback scores: normPro={one_decimal(candidate.norm_pro)}, "
            f"normContra={one_decimal(candidate.norm_contra)}, probability={probability}%.",
            f"Clarity override: new image_clarity {new_clarity} vs canonical {candidate.group_clarity}.",
            f"Assigned to group {candidate.group_id} despite thresholds due to stronger clarity and near-match scores.",
        ]
        return " ".join(line for line in lines if line)

    def _no_survivors(self, scored: List[ScoredCandidate], new_clarity: int) -> GroupingResult:
        scored.sort(key=lambda c: (c.vetoed, -c.pro_score))
        candidate = scored[0]
        shortlist = [c.summary() for c in scored[:self.shortlist_limit]]

        if candidate.vetoed:
            reason = format_fatal_mismatch(candidate.fatal_mismatch)
        else:
            reason = (
                f"No group passed thresholds. Best candidate had proScore={rounded(candidate.pro_score)}, "
                f"contraScore={rounded(candidate.contra_score)}."
            )

        if self._override_applies(candidate, new_clarity):
            probability = max(self.match_threshold, candidate.probability)
            logger.info(
                f"Clarity override: new clarity {new_clarity} vs canonical {candidate.group_clarity}, "
                f"assigning to group {candidate.group_id} at {probability}%"
            )
            return GroupingResult(
                best_group_id=candidate.group_id,
                best_group_probability=probability,
                explanation=self._fallback_explanation(reason, candidate, probability, new_clarity).strip(),
                explanation_details=self.candidate_details(candidate, new_clarity, probability, CLARITY_OVERRIDE),
                shortlist=shortlist,
                best_candidate=candidate.summary(),
                fallback_applied=True,
            )

        logger.debug(f"No group matched: {reason}")
        return GroupingResult(
            best_group_id=None,
            best_group_probability=0,
            explanation=reason,
            explanation_details=self.candidate_details(candidate, new_clarity),
            shortlist=shortlist,
            best_candidate=candidate.summary(),
        )

    def decide(self, new: Optional[PersonDescription], groups: Sequence[PersonGroup]) -> GroupingResult:
        """
        Decide which group, if any, a new description belongs to.

        Args:
            new: Normalised description of the new photo
            groups: Candidate groups with their canonical descriptions

        Returns:
            GroupingResult; best_group_id is None when a new group should be
            created
        """
        if new is None or not groups:
            return GroupingResult()

        new_clarity = compute_clarity(new)
        scored = [self.score_group(new, group) for group in groups if group is not None]
        if not scored:
            return GroupingResult()

        survivors = [c for c in scored if self.passes_thresholds(c)]
        if not survivors:
            return self._no_survivors(scored, new_clarity)

        survivors.sort(key=lambda c: (-c.probability, -c.norm_pro, c.norm_contra, -c.member_count))
        top = survivors[0]
        tied = [c for c in survivors if abs(top.probability - c.probability) <= self.tie_delta]
        # Near-ties go to the group with less contradicting evidence.
        best = min(tied, key=lambda c: (c.norm_contra, -c.member_count))

        logger.info(
            f"Matched group {best.group_id} with probability {best.probability}% "
            f"({len(survivors)} of {len(scored)} groups passed thresholds)"
        )
        return GroupingResult(
            best_group_id=best.group_id,
            best_group_probability=best.probability,
            explanation=self._survivor_explanation(best, new_clarity),
            explanation_details=self.candidate_details(best, new_clarity),
            shortlist=[c.summary() for c in survivors[:self.shortlist_limit]],
            best_candidate=best.summary(),
        )

    def rank_neighbors(
        self,
        new: Optional[PersonDescription],
        groups: Sequence[PersonGroup],
        limit: int = 3
    ) -> List[NeighborResult]:
        """Groups closest to a description, each judged on its own, best first."""
        if new is None:
            return []
        neighbors = []
        for group in groups:
            result = self.decide(new, [group])
            if result.best_group_probability <= 0:
                continue
            neighbors.append(NeighborResult(
                group_id=group.group_id,
                score=result.best_group_probability,
                explanation=result.explanation,
                representative_image=group.representative_image,
            ))
        neighbors.sort(key=lambda n: n.score, reverse=True)
        return neighbors[:limit]

    def compare(self, description_a: Optional[PersonDescription], description_b: Optional[PersonDescription]) -> PairJudgment:
        """Judge whether two photos show the same person, treating ``b`` as a one-member group."""
        if description_a is None or description_b is None:
            return PairJudgment(same_person=False, explanation="Description unavailable for one of the photos.")

        group = PersonGroup(group_id=1, canonical=description_b, member_count=1)
        result = self.decide(description_a, [group])
        fatal = result.best_candidate.fatal_mismatch if result.best_candidate else None
        return PairJudgment(
            same_person=result.best_group_id is not None,
            probability=result.best_group_probability,
            explanation=result.explanation,
            fatal_mismatch=fatal,
            result=result,
        )


def decide(
    new: Optional[PersonDescription],
    groups: Sequence[PersonGroup],
    config: Optional[dict] = None
) -> GroupingResult:
    return GroupingEngine(config).decide(new, groups)
