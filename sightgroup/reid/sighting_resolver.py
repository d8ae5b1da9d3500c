"""
Sighting resolver for assigning photos to person groups.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from ..features.base import BaseDescriptionProvider
from ..features.vision_matcher import MatchPhoto, VisionMatcher
from ..reid_types import (
    GroupID,
    GroupingResult,
    NeighborResult,
    PairJudgment,
    PersonDescription,
    PersonGroup,
    SightingOutcome,
    VisionMatch,
    VisionVerification,
)
from .clarity import compute_clarity
from .explanation import build_vision_summary, pack_explanation_with_details
from .group_repository import BaseGroupRepository
from .grouping_engine import GroupingEngine


def read_image_ref(image_ref: Optional[str]) -> Optional[bytes]:
    """Bytes of a stored image reference that is a local file path; None otherwise."""
    if not image_ref:
        return None
    path = Path(image_ref)
    try:
        return path.read_bytes() if path.is_file() else None
    except OSError as e:
        logger.warning(f"Could not read representative image {image_ref}: {e}")
        return None


class SightingResolver:
    """
    Resolves photos to person groups: describes the photo, scores it against
    every stored group and either attaches it to the winning group or opens a
    new one. Photos that cannot be described are reported as unclear and are
    not stored.

    With a vision matcher, the shortlisted groups are also compared photo to
    photo; when that check runs to completion its verdict replaces the
    engine's choice.
    """

    def __init__(
        self,
        provider: BaseDescriptionProvider,
        repository: BaseGroupRepository,
        config: Optional[dict] = None,
        matcher: Optional[VisionMatcher] = None,
        image_loader: Callable[[Optional[str]], Optional[bytes]] = read_image_ref
    ):
        """
        Initialize sighting resolver.

        Args:
            provider: Description provider used for incoming photos
            repository: Group repository holding sightings
            config: Full configuration dictionary passed to the grouping engine
            matcher: Optional photo-to-photo checker for the shortlist
            image_loader: Loads a group's representative image from its reference
        """
        self.provider = provider
        self.repository = repository
        self.engine = GroupingEngine(config)
        self.matcher = matcher
        self.image_loader = image_loader
        self.stats: Dict[str, int] = {"matched": 0, "created": 0, "unclear": 0}

    def resolve(
        self,
        image_bytes: bytes,
        image_ref: Optional[str] = None,
        captured_at: Optional[datetime] = None
    ) -> SightingOutcome:
        """
        Describe a photo and store it as a sighting.

        Args:
            image_bytes: Encoded photo of one person
            image_ref: Reference stored with the sighting (path or URL)
            captured_at: When the photo was taken, used by the vision check

        Returns:
            SightingOutcome with status "matched", "created" or "unclear"
        """
        description = self.provider.describe(image_bytes)
        return self.resolve_description(description, image_ref, image_bytes=image_bytes, captured_at=captured_at)

    def _verify_with_vision(
        self,
        description: PersonDescription,
        image_bytes: Optional[bytes],
        captured_at: Optional[datetime],
        result: GroupingResult,
        groups: Sequence[PersonGroup]
    ) -> VisionVerification:
        # Vetoed near misses are never offered to the model.
        shortlist = [entry for entry in result.shortlist if entry.fatal_mismatch is None]
        by_id = {group.group_id: group for group in groups}

        references: Dict[GroupID, MatchPhoto] = {}
        for entry in shortlist[:self.matcher.shortlist_limit]:
            group = by_id.get(entry.group_id)
            if group is None:
                continue
            references[entry.group_id] = MatchPhoto(
                image_bytes=self.image_loader(group.representative_image),
                description=group.canonical,
                captured_at=group.representative_captured_at,
            )

        photo = MatchPhoto(image_bytes, description, captured_at or datetime.now()) if image_bytes else None
        return self.matcher.verify_shortlist(photo, shortlist, references)

    def resolve_description(
        self,
        description: Optional[PersonDescription],
        image_ref: Optional[str] = None,
        image_bytes: Optional[bytes] = None,
        captured_at: Optional[datetime] = None
    ) -> SightingOutcome:
        if description is None:
            logger.warning(f"Could not describe photo {image_ref or ''}; not stored")
            self.stats["unclear"] += 1
            return SightingOutcome(status="unclear")

        clarity = compute_clarity(description)
        groups = self.repository.list_groups()
        result = self.engine.decide(description, groups)

        target = result.best_group_id
        probability = result.best_group_probability
        vision = None
        if self.matcher is not None and result.shortlist:
            vision = self._verify_with_vision(description, image_bytes, captured_at, result, groups)
            compared = any(not c.skipped for c in vision.comparisons)
            if vision.applied and vision.error is None and compared:
                if vision.approved_group_id != target:
                    logger.info(f"Vision check overrides grouping decision: "
                                f"{target} -> {vision.approved_group_id}")
                    target = vision.approved_group_id
                    # An override reports the similarity the model gave the approved group
                    approved = [c for c in vision.comparisons if c.group_id == target and not c.skipped]
                    probability = approved[0].similarity if approved else 0

        explanation = pack_explanation_with_details(result.explanation, result.explanation_details)
        vision_summary = build_vision_summary(vision)
        if vision_summary:
            separator = "" if not explanation or explanation.endswith("\n") else "\n"
            explanation = f"{explanation}{separator}{vision_summary}"

        if target is not None:
            group = self.repository.attach(target, description, image_ref, explanation=explanation)
            logger.info(
                f"Sighting attached to group {group.identifier or group.group_id} "
                f"with {probability}% probability"
            )
            self.stats["matched"] += 1
            return SightingOutcome(
                status="matched",
                group_id=group.group_id,
                identifier=group.identifier,
                probability=probability,
                clarity=clarity,
                result=result,
                vision=vision,
            )

        group = self.repository.create_group(description, image_ref, explanation=explanation)
        logger.info(f"New person: created group {group.identifier or group.group_id}")
        self.stats["created"] += 1
        return SightingOutcome(
            status="created",
            group_id=group.group_id,
            identifier=group.identifier,
            probability=0,
            clarity=clarity,
            result=result,
            vision=vision,
        )

    def compare_photos(self, image_a: bytes, image_b: bytes) -> PairJudgment:
        """Judge whether two photos show the same person; nothing is stored."""
        return self.engine.compare(self.provider.describe(image_a), self.provider.describe(image_b))

    def vision_compare_photos(self, image_a: bytes, image_b: bytes) -> Optional[VisionMatch]:
        """
        Ask the vision matcher directly whether two photos show the same person.

        Both photos are described first so the model also gets their text
        summaries. Nothing is stored.

        Raises:
            ValueError: if the resolver has no matcher
        """
        if self.matcher is None:
            raise ValueError("No vision matcher configured")
        photo_a = MatchPhoto(image_a, self.provider.describe(image_a))
        photo_b = MatchPhoto(image_b, self.provider.describe(image_b))
        return self.matcher.match(photo_a, photo_b)

    def neighbors(self, image_bytes: bytes, limit: int = 3) -> List[NeighborResult]:
        """Closest stored groups to a photo; nothing is stored."""
        description = self.provider.describe(image_bytes)
        return self.engine.rank_neighbors(description, self.repository.list_groups(), limit)

    def get_statistics(self) -> Dict[str, int]:
        """Get statistics about resolved sightings."""
        return dict(self.stats)
