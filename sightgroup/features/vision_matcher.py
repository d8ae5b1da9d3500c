"""
Photo-to-photo re-identification check by a vision chat-completions server.

The model is shown two photos together with short text summaries of their
descriptions and answers with a similarity score, a confidence level and the
fatal mismatch it saw, if any.
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from ..reid.fatal import has_absence_keyword
from ..reid.metrics import clamp, round_half_up
from ..reid_types import (
    CandidateSummary,
    ClothingItem,
    GroupID,
    PersonDescription,
    UNKNOWN,
    VisionComparison,
    VisionMatch,
    VisionVerification,
)
from ..utils.image_encoder import ImageEncoder
from .vision_client import VisionChatClient

MATCH_SYSTEM_PROMPT = (
    "You are a re-identification assistant. Compare two cropped person photos and return ONLY valid JSON "
    "with similarity, confidence, reasoning, and fatal mismatch."
)

MATCH_INSTRUCTIONS = """Step 0: fatal-mismatch check (do this first). If ANY fatal mismatch is present, set probability = 0 and return immediately with an explanation naming the fatal mismatch.

Fatal mismatches (ONLY these, nothing else):
- Different major lower-body garment category (skirt/dress vs full-length pants/jeans vs shorts), but "jeans" and "pants" are the same category.
- Different major outfit class (dress/one-piece vs separate top+bottom).
- Clear gender-presentation conflict (male vs female).
- Clear age-band conflict (child vs adult, or 20s vs 60s; 50s vs 60s is NOT fatal).

Do NOT treat as fatal:
- Removable accessories (hats, bags, scarves). People can take these off between photos.
- Footwear description variations ("shoes" vs "sneakers" vs "boots" are all footwear).
- Minor clothing color variations due to lighting ("dark blue" vs "navy" vs "black").
- Absent mention of a trait in one photo but present in another (only fatal if BOTH explicitly describe it differently).

TASK:
Determine the probability (0-100%) that these are photos of the SAME PERSON.

CRITICAL RULES:
1. Gender mismatch = 0% (fatal).
2. For photos taken within minutes (time difference < 5 min), allow for removable items (hats, bags) to differ.
3. Core outfit (top + bottom colors and types) must align for short time windows.
4. Hair color/length must be compatible (but "black" vs "dark brown" is compatible).
5. Build, age range, and skin tone must be compatible.
6. Footwear type variations ("shoes" vs "sneakers") are NOT grounds for rejection if everything else matches.
7. When photos are taken seconds/minutes apart and all permanent traits match, prefer match over rejection.

COMPARISON PRIORITIES (in order):
1. Gender
2. Outfit colours and layering
3. Hair style/colour
4. Accessories & carried items
5. Build/height category
6. Age range

Return ONLY valid JSON with this exact structure:
{
  "similarity": <integer 0-100>,
  "confidence": <"high" | "medium" | "low">,
  "reasoning": "Why the score is high OR low, mentioning every major factor that influenced it. Format as sentences separated by \\n, each prefixed with '+' for supporting evidence or '-' for conflicting evidence.",
  "fatal_mismatch": <"gender" | "outfit" | "age" | "hair" | "accessories" | null>
}

Examples:
- Identical person: {"similarity": 95, "confidence": "high", "reasoning": "+ Same gender\\n+ Matching navy suit and glasses\\n+ Identical shoes", "fatal_mismatch": null}
- Same build but outfit mismatch: {"similarity": 20, "confidence": "high", "reasoning": "+ Similar build\\n- Sweater vs bright red jacket\\n- Different shoes", "fatal_mismatch": "outfit"}
- Gender mismatch: {"similarity": 0, "confidence": "high", "reasoning": "- Female vs male presentation\\n- Hair length mismatch", "fatal_mismatch": "gender"}"""

CARRIED_ACCESSORY_TYPES = ("bag",)


@dataclass
class MatchPhoto:
    """One side of a comparison: the photo and, when known, its description and capture time."""
    image_bytes: Optional[bytes]
    description: Optional[PersonDescription] = None
    captured_at: Optional[datetime] = None


def format_time_context(photo_a: MatchPhoto, photo_b: MatchPhoto) -> Tuple[str, Optional[float]]:
    """Sentence about the time between the photos, and the gap in minutes when both times are known."""
    if photo_a.captured_at is None or photo_b.captured_at is None:
        return "Time difference unknown.", None
    try:
        minutes = abs((photo_b.captured_at - photo_a.captured_at).total_seconds()) / 60
    except TypeError:
        # naive and aware timestamps cannot be subtracted
        return "Time difference unknown.", None
    return f"Photos taken {int(round_half_up(minutes))} minutes apart.", minutes


def _known(value: str, fallback: str) -> str:
    return value if value and value != UNKNOWN else fallback


def summarise_subject(description: Optional[PersonDescription]) -> str:
    description = description or PersonDescription()
    hair = [t.value for t in (description.hair.length, description.hair.style, description.hair.color) if t.known]
    eyewear = [a.description for a in description.accessories if a.type == "glasses"]
    headwear = [a.description for a in description.accessories if a.type == "hat"]
    marks = [
        m.description for m in description.distinctive_marks
        if m.description != UNKNOWN and not has_absence_keyword(m.description)
    ]
    return (
        f"Gender: {_known(description.gender_presentation.value, 'unknown-gender')}. "
        f"Age: {_known(description.age_band.value, 'unknown-age')}. "
        f"Build: {_known(description.build.value, 'unknown-build')}. "
        f"Skin tone: {_known(description.skin_tone.value, 'unknown-skin-tone')}. "
        f"Hair: {'-'.join(hair) or 'unknown-hair'}. "
        f"Eyewear: {', '.join(eyewear) or 'no-eyewear'}. "
        f"Headwear: {', '.join(headwear) or 'no-headwear'}. "
        f"Distinguishing features: {'; '.join(marks) or 'none'}."
    )


def _format_item(item: ClothingItem) -> str:
    parts = [value for value in (item.description, item.color) if value and value != UNKNOWN]
    return " | ".join(parts) or "unknown"


def summarise_clothing(description: Optional[PersonDescription]) -> str:
    description = description or PersonDescription()
    bottom = description.garment("dress") if description.garment("dress").usable else description.garment("trousers")

    colors: List[str] = []
    for slot in ("jacket", "top", "dress", "trousers", "shoes"):
        color = description.garment(slot).color
        if description.garment(slot).usable and color != UNKNOWN and color not in colors:
            colors.append(color)

    buckets: Dict[str, List[str]] = {}
    carried: List[str] = []
    for accessory in description.accessories:
        if accessory.type in CARRIED_ACCESSORY_TYPES:
            carried.append(accessory.description)
        else:
            buckets.setdefault(accessory.type, []).append(accessory.description)
    accessories = " | ".join(f"{bucket}: {', '.join(values)}" for bucket, values in buckets.items())

    return "\n".join([
        f"Dominant outfit colours: {', '.join(colors) or 'unknown'}",
        f"Top: {_format_item(description.garment('top'))}",
        f"Bottom: {_format_item(bottom)}",
        f"Outerwear: {_format_item(description.garment('jacket'))}",
        f"Footwear: {_format_item(description.garment('shoes'))}",
        f"Accessories: {accessories or 'none'}",
        f"Carried items: {', '.join(carried) or 'none'}",
    ])


def build_comparison_prompt(photo_a: MatchPhoto, photo_b: MatchPhoto) -> Tuple[str, Optional[float]]:
    """Comparison prompt text and the time gap in minutes it was built with."""
    time_context, minutes = format_time_context(photo_a, photo_b)
    sections = ["Compare these two photos to determine if they show the SAME PERSON.", "", "CONTEXT:", time_context]
    for index, photo in enumerate((photo_a, photo_b), start=1):
        summary = photo.description.natural_summary if photo.description else ""
        sections += [
            f"Photo {index} subject:",
            summarise_subject(photo.description),
            f"Photo {index} outfit:",
            summarise_clothing(photo.description),
            f"Photo {index} summary: {summary or 'none'}",
            "",
        ]
    sections.append(MATCH_INSTRUCTIONS)
    return "\n".join(sections), minutes


def parse_match_response(content: Optional[str], minutes: Optional[float] = None) -> Optional[VisionMatch]:
    """Validate the model's JSON verdict; None when it carries no numeric similarity."""
    if not content:
        logger.warning("Vision match response was empty")
        return None
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse vision match JSON: {e}; content: {content[:400]}")
        return None
    if not isinstance(payload, dict):
        logger.warning("Vision match response is not a JSON object")
        return None

    similarity = payload.get("similarity")
    if isinstance(similarity, bool) or not isinstance(similarity, (int, float)) or math.isnan(similarity):
        logger.warning(f"Vision match response missing similarity value: {content[:400]}")
        return None

    confidence = payload.get("confidence")
    reasoning = payload.get("reasoning")
    fatal = payload.get("fatal_mismatch")
    return VisionMatch(
        similarity=int(clamp(round_half_up(similarity), 0, 100)),
        confidence=confidence if isinstance(confidence, str) else "medium",
        reasoning=reasoning if isinstance(reasoning, str) else "No reasoning provided",
        fatal_mismatch=fatal if isinstance(fatal, str) and fatal else None,
        time_diff_minutes=int(round_half_up(minutes)) if minutes is not None else None,
    )


class VisionMatcher(VisionChatClient):
    """
    Asks a vision model whether two photos show the same person, and checks a
    grouping shortlist photo by photo.

    A shortlisted group is approved when the model's similarity reaches
    ``accept_similarity``, its confidence is "high" (or ``accept_confidence``
    is "any") and it reports no fatal mismatch.
    """

    default_max_tokens = 350

    def initialize(self, config: dict) -> None:
        super().initialize(config)
        self.shortlist_limit = max(1, int(config.get("shortlist_limit", 3)))
        self.accept_similarity = config.get("accept_similarity", 90)
        self.accept_confidence = str(config.get("accept_confidence", "high")).lower()

    def build_payload(self, prompt: str, data_url_a: str, data_url_b: str) -> Dict[str, Any]:
        return self.chat_payload(
            MATCH_SYSTEM_PROMPT,
            [{"type": "text", "text": prompt}, self.image_content(data_url_a), self.image_content(data_url_b)],
        )

    def match(self, photo_a: MatchPhoto, photo_b: MatchPhoto) -> Optional[VisionMatch]:
        """
        Compare two photos.

        Returns:
            VisionMatch, or None when either photo cannot be encoded or the
            server gives no usable verdict
        """
        if self.session is None:
            return None

        data_url_a = ImageEncoder.to_data_url(photo_a.image_bytes, self.jpeg_quality) if photo_a.image_bytes else None
        data_url_b = ImageEncoder.to_data_url(photo_b.image_bytes, self.jpeg_quality) if photo_b.image_bytes else None
        if data_url_a is None or data_url_b is None:
            logger.warning("Both photos are required for a vision comparison")
            return None

        prompt, minutes = build_comparison_prompt(photo_a, photo_b)
        content = self._request(self.build_payload(prompt, data_url_a, data_url_b))
        if content is None:
            return None
        return parse_match_response(content, minutes)

    def accepts(self, match: VisionMatch) -> bool:
        confident = self.accept_confidence == "any" or match.confidence.lower() == "high"
        return match.similarity >= self.accept_similarity and confident and not match.fatal_mismatch

    def verify_shortlist(
        self,
        photo: Optional[MatchPhoto],
        shortlist: Sequence[CandidateSummary],
        references: Mapping[GroupID, MatchPhoto]
    ) -> VisionVerification:
        """
        Compare a new photo with the representative photo of each shortlisted
        group in order, stopping at the first group the model accepts.

        Args:
            photo: The new photo and its description
            shortlist: Candidate groups, best first
            references: Representative photo per group id

        Returns:
            VisionVerification; ``applied`` is False when nothing could be
            compared and ``error`` is set when a comparison failed
        """
        if not shortlist:
            return VisionVerification(reason="empty_shortlist")
        if not self.api_key:
            return VisionVerification(reason="missing_api_key")
        if photo is None or not photo.image_bytes:
            return VisionVerification(reason="missing_candidate_image")

        comparisons: List[VisionComparison] = []
        for entry in shortlist[:self.shortlist_limit]:
            reference = references.get(entry.group_id)
            if reference is None or not reference.image_bytes:
                comparisons.append(VisionComparison(
                    group_id=entry.group_id,
                    probability=entry.probability,
                    skipped=True,
                    reason="missing_reference_image",
                ))
                continue

            result = self.match(photo, reference)
            if result is None:
                return VisionVerification(
                    applied=True,
                    reason="vision_error",
                    comparisons=comparisons,
                    error="Vision comparison failed",
                )

            comparisons.append(VisionComparison(
                group_id=entry.group_id,
                probability=entry.probability,
                similarity=result.similarity,
                confidence=result.confidence,
                fatal_mismatch=result.fatal_mismatch,
                reasoning=result.reasoning,
            ))
            if self.accepts(result):
                logger.info(f"Vision check approved group {entry.group_id} at {result.similarity}% "
                            f"({result.confidence})")
                return VisionVerification(applied=True, approved_group_id=entry.group_id, comparisons=comparisons)

        logger.info(f"Vision check rejected all {len(comparisons)} shortlisted group(s)")
        return VisionVerification(applied=True, comparisons=comparisons)
