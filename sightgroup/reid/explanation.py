"""
Human-readable and machine-readable explanations of grouping decisions.

The detail record travels inside the stored explanation text between two
sentinel lines so a single text column can hold both.
"""

import json
from typing import List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from ..reid_types import (
    ClarityPair,
    Contribution,
    EvidenceBreakdown,
    ExplanationDetails,
    NormalizedScores,
    VisionVerification,
)
from .metrics import rounded

SENTINEL_START = "\n\n===SCORE_BREAKDOWN_JSON_START===\n"
SENTINEL_END = "\n===SCORE_BREAKDOWN_JSON_END===\n"

CATEGORIES = ("clothing", "physical", "hair", "rare")


def clothing_cap_note(breakdown: EvidenceBreakdown) -> Optional[str]:
    if breakdown.clothing_pro_raw > breakdown.clothing_pro_applied:
        return f"capped at {rounded(breakdown.clothing_pro_applied)} of {rounded(breakdown.clothing_pro_raw)}"
    return None


def contributions(breakdown: EvidenceBreakdown) -> Tuple[List[Contribution], List[Contribution]]:
    """Rounded non-zero pro and contra contributions, one per category."""
    pros, contras = [], []
    for category in CATEGORIES:
        pro = rounded(getattr(breakdown, f"{category}_pro"))
        if pro > 0:
            note = clothing_cap_note(breakdown) if category == "clothing" else None
            pros.append(Contribution(category=category, value=pro, note=note))
        contra = rounded(getattr(breakdown, f"{category}_contra"))
        if contra > 0:
            contras.append(Contribution(category=category, value=contra))
    return pros, contras


def format_contributions(items: List[Contribution]) -> str:
    """``clothing 96 (capped at 120 of 150), hair 12`` or ``none``."""
    if not items:
        return "none"
    parts = []
    for item in items:
        text = f"{item.category} {item.value}"
        if item.note:
            text += f" ({item.note})"
        parts.append(text)
    return ", ".join(parts)


def build_details(
    breakdown: EvidenceBreakdown,
    pro_score: float,
    contra_score: Optional[float],
    normalized: NormalizedScores,
    clarity: ClarityPair,
    fallback_reason: Optional[str] = None
) -> ExplanationDetails:
    pros, contras = contributions(breakdown)
    return ExplanationDetails(
        raw_scores={"pro": rounded(pro_score), "contra": None if contra_score is None else rounded(contra_score)},
        normalized=normalized,
        pro_contributions=pros,
        contra_contributions=contras,
        clarity=clarity,
        fallback_applied=fallback_reason is not None,
        fallback_reason=fallback_reason,
    )


def pack_explanation_with_details(explanation: Optional[str], details: Optional[ExplanationDetails]) -> str:
    """Append the JSON detail record to the explanation text."""
    if details is None:
        return explanation or ""
    serialized = details.model_dump_json()
    return f"{explanation or ''}{SENTINEL_START}{serialized}{SENTINEL_END}"


def unpack_explanation_with_details(packed: Optional[str]) -> Tuple[str, Optional[ExplanationDetails]]:
    """
    Split a packed explanation into its text and detail record.

    Text without sentinels is returned unchanged with no details; a corrupt
    JSON block is logged and dropped.
    """
    if not packed:
        return packed or "", None

    start = packed.find(SENTINEL_START)
    end = packed.find(SENTINEL_END)
    if start == -1 or end == -1 or end <= start:
        return packed, None

    text = packed[:start].rstrip()
    payload = packed[start + len(SENTINEL_START):end].strip()
    details = None
    if payload:
        try:
            details = ExplanationDetails.model_validate(json.loads(payload))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Failed to parse grouping explanation details: {e}")

    trailing = packed[end + len(SENTINEL_END):].strip()
    if trailing:
        text = f"{text}\n{trailing}".strip()
    return text, details


def build_vision_summary(verification: Optional[VisionVerification]) -> str:
    """One paragraph describing what the photo-to-photo check did; empty when it had nothing to check."""
    if verification is None:
        return ""

    if not verification.applied:
        if verification.reason == "empty_shortlist":
            return ""
        if verification.reason == "missing_api_key":
            return "Vision verification skipped: API key not configured."
        if verification.reason == "missing_candidate_image":
            return "Vision verification skipped: candidate image unavailable."
        return f"Vision verification skipped: {verification.reason or 'unknown reason'}."

    if not verification.comparisons:
        if verification.error:
            return f"Vision verification failed: {verification.error}"
        return "Vision verification ran but produced no comparisons."

    lines = []
    for comparison in verification.comparisons:
        if comparison.skipped:
            lines.append(f"Vision check skipped for group {comparison.group_id}: "
                         f"{comparison.reason or 'unknown reason'}.")
            continue
        if comparison.fatal_mismatch:
            status = f"fatal mismatch ({comparison.fatal_mismatch})"
        else:
            status = f"{comparison.similarity}% ({comparison.confidence or 'unknown'})"
        reasoning = " ".join((comparison.reasoning or "").split())
        line = f"Vision check vs group {comparison.group_id}: {status}."
        lines.append(f"{line} Reasoning: {reasoning}" if reasoning else line)

    if verification.error:
        lines.append(f"Vision verification failed: {verification.error}")
    elif verification.approved_group_id is not None:
        lines.append(f"Vision approval: group {verification.approved_group_id} confirmed.")
    elif all(comparison.skipped for comparison in verification.comparisons):
        lines.append("Vision verification compared no photos.")
    else:
        lines.append("Vision verification rejected all shortlisted groups.")
    return " ".join(lines)
