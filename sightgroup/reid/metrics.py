"""
Numeric helpers shared by the evidence scorer, fatal gate and grouping engine.

Any non-finite input is treated as zero so NaN or infinity never leaks into a
returned score.
"""

import math
from typing import Any

import numpy as np

NORMALIZED_SCORE_SCALE = 100.0


def finite_or_zero(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def clamp(value: float, low: float, high: float) -> float:
    return float(np.clip(finite_or_zero(value), low, high))


def confidence_product(confidence_a: Any, confidence_b: Any) -> float:
    """Combined confidence of two observations, both given on a 0-100 scale."""
    return clamp((finite_or_zero(confidence_a) / 100.0) * (finite_or_zero(confidence_b) / 100.0), 0.0, 1.0)


def visibility_factor(visible_confidence: Any) -> float:
    """Dampens contributions from low-visibility photos, never below 0.3."""
    return clamp(finite_or_zero(visible_confidence) / 100.0, 0.3, 1.0)


def normalize_score(value: Any, soft_max: Any, scale: float = NORMALIZED_SCORE_SCALE) -> float:
    """Compress an unbounded accumulator onto [0, scale] with ``raw / (raw + soft_max)``."""
    safe_value = max(0.0, finite_or_zero(value))
    safe_cap = max(1.0, finite_or_zero(soft_max))
    return clamp(safe_value / (safe_value + safe_cap) * scale, 0.0, scale)


def round_half_up(value: Any, digits: int = 0) -> float:
    """Round exact halves upward (2.5 -> 3, -2.5 -> -2) instead of to the nearest even number."""
    factor = 10 ** digits
    return math.floor(finite_or_zero(value) * factor + 0.5) / factor


def normalized_probability(norm_pro: Any, norm_contra: Any) -> int:
    pro = clamp(norm_pro, 0.0, 100.0)
    contra = clamp(norm_contra, 0.0, 100.0)
    return int(clamp(round_half_up(pro * (1 - contra / 100.0)), 0, 100))


def one_decimal(value: Any) -> float:
    return round_half_up(value, 1)


def rounded(value: Any) -> int:
    return int(round_half_up(value))
