"""
Default configuration for the sighting re-identification system.

Every component reads its own section of this nested dictionary with
``section.get(key, default)``; a YAML file loaded by ``main.load_config`` is
deep-merged over these values so partial files are accepted.
"""

import copy
from typing import Any, Dict, Optional

DEFAULT_CONFIG: Dict[str, Any] = {
    "grouping": {
        # Raw pro/contra thresholds, used by the clarity override
        "pro_min": 120,
        "contra_max": 40,
        # Diminishing-returns normalisation
        "pro_soft_max": 180,
        "contra_soft_max": 120,
        "norm_pro_min": 35,
        "norm_contra_max": 40,
        "tie_delta": 6,
        "shortlist_limit": 3,
        # Floor for the probability reported on a clarity override
        "match_threshold": 60,
    },
    "weights": {
        "clothing_pro_cap_ratio": 1.0,
        "clothing_pro_cap": None,  # absolute cap; None derives it from pro_min
        "rare_min_rarity": 60,
    },
    "fatal": {
        "enabled": True,
        "confidence_product_threshold": 0.49,  # ~0.7 * 0.7
        "mark_min_confidence": 70,
        "min_clarity_for_hair": 60,
    },
    "override": {
        "clarity_delta": 5,
        "pro_slack": 5,
        "contra_slack": 5,
        "min_new_clarity": 60,
    },
    "describer": {
        "server_url": "https://api.openai.com",
        "model_name": "gpt-4o-mini",
        "api_key_env": "OPENAI_API_KEY",
        "timeout": 60,
        "retries": 2,
        "max_tokens": 900,
        "temperature": 0.1,
        "jpeg_quality": 90,
        "image_detail": "low",
    },
    # Optional photo-to-photo check of the shortlist by a vision model
    "matcher": {
        "enabled": False,
        "server_url": "https://api.openai.com",
        "model_name": "gpt-4o-mini",
        "api_key_env": "OPENAI_API_KEY",
        "timeout": 60,
        "retries": 2,
        "max_tokens": 350,
        "temperature": 0.1,
        "jpeg_quality": 90,
        "image_detail": "low",
        "shortlist_limit": 3,
        "accept_similarity": 90,
        "accept_confidence": "high",  # "any" accepts every confidence level
    },
    "database": {
        "db_path": "data/sightings.db",
    },
    "logging": {
        "level": "INFO",
        "output_dir": "logs",
    },
}


def get_section(config: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    """One section of ``config`` with missing keys filled from the defaults."""
    section = dict(DEFAULT_CONFIG.get(name, {}))
    if config:
        section.update(config.get(name) or {})
    return section


def merge_config(overrides: Optional[Dict[str, Any]] = None, base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Deep-merge ``overrides`` over ``base`` (the defaults) without mutating either."""
    merged = copy.deepcopy(base if base is not None else DEFAULT_CONFIG)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(value, merged[key])
        else:
            merged[key] = copy.deepcopy(value)
    return merged
