"""
Person description provider backed by a vision chat-completions server.
"""

import json
from typing import Any, Dict, Optional

from loguru import logger

from ..reid.normalizer import missing_required_fields, normalize_description, normalize_score_field
from ..reid.metrics import finite_or_zero
from ..reid_types import PersonDescription
from ..utils.image_encoder import ImageEncoder
from .base import BaseDescriptionProvider
from .vision_client import VisionChatClient

SYSTEM_PROMPT = " ".join([
    "You are a descriptor that turns a single cropped photo of a person into a machine-readable "
    "structured description plus a short natural-language summary.",
    "Output must be valid JSON matching the description_schema below, and nothing else.",
    "Each numeric field must be an integer.",
    "Use the standardized vocabularies specified.",
    "Do not include analysis or extra text.",
    'If a value is not visible, use the explicit string "unknown".',
    "For each trait include a confidence integer 0-100 (0 = no confidence, 100 = certain).",
    'For clothing and accessories include a permanence value which must be one of "stable", '
    '"possibly_removable", or "removable".',
    "For distinctive marks, include rarity_score 0-100 (0 = common, 100 = unique).",
    "At the end, include natural_summary, a 10-14 short-sentence human readable description "
    "(factual, no background or pose).",
    "Follow the description_schema exactly.",
    "Provide a top-level image_clarity integer (0-100) representing visual sharpness and "
    "unobstructed view (0 = unusable/blurry, 100 = perfect).",
])

_GARMENT = (
    '{"description":"<text or \'unknown\'>","color":"<normalized color or \'unknown\'>",'
    '"permanence":"stable|possibly_removable|removable","confidence":0-100,"rare_flag":true|false}'
)

SCHEMA_PROMPT = "\n".join([
    'Describe the person in this cropped photo. Produce only JSON with shape '
    '{"description_schema": {...}, "image_clarity": 0-100} that matches this schema:',
    "",
    "{",
    '  "description_schema": {',
    '    "visible_area": "one of [head_torso, full_body, upper_body, head_only, lower_body]",',
    '    "gender_presentation": {"value": "male|female|androgynous|unknown", "confidence": 0-100},',
    '    "age_band": {"value": "18-24|25-34|35-44|45-54|55+", "confidence": 0-100},',
    '    "build": {"value": "slim|average|muscular|stocky|unknown", "confidence": 0-100},',
    '    "height_impression": {"value": "short|average|tall|unknown", "confidence": 0-100},',
    '    "skin_tone": {"value": "very_light|light|medium|tan|brown|dark|unknown", "confidence": 0-100},',
    '    "hair": {',
    '      "color": {"value": "<one of normalized colors>", "confidence": 0-100},',
    '      "length": {"value": "buzz|very_short|short|medium|long|unknown", "confidence": 0-100},',
    '      "style": {"value": "<short text up to 6 words or \'unknown\'>", "confidence": 0-100},',
    '      "facial_hair": {"value": "none|stubble|beard|mustache|goatee|unknown", "confidence": 0-100}',
    "    },",
    '    "clothing": {',
    f'      "top": {_GARMENT},',
    f'      "jacket": {_GARMENT},',
    f'      "trousers": {_GARMENT},',
    f'      "shoes": {_GARMENT},',
    f'      "dress": {_GARMENT}',
    "    },",
    '    "accessories": [',
    '      {"type":"hat|glasses|bag|scarf|necklace|ring|watch|other","description":"<text or \'unknown\'>",'
    '"location":"<left/right/neck/hand/unknown>","permanence":"stable|possibly_removable|removable",'
    '"confidence":0-100,"rare_flag":true|false}',
    "    ],",
    '    "distinctive_marks": [',
    '      {"type":"tattoo|scar|stain|logo|tear|unique_print|other","description":"<text>",'
    '"location":"<left chest|right sleeve|left thigh|back|face|hand|unknown>","rarity_score":0-100,"confidence":0-100}',
    "    ],",
    '    "distinctiveness_score": 0-100,',
    '    "lighting_uncertainty": 0-100,',
    '    "visible_confidence": 0-100,',
    '    "natural_summary":"<10-14 short sentences>"',
    "  }",
    "}",
    "",
    "Normalized color vocabulary (only these strings):",
    "black, white, grey, navy, dark_blue, blue, light_blue, red, burgundy, green, olive, tan, beige, brown, "
    "blonde, dark_blonde, light_brown, auburn, chestnut, ginger, pink, purple, unknown",
    "",
    'Use "unknown" explicitly for traits not visible. Omitting keys is not allowed.',
    "permanence: if an item is unlikely to change within 1 hour (trousers, shoes, heavy jacket) mark stable; "
    "scarves, hats, sunglasses commonly possibly_removable or removable.",
    "rare_flag must be true if the item is visually unusual (unique logo, clear tear, unusual pattern "
    "placement, distinctive jewellery).",
    "distinctiveness_score = 0-100 summary of how many high-confidence unique cues exist.",
    "lighting_uncertainty = 0 if color is clear, up to 100 if heavily tinted/unclear.",
    "visible_confidence = overall confidence 0-100 that visible traits were read correctly.",
    "image_clarity must be an integer 0-100 (0 = unusable/blurry, 100 = perfectly sharp).",
    "Produce only the JSON document. Nothing else.",
])


def sanitize_clarity(value: Any) -> Optional[int]:
    """0-100 integer, or None when the value is missing or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        float(value)
    except (TypeError, ValueError):
        return None
    if finite_or_zero(value) != float(value):
        return None
    return normalize_score_field(value)


class VisionDescriber(VisionChatClient, BaseDescriptionProvider):
    """Structured person description from an OpenAI-compatible vision chat-completions server."""

    def build_payload(self, image_data_url: str) -> Dict[str, Any]:
        return self.chat_payload(
            SYSTEM_PROMPT,
            [{"type": "text", "text": SCHEMA_PROMPT}, self.image_content(image_data_url)],
        )

    def parse_response(self, content: Optional[str]) -> Optional[PersonDescription]:
        """Validate the JSON document returned by the model and normalise it."""
        if not content:
            logger.warning("Description response was empty")
            return None
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse description JSON: {e}; content: {content[:400]}")
            return None

        schema = parsed.get("description_schema") if isinstance(parsed, dict) else None
        if not isinstance(schema, dict):
            logger.warning("Description schema missing or invalid")
            return None

        clarity = sanitize_clarity(parsed.get("image_clarity"))
        if clarity is None:
            logger.warning("image_clarity missing or invalid")
            return None

        summary = schema.get("natural_summary")
        if not isinstance(summary, str) or not summary.strip():
            logger.warning("natural_summary missing in schema")
            return None

        missing = missing_required_fields(parsed)
        if missing:
            logger.warning(f"Description schema missing required keys: {', '.join(missing)}")
            return None

        return normalize_description(dict(schema, image_clarity=clarity))

    def describe(self, image_bytes: bytes) -> Optional[PersonDescription]:
        """Describe the person in a photo using the vision server."""
        if self.session is None:
            return None

        data_url = ImageEncoder.to_data_url(image_bytes, self.jpeg_quality)
        if data_url is None:
            return None

        content = self._request(self.build_payload(data_url))
        if content is None:
            return None
        return self.parse_response(content)

