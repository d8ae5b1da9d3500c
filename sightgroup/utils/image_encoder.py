"""
Utility for preparing photos for the vision server.
"""

import base64
import io
from typing import Optional

from PIL import Image, UnidentifiedImageError
from loguru import logger


class ImageEncoder:
    """Re-encodes arbitrary image bytes as a JPEG data URL."""

    @staticmethod
    def to_jpeg_bytes(image_bytes: bytes, quality: int = 90) -> Optional[bytes]:
        """
        Decode an image and re-encode it as RGB JPEG.

        Args:
            image_bytes: Encoded image in any format Pillow reads
            quality: JPEG quality (1-95)

        Returns:
            JPEG bytes or None if the input is not a readable image
        """
        if not image_bytes:
            return None
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                rgb = image.convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Unreadable image: {e}")
            return None

        buffer = io.BytesIO()
        rgb.save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue()

    @staticmethod
    def to_data_url(image_bytes: bytes, quality: int = 90) -> Optional[str]:
        jpeg = ImageEncoder.to_jpeg_bytes(image_bytes, quality)
        if jpeg is None:
            return None
        return f"data:image/jpeg;base64,{base64.b64encode(jpeg).decode('utf-8')}"
