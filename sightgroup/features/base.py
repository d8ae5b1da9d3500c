"""
Base classes for description providers.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..reid_types import PersonDescription


class BaseDescriptionProvider(ABC):
    """Abstract base class for services that describe the person in a photo."""

    @abstractmethod
    def initialize(self, config: dict) -> None:
        """Initialize the provider with configuration."""
        pass

    @abstractmethod
    def describe(self, image_bytes: bytes) -> Optional[PersonDescription]:
        """
        Describe the person in a cropped photo.

        Args:
            image_bytes: Encoded image (JPEG, PNG, ...) showing one person

        Returns:
            Normalised PersonDescription, or None if the photo could not be
            described
        """
        pass

    @abstractmethod
    def cleanup(self) -> None:
        """Clean up resources (e.g., HTTP sessions)."""
        pass
