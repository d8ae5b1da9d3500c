"""
Group repository for person sightings.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from loguru import logger

from ..reid_types import (
    GroupID,
    GroupNotFoundError,
    PersonDescription,
    PersonGroup,
    Sighting,
)
from .clarity import compute_clarity

IDENTIFIER_BASE = 26
IDENTIFIER_MIN_LENGTH = 2


def identifier_to_number(identifier: Optional[str]) -> Optional[int]:
    """Base-26 value of a label (AA is 0, AB is 1); None for anything that is not letters."""
    if not isinstance(identifier, str) or not identifier.strip():
        return None
    value = 0
    for char in identifier.strip().upper():
        if not "A" <= char <= "Z":
            return None
        value = value * IDENTIFIER_BASE + (ord(char) - ord("A"))
    return value


def number_to_identifier(value: int) -> str:
    if not isinstance(value, int) or value < 0:
        raise ValueError(f"Invalid identifier value: {value}")
    digits = []
    while True:
        value, digit = divmod(value, IDENTIFIER_BASE)
        digits.insert(0, digit)
        if value == 0:
            break
    while len(digits) < IDENTIFIER_MIN_LENGTH:
        digits.insert(0, 0)
    return "".join(chr(ord("A") + digit) for digit in digits)


def next_identifier(existing: Iterable[Optional[str]]) -> str:
    """Next free two-letter group label after the highest one in use."""
    numbers = [n for n in (identifier_to_number(i) for i in existing) if n is not None]
    if not numbers:
        return "AA"
    return number_to_identifier(max(numbers) + 1)


def collect_groups_with_representatives(
    sightings: Iterable[Sighting],
    identifiers: Optional[Dict[GroupID, str]] = None
) -> List[PersonGroup]:
    """
    Fold sighting rows into one PersonGroup per group id.

    The canonical description is the highest-clarity sighting; a later
    sighting replaces it only with strictly higher clarity. The representative
    image follows the canonical when that sighting has one.
    """
    identifiers = identifiers or {}
    groups: Dict[GroupID, PersonGroup] = {}
    for sighting in sightings:
        if sighting.group_id is None or sighting.description is None:
            continue
        clarity = compute_clarity(sighting.description)
        group = groups.get(sighting.group_id)
        if group is None:
            groups[sighting.group_id] = PersonGroup(
                group_id=sighting.group_id,
                identifier=identifiers.get(sighting.group_id),
                canonical=sighting.description,
                member_count=1,
                representative_image=sighting.image_ref,
                representative_captured_at=sighting.captured_at if sighting.image_ref else None,
                canonical_clarity=clarity,
            )
            continue

        group.member_count += 1
        if group.canonical_clarity is None or clarity > group.canonical_clarity:
            group.canonical = sighting.description
            group.canonical_clarity = clarity
            if sighting.image_ref:
                group.representative_image = sighting.image_ref
                group.representative_captured_at = sighting.captured_at
        elif not group.representative_image and sighting.image_ref:
            group.representative_image = sighting.image_ref
            group.representative_captured_at = sighting.captured_at
    return list(groups.values())


class BaseGroupRepository(ABC):
    """Abstract base class for person group storage."""

    @abstractmethod
    def initialize(self, config: dict) -> None:
        """Initialize the repository with configuration."""
        pass

    @abstractmethod
    def list_groups(self) -> List[PersonGroup]:
        """All groups with their current canonical descriptions."""
        pass

    @abstractmethod
    def get_group(self, group_id: GroupID) -> Optional[PersonGroup]:
        """Get a group by id."""
        pass

    @abstractmethod
    def create_group(
        self,
        description: PersonDescription,
        image_ref: Optional[str] = None,
        explanation: Optional[str] = None
    ) -> PersonGroup:
        """Create a new group whose first sighting is ``description``."""
        pass

    @abstractmethod
    def attach(
        self,
        group_id: GroupID,
        description: PersonDescription,
        image_ref: Optional[str] = None,
        explanation: Optional[str] = None
    ) -> PersonGroup:
        """
        Add a sighting to an existing group.

        Raises:
            GroupNotFoundError: if the group does not exist
        """
        pass

    @abstractmethod
    def list_sightings(self, group_id: Optional[GroupID] = None) -> List[Sighting]:
        """Stored sightings, optionally restricted to one group."""
        pass

    def close(self) -> None:
        """Release any held resources."""
        pass


class InMemoryGroupRepository(BaseGroupRepository):
    """Process-local repository; mutations are serialised with a lock."""

    def __init__(self, config: Optional[dict] = None):
        self.config = config or {}
        self.initialize(self.config)

    def initialize(self, config: dict) -> None:
        self._lock = threading.Lock()
        self._sightings: List[Sighting] = []
        self._identifiers: Dict[GroupID, str] = {}
        self._next_group_id = 1
        self._next_sighting_id = 1

    def _add_sighting(
        self,
        group_id: GroupID,
        description: PersonDescription,
        image_ref: Optional[str],
        explanation: Optional[str]
    ) -> None:
        self._sightings.append(Sighting(
            sighting_id=self._next_sighting_id,
            group_id=group_id,
            description=description,
            image_ref=image_ref,
            explanation=explanation,
        ))
        self._next_sighting_id += 1

    def _group(self, group_id: GroupID) -> Optional[PersonGroup]:
        rows = [s for s in self._sightings if s.group_id == group_id]
        groups = collect_groups_with_representatives(rows, self._identifiers)
        return groups[0] if groups else None

    def list_groups(self) -> List[PersonGroup]:
        with self._lock:
            return collect_groups_with_representatives(self._sightings, self._identifiers)

    def get_group(self, group_id: GroupID) -> Optional[PersonGroup]:
        with self._lock:
            return self._group(group_id)

    def create_group(
        self,
        description: PersonDescription,
        image_ref: Optional[str] = None,
        explanation: Optional[str] = None
    ) -> PersonGroup:
        with self._lock:
            group_id = self._next_group_id
            self._next_group_id += 1
            self._identifiers[group_id] = next_identifier(self._identifiers.values())
            self._add_sighting(group_id, description, image_ref, explanation)
            logger.info(f"Created group {group_id} ({self._identifiers[group_id]})")
            return self._group(group_id)

    def attach(
        self,
        group_id: GroupID,
        description: PersonDescription,
        image_ref: Optional[str] = None,
        explanation: Optional[str] = None
    ) -> PersonGroup:
        with self._lock:
            if group_id not in self._identifiers:
                raise GroupNotFoundError(f"Group {group_id} not found")
            self._add_sighting(group_id, description, image_ref, explanation)
            return self._group(group_id)

    def list_sightings(self, group_id: Optional[GroupID] = None) -> List[Sighting]:
        with self._lock:
            return [s for s in self._sightings if group_id is None or s.group_id == group_id]
