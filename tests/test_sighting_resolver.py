"""
Tests for SightingResolver with a fake description provider.
"""

import pytest

from sightgroup.features.base import BaseDescriptionProvider
from sightgroup.features.vision_matcher import VisionMatcher
from sightgroup.reid.explanation import unpack_explanation_with_details
from sightgroup.reid.group_repository import InMemoryGroupRepository
from sightgroup.reid.sighting_resolver import SightingResolver, read_image_ref
from sightgroup.reid_config import get_section, merge_config
from sightgroup.reid_types import VisionMatch

from conftest import build_description, trait


class FakeProvider(BaseDescriptionProvider):
    """Returns canned descriptions keyed by the image bytes."""

    def __init__(self, descriptions):
        self.descriptions = descriptions
        self.calls = []

    def initialize(self, config: dict) -> None:
        pass

    def describe(self, image_bytes):
        self.calls.append(image_bytes)
        return self.descriptions.get(image_bytes)

    def cleanup(self) -> None:
        pass


@pytest.fixture
def provider():
    return FakeProvider({
        b"man": build_description(),
        b"man-again": build_description(image_clarity=95),
        b"woman": build_description(gender_presentation=trait("female", 95)),
    })


@pytest.fixture
def repository():
    return InMemoryGroupRepository()


@pytest.fixture
def resolver(provider, repository, config):
    return SightingResolver(provider, repository, config)


def test_first_photo_creates_group(resolver, repository):
    outcome = resolver.resolve(b"man", image_ref="man.jpg")

    assert outcome.status == "created"
    assert outcome.identifier == "AA"
    assert outcome.probability == 0
    assert outcome.clarity == 100
    assert len(repository.list_groups()) == 1


def test_same_person_is_matched(resolver, repository):
    created = resolver.resolve(b"man", image_ref="man.jpg")
    matched = resolver.resolve(b"man-again", image_ref="again.jpg")

    assert matched.status == "matched"
    assert matched.group_id == created.group_id
    assert matched.identifier == "AA"
    assert matched.probability == 57
    assert matched.result.best_group_id == created.group_id
    assert repository.get_group(created.group_id).member_count == 2


def test_fatal_mismatch_opens_new_group(resolver, repository):
    resolver.resolve(b"man")
    outcome = resolver.resolve(b"woman")

    assert outcome.status == "created"
    assert outcome.identifier == "AB"
    assert outcome.result.best_candidate.fatal_mismatch.type == "gender"
    assert len(repository.list_groups()) == 2


def test_undescribable_photo_is_not_stored(resolver, repository):
    outcome = resolver.resolve(b"blurry smudge")

    assert outcome.status == "unclear"
    assert outcome.group_id is None
    assert repository.list_sightings() == []


def test_compare_photos_stores_nothing(resolver, repository):
    same = resolver.compare_photos(b"man", b"man-again")
    different = resolver.compare_photos(b"man", b"woman")

    assert same.same_person
    assert not different.same_person
    assert different.fatal_mismatch.type == "gender"
    assert repository.list_sightings() == []


def test_neighbors(resolver):
    resolver.resolve(b"man", image_ref="man.jpg")
    resolver.resolve(b"woman", image_ref="woman.jpg")

    neighbors = resolver.neighbors(b"man-again")
    assert [n.representative_image for n in neighbors] == ["man.jpg"]


def test_statistics(resolver):
    resolver.resolve(b"man")
    resolver.resolve(b"man-again")
    resolver.resolve(b"woman")
    resolver.resolve(b"nothing")

    assert resolver.get_statistics() == {"matched": 1, "created": 2, "unclear": 1}


def test_explanation_is_stored_with_sighting(resolver, repository):
    resolver.resolve(b"man", image_ref="man.jpg")
    matched = resolver.resolve(b"man-again", image_ref="again.jpg")

    first, second = repository.list_sightings()
    assert first.explanation == ""
    text, details = unpack_explanation_with_details(second.explanation)
    assert text == matched.result.explanation
    assert details == matched.result.explanation_details


def test_read_image_ref(tmp_path):
    path = tmp_path / "man.jpg"
    path.write_bytes(b"jpeg bytes")

    assert read_image_ref(str(path)) == b"jpeg bytes"
    assert read_image_ref(str(tmp_path / "missing.jpg")) is None
    assert read_image_ref("https://example.com/man.jpg") is None
    assert read_image_ref(None) is None


def load_photo(image_ref):
    return f"photo of {image_ref}".encode() if image_ref else None


@pytest.fixture
def matcher(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    matcher = VisionMatcher(get_section(None, "matcher"))
    yield matcher
    matcher.cleanup()


@pytest.fixture
def verdicts(monkeypatch, matcher):
    """Canned model verdicts returned in order in place of HTTP calls."""
    queue = []
    calls = []

    def fake_match(photo_a, photo_b):
        calls.append((photo_a, photo_b))
        return queue.pop(0)

    monkeypatch.setattr(matcher, "match", fake_match)
    return queue, calls


@pytest.fixture
def vision_resolver(provider, repository, config, matcher):
    return SightingResolver(provider, repository, config, matcher=matcher, image_loader=load_photo)


class TestVisionVerification:

    def test_first_photo_is_not_checked(self, vision_resolver, verdicts):
        _, calls = verdicts
        outcome = vision_resolver.resolve(b"man", image_ref="man.jpg")

        assert outcome.status == "created"
        assert outcome.vision is None
        assert calls == []

    def test_approval_keeps_match(self, vision_resolver, repository, verdicts):
        queue, calls = verdicts
        queue.append(VisionMatch(similarity=95, confidence="high"))
        created = vision_resolver.resolve(b"man", image_ref="man.jpg")

        outcome = vision_resolver.resolve(b"man-again", image_ref="again.jpg")

        assert outcome.status == "matched"
        assert outcome.group_id == created.group_id
        assert outcome.probability == 57
        assert outcome.vision.approved_group_id == created.group_id
        new_photo, reference = calls[0]
        assert new_photo.image_bytes == b"man-again"
        assert reference.image_bytes == b"photo of man.jpg"
        assert reference.description == repository.get_group(created.group_id).canonical

        text, details = unpack_explanation_with_details(repository.list_sightings()[1].explanation)
        assert text.startswith(outcome.result.explanation)
        assert text.endswith(f"Vision approval: group {created.group_id} confirmed.")
        assert details == outcome.result.explanation_details

    def test_rejection_opens_new_group(self, vision_resolver, repository, verdicts):
        queue, _ = verdicts
        queue.append(VisionMatch(similarity=40, confidence="high", reasoning="- Different shoes"))
        vision_resolver.resolve(b"man", image_ref="man.jpg")

        outcome = vision_resolver.resolve(b"man-again", image_ref="again.jpg")

        assert outcome.status == "created"
        assert outcome.identifier == "AB"
        assert outcome.result.best_group_id is not None
        assert len(repository.list_groups()) == 2
        assert repository.list_sightings()[1].explanation.endswith(
            "Vision verification rejected all shortlisted groups."
        )

    def test_approval_of_near_miss(self, provider, repository, matcher, verdicts):
        queue, _ = verdicts
        queue.append(VisionMatch(similarity=92, confidence="high"))
        config = merge_config({"grouping": {"norm_pro_min": 90}})
        resolver = SightingResolver(provider, repository, config, matcher=matcher, image_loader=load_photo)
        created = resolver.resolve(b"man", image_ref="man.jpg")

        outcome = resolver.resolve(b"man-again", image_ref="again.jpg")

        assert outcome.result.best_group_id is None
        assert outcome.status == "matched"
        assert outcome.group_id == created.group_id
        assert outcome.probability == 92

    def test_failure_keeps_engine_decision(self, vision_resolver, repository, verdicts):
        queue, _ = verdicts
        queue.append(None)
        created = vision_resolver.resolve(b"man", image_ref="man.jpg")

        outcome = vision_resolver.resolve(b"man-again", image_ref="again.jpg")

        assert outcome.status == "matched"
        assert outcome.group_id == created.group_id
        assert outcome.vision.error == "Vision comparison failed"
        assert "Vision verification failed" in repository.list_sightings()[1].explanation

    def test_missing_reference_image_keeps_engine_decision(self, provider, repository, config, matcher, verdicts):
        _, calls = verdicts
        resolver = SightingResolver(provider, repository, config, matcher=matcher, image_loader=lambda ref: None)
        created = resolver.resolve(b"man", image_ref="man.jpg")

        outcome = resolver.resolve(b"man-again", image_ref="again.jpg")

        assert outcome.status == "matched"
        assert outcome.group_id == created.group_id
        assert outcome.vision.comparisons[0].reason == "missing_reference_image"
        assert calls == []

    def test_vetoed_groups_are_not_checked(self, vision_resolver, verdicts):
        _, calls = verdicts
        vision_resolver.resolve(b"man", image_ref="man.jpg")

        outcome = vision_resolver.resolve(b"woman", image_ref="woman.jpg")

        assert outcome.status == "created"
        assert not outcome.vision.applied
        assert outcome.vision.reason == "empty_shortlist"
        assert calls == []

    def test_vision_compare_photos(self, vision_resolver, repository, verdicts):
        queue, calls = verdicts
        queue.append(VisionMatch(similarity=12, confidence="high", fatal_mismatch="gender"))

        match = vision_resolver.vision_compare_photos(b"man", b"woman")

        assert match.fatal_mismatch == "gender"
        photo_a, photo_b = calls[0]
        assert photo_a.description.gender_presentation.value == "male"
        assert photo_b.description.gender_presentation.value == "female"
        assert repository.list_sightings() == []

    def test_vision_compare_requires_matcher(self, resolver):
        with pytest.raises(ValueError):
            resolver.vision_compare_photos(b"man", b"woman")
