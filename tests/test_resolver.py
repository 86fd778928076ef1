"""Tests for merchant mapping resolution."""

import asyncio
from uuid import uuid4

import pytest

from conftest import (
    DINING_ID,
    GROCERIES_ID,
    SHOPPING_ID,
    FailingMappingStorage,
    FixedScorer,
    seeded_categories,
)
from expense_ledger.categorization import (
    MappingResolutionError,
    MappingResolver,
    ResolutionErrorCode,
)
from expense_ledger.models.categorization import MatchType


def add_mapping(storage, user_id, key, category_id):
    mapping, _ = asyncio.run(storage.upsert_mapping(user_id, key, category_id))
    return mapping


class TestExactMatch:
    """Tests for the exact lookup stage."""

    def test_exact_match_has_full_confidence(self, storage, user_id):
        """Test that a normalized label hitting a key is an exact match."""
        mapping = add_mapping(storage, user_id, "starbucks1234", DINING_ID)
        resolver = MappingResolver(storage)

        match = asyncio.run(resolver.resolve(user_id, "Starbucks #1234"))

        assert match.match_type == MatchType.EXACT
        assert match.confidence == 1.0
        assert match.category_id == DINING_ID
        assert match.normalized_key == "starbucks1234"
        assert match.mapping_id == mapping.id

    def test_mappings_are_per_user(self, storage, user_id):
        """Test that another user's mapping never matches."""
        add_mapping(storage, uuid4(), "starbucks", DINING_ID)
        resolver = MappingResolver(storage)

        assert asyncio.run(resolver.resolve(user_id, "Starbucks")) is None

    def test_empty_key_short_circuits(self, storage, user_id):
        """Test that a label with no alphanumerics is simply unresolved."""
        resolver = MappingResolver(FailingMappingStorage(seeded_categories()))
        assert asyncio.run(resolver.resolve(user_id, "#$%")) is None


class TestFuzzyMatch:
    """Tests for the similarity stage."""

    def test_fuzzy_match_above_threshold(self, storage, user_id):
        """Test that the best candidate at or above 0.8 is returned."""
        add_mapping(storage, user_id, "target", SHOPPING_ID)
        add_mapping(storage, user_id, "walmart", GROCERIES_ID)
        resolver = MappingResolver(
            storage, scorer=FixedScorer({"target": 0.83, "walmart": 0.1})
        )

        match = asyncio.run(resolver.resolve(user_id, "Targt"))

        assert match.match_type == MatchType.FUZZY
        assert match.category_id == SHOPPING_ID
        assert match.confidence == pytest.approx(0.83)
        assert match.normalized_key == "target"

    def test_threshold_is_inclusive(self, storage, user_id):
        """Test that a score exactly at the threshold matches."""
        add_mapping(storage, user_id, "target", SHOPPING_ID)
        resolver = MappingResolver(storage, scorer=FixedScorer({"target": 0.8}))

        assert asyncio.run(resolver.resolve(user_id, "Targt")) is not None

    def test_below_threshold_is_no_match(self, storage, user_id):
        """Test that weak candidates are ignored."""
        add_mapping(storage, user_id, "target", SHOPPING_ID)
        resolver = MappingResolver(storage, scorer=FixedScorer({"target": 0.79}))

        assert asyncio.run(resolver.resolve(user_id, "Targt")) is None

    def test_highest_score_wins(self, storage, user_id):
        """Test that the strongest candidate is chosen."""
        add_mapping(storage, user_id, "starbucks", DINING_ID)
        add_mapping(storage, user_id, "starbuckscoffee", GROCERIES_ID)
        resolver = MappingResolver(
            storage, scorer=FixedScorer({"starbucks": 0.85, "starbuckscoffee": 0.92})
        )

        match = asyncio.run(resolver.resolve(user_id, "Starbucks Cofee"))

        assert match.category_id == GROCERIES_ID

    def test_default_scorer_matches_near_duplicate(self, storage, user_id):
        """Test the trigram scorer end to end with a trailing-letter typo."""
        add_mapping(storage, user_id, "starbucks", DINING_ID)
        resolver = MappingResolver(storage, threshold=0.6)

        match = asyncio.run(resolver.resolve(user_id, "Starbuck"))

        assert match is not None
        assert match.match_type == MatchType.FUZZY


class TestResolutionFailures:
    """Tests for lookup failures."""

    def test_store_failure_is_an_error_not_a_miss(self, user_id):
        """Test that an unreachable store raises instead of returning None."""
        resolver = MappingResolver(FailingMappingStorage(seeded_categories()))

        with pytest.raises(MappingResolutionError) as exc_info:
            asyncio.run(resolver.resolve(user_id, "Starbucks"))

        assert exc_info.value.code == ResolutionErrorCode.EXACT_LOOKUP_FAILED
