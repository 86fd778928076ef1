"""Tests for the trigram similarity scorer."""

import pytest

from expense_ledger.utils.similarity import TrigramSimilarityScorer


class TestTrigramSimilarityScorer:
    """Tests for pg_trgm-style similarity."""

    def setup_method(self):
        self.scorer = TrigramSimilarityScorer()

    def test_identical_strings_score_one(self):
        """Test that identical keys are a perfect match."""
        assert self.scorer.score("starbucks", "starbucks") == 1.0

    def test_disjoint_strings_score_zero(self):
        """Test that strings without shared trigrams score zero."""
        assert self.scorer.score("abc", "xyz") == 0.0

    def test_empty_strings_score_zero(self):
        """Test that empty input never divides by zero."""
        assert self.scorer.score("", "") == 0.0

    def test_trigram_padding(self):
        """Test that words are padded like pg_trgm."""
        assert TrigramSimilarityScorer.trigrams("cat") == {"  c", " ca", "cat", "at "}

    def test_partial_overlap(self):
        """Test a typo scores shared / union trigrams."""
        assert self.scorer.score("targt", "target") == pytest.approx(4 / 9)

    def test_symmetric(self):
        """Test that argument order does not matter."""
        assert self.scorer.score("starbuck", "starbucks") == self.scorer.score(
            "starbucks", "starbuck"
        )

    def test_close_variant_scores_higher_than_distant(self):
        """Test that a near-duplicate outranks an unrelated key."""
        near = self.scorer.score("starbuck", "starbucks")
        far = self.scorer.score("starbuck", "walmart")
        assert near > far
