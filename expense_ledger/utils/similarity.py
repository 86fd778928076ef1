"""
String similarity for fuzzy merchant matching.

The scorer is an interface so the resolver does not care whether the
score comes from Postgres' pg_trgm, an in-process implementation or a
test double.
"""

import re
from abc import ABC, abstractmethod

_WORD = re.compile(r"[a-z0-9]+")


class SimilarityScorer(ABC):
    """Scores how alike two strings are, from 0.0 (nothing shared) to 1.0."""

    @abstractmethod
    def score(self, left: str, right: str) -> float:
        pass


class TrigramSimilarityScorer(SimilarityScorer):
    """
    Trigram overlap compatible with pg_trgm's similarity().

    Each word is padded with two leading spaces and one trailing space,
    split into 3-character windows, and the score is
    |shared trigrams| / |all trigrams|.
    """

    @staticmethod
    def trigrams(value: str) -> set[str]:
        grams: set[str] = set()
        for word in _WORD.findall(value.lower()):
            padded = f"  {word} "
            for i in range(len(padded) - 2):
                grams.add(padded[i:i + 3])
        return grams

    def score(self, left: str, right: str) -> float:
        left_grams = self.trigrams(left)
        right_grams = self.trigrams(right)
        union = left_grams | right_grams
        if not union:
            return 0.0
        return len(left_grams & right_grams) / len(union)
