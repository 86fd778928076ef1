"""
Merchant Mapping Resolver

Looks up a user's merchant -> category override for a raw merchant label.

Strategy, short-circuiting on the first hit:
1. Normalize the label ("Starbucks #42" -> "starbucks42")
2. Exact stage: mapping with the same (user, key) -> confidence 1.0
3. Fuzzy stage: best trigram similarity over all of the user's keys;
   a score >= threshold (0.8) is a match with that confidence

DESIGN DECISION: Lookup failures are raised, not turned into "no match".
The caller decides whether to fall through to the AI provider.

Ties in the fuzzy stage go to whichever mapping the store returned
first. Stores don't promise an order, so ties are not deterministic.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.config import get_settings
from expense_ledger.models.categorization import MappingMatch, MatchType
from expense_ledger.services.storage import MerchantMappingStorageInterface
from expense_ledger.utils.similarity import SimilarityScorer, TrigramSimilarityScorer
from expense_ledger.utils.text import normalize_merchant_name

logger = structlog.get_logger()


class ResolutionErrorCode(str, Enum):
    EXACT_LOOKUP_FAILED = "exact_lookup_failed"
    FUZZY_LOOKUP_FAILED = "fuzzy_lookup_failed"


class MappingResolutionError(Exception):
    """A mapping lookup failed; this is not the same as "no match"."""

    def __init__(self, code: ResolutionErrorCode, message: str):
        self.code = code
        super().__init__(message)


class MappingResolver:
    """Resolves merchant labels against one user's mappings."""

    def __init__(
        self,
        storage: MerchantMappingStorageInterface,
        scorer: Optional[SimilarityScorer] = None,
        threshold: Optional[float] = None,
    ):
        self._storage = storage
        self._scorer = scorer or TrigramSimilarityScorer()
        self._threshold = (
            threshold if threshold is not None
            else get_settings().app.fuzzy_match_threshold
        )

    async def resolve(
        self,
        user_id: UUID,
        raw_merchant_name: str,
    ) -> Optional[MappingMatch]:
        """
        Resolve a raw merchant label.

        Returns:
            The match, or None when neither stage finds one

        Raises:
            MappingResolutionError: If either lookup fails
        """
        key = normalize_merchant_name(raw_merchant_name)
        if not key:
            return None

        try:
            exact = await self._storage.get_mapping_by_key(user_id, key)
        except Exception as e:
            raise MappingResolutionError(
                ResolutionErrorCode.EXACT_LOOKUP_FAILED,
                f"exact mapping lookup failed: {e}",
            ) from e

        if exact is not None:
            return MappingMatch(
                category_id=exact.category_id,
                confidence=1.0,
                match_type=MatchType.EXACT,
                normalized_key=exact.merchant_key,
                mapping_id=exact.id,
            )

        try:
            candidates = await self._storage.list_mappings_for_user(user_id)
            best = None
            best_score = 0.0
            for mapping in candidates:
                score = self._scorer.score(key, mapping.merchant_key)
                if score > best_score:
                    best, best_score = mapping, score
        except Exception as e:
            raise MappingResolutionError(
                ResolutionErrorCode.FUZZY_LOOKUP_FAILED,
                f"fuzzy mapping lookup failed: {e}",
            ) from e

        if best is None or best_score < self._threshold:
            logger.debug(
                "merchant_unresolved",
                merchant_key=key,
                best_score=round(best_score, 4),
            )
            return None

        return MappingMatch(
            category_id=best.category_id,
            confidence=min(best_score, 1.0),
            match_type=MatchType.FUZZY,
            normalized_key=best.merchant_key,
            mapping_id=best.id,
        )
