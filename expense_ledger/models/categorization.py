"""
Categorization Models

Shapes produced while deciding which category a new expense belongs to:
- MappingMatch: a user's merchant override matched the draft
- CategorySuggestion: one ranked guess from the AI provider
- CategorizationOutcome: the terminal state of one categorization
- AiLogEntry: the audit record of one provider invocation
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from expense_ledger.models.expense import ResponseModel, utc_now


class MatchType(str, Enum):
    """How a merchant mapping matched."""
    EXACT = "exact"
    FUZZY = "fuzzy"


class OutcomeKind(str, Enum):
    """
    Terminal states of a categorization.

    MAPPED       - a merchant mapping matched; the provider was not called
    AUTO_APPLIED - provider answered in time with confidence >= threshold
    SUGGESTED    - provider answered in time but below threshold
    TIMED_OUT    - provider missed the deadline, errored, or is not configured
    """
    MAPPED = "mapped"
    AUTO_APPLIED = "auto_applied"
    SUGGESTED = "suggested"
    TIMED_OUT = "timed_out"


class AiErrorCode(str, Enum):
    """Error codes recorded against a categorization attempt."""
    PROVIDER_TIMEOUT = "provider_timeout"
    PROVIDER_ERROR = "provider_error"
    INVALID_RESPONSE = "invalid_response"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


class MappingMatch(ResponseModel):
    """Result of resolving a merchant name against the user's mappings."""
    category_id: UUID
    confidence: float = Field(..., ge=0.0, le=1.0)
    match_type: MatchType
    normalized_key: str = Field(..., description="Key of the mapping that matched")
    mapping_id: Optional[UUID] = None

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude={'mapping_id'})


class CategorySuggestion(ResponseModel):
    """One ranked guess: a category and how sure the provider is."""
    category_id: UUID
    confidence: float = Field(..., ge=0.0, le=1.0)


def rank_suggestions(
    suggestions: list[CategorySuggestion],
    limit: int,
) -> list[CategorySuggestion]:
    """
    Order by confidence descending, keep the best entry per category, cap.

    sorted() is stable, so equal confidences keep the provider's order.
    """
    ranked: list[CategorySuggestion] = []
    seen: set[UUID] = set()
    for suggestion in sorted(suggestions, key=lambda s: s.confidence, reverse=True):
        if suggestion.category_id in seen:
            continue
        seen.add(suggestion.category_id)
        ranked.append(suggestion)
        if len(ranked) >= limit:
            break
    return ranked


class CategorizationOutcome(ResponseModel):
    """
    What happened when we tried to categorize a draft.

    CRITICAL: auto_applied_category_id is set only for MAPPED and
    AUTO_APPLIED. Suggestions alone never change an expense's category.
    """
    kind: OutcomeKind
    auto_applied_category_id: Optional[UUID] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    suggestions: list[CategorySuggestion] = Field(default_factory=list)
    timed_out: bool = False
    latency_ms: int = Field(default=0, ge=0)
    provider: Optional[str] = None
    model: Optional[str] = None
    match: Optional[MappingMatch] = None
    error_code: Optional[AiErrorCode] = None

    @property
    def applied(self) -> bool:
        return self.auto_applied_category_id is not None

    def to_response(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "autoAppliedCategoryId": (
                str(self.auto_applied_category_id)
                if self.auto_applied_category_id else None
            ),
            "confidence": self.confidence,
            "suggestions": [s.to_response() for s in self.suggestions],
            "timedOut": self.timed_out,
            "latencyMs": self.latency_ms,
            "providerId": self.provider,
        }


class AiLogEntry(BaseModel):
    """
    Audit record of one categorization provider invocation.

    Written for every call - completed, timed out, or failed.
    """
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    expense_id: Optional[UUID] = None
    query_text: str
    ai_category_id: Optional[UUID] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    suggestions: list[CategorySuggestion] = Field(default_factory=list)
    provider: str
    model: Optional[str] = None
    latency_ms: int = Field(..., ge=0)
    timed_out: bool = False
    error_code: Optional[AiErrorCode] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('query_text')
    @classmethod
    def truncate_query_text(cls, v: str) -> str:
        return v[:500]

    def to_log_dict(self) -> dict:
        return {
            "ai_log_id": str(self.id),
            "user_id": str(self.user_id),
            "expense_id": str(self.expense_id) if self.expense_id else None,
            "ai_category_id": str(self.ai_category_id) if self.ai_category_id else None,
            "confidence": self.confidence,
            "suggestion_count": len(self.suggestions),
            "provider": self.provider,
            "model": self.model,
            "latency_ms": self.latency_ms,
            "timed_out": self.timed_out,
            "error_code": self.error_code.value if self.error_code else None,
        }
