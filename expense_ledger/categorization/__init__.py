"""Merchant resolution and AI categorization."""

from expense_ledger.categorization.orchestrator import CategorizationOrchestrator
from expense_ledger.categorization.resolver import (
    MappingResolutionError,
    MappingResolver,
    ResolutionErrorCode,
)

__all__ = [
    "CategorizationOrchestrator",
    "MappingResolutionError",
    "MappingResolver",
    "ResolutionErrorCode",
]
