"""AI Agents package."""

from expense_ledger.agents.categorizer import (
    CategorizationProvider,
    GeminiCategorizationProvider,
    ProviderError,
    ProviderErrorCode,
)

__all__ = [
    "CategorizationProvider",
    "GeminiCategorizationProvider",
    "ProviderError",
    "ProviderErrorCode",
]
