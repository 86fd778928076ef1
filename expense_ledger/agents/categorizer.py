"""
AI Categorization Provider

DESIGN DECISION: The provider sits behind a small abstract interface.
The orchestrator only knows "give me ranked suggestions for this draft";
Gemini is one implementation, tests plug in stubs.

CRITICAL BOUNDARIES:
- CAN: Rank categories from the catalogue it is given
- CANNOT: Invent categories - unknown keys are dropped
- CANNOT: Apply a category - the orchestrator decides what to do
  with the confidence it reports

The provider does not enforce the deadline itself. The orchestrator
races it against the clock and cancels the task on timeout. Gemini's
async client is a coroutine, so cancellation is cooperative; whether
the HTTP request is aborted on the wire depends on the transport.
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import google.generativeai as genai

from expense_ledger.config import get_settings
from expense_ledger.models.categorization import CategorySuggestion
from expense_ledger.models.expense import Category, ExpenseDraft


class ProviderErrorCode(str, Enum):
    PROVIDER_ERROR = "provider_error"
    INVALID_RESPONSE = "invalid_response"


class ProviderError(Exception):
    """The provider answered with an error or with something unusable."""

    def __init__(self, code: ProviderErrorCode, message: str):
        self.code = code
        super().__init__(message)


class CategorizationProvider(ABC):
    """Anything that can rank categories for an expense draft."""

    provider_id: str = "unknown"
    model: Optional[str] = None

    @abstractmethod
    async def suggest(
        self,
        draft: ExpenseDraft,
        categories: list[Category],
    ) -> list[CategorySuggestion]:
        """
        Rank categories for the draft.

        Returns:
            Suggestions in any order; the orchestrator ranks and caps them

        Raises:
            ProviderError: On upstream failure or an unparseable answer
        """
        pass


class GeminiCategorizationProvider(CategorizationProvider):
    """
    Gemini-backed categorizer.

    The prompt lists the category catalogue by key and asks for a JSON
    list of {category, confidence} pairs.
    """

    provider_id = "gemini"

    def __init__(self):
        self._settings = get_settings().gemini
        self.model = self._settings.model_name
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    def _build_prompt(self, draft: ExpenseDraft, categories: list[Category]) -> str:
        lines = [
            f"Name: {draft.name}",
            f"Amount: {draft.amount}",
            f"Occurred at: {draft.occurred_at.isoformat()}",
        ]
        if draft.description:
            lines.append(f"Description: {draft.description}")
        if draft.account:
            lines.append(f"Paid with: {draft.account.value}")

        catalogue = "\n".join(f"- {c.key}: {c.name}" for c in categories)

        return f"""You are categorizing a personal expense.

Expense:
{chr(10).join(lines)}

Available categories (key: name):
{catalogue}

Respond with ONLY a JSON object in this exact format:
{{"suggestions": [{{"category": "category_key", "confidence": 0.8}}]}}

List at most 3 categories, most likely first. Use only keys from the list.
Be conservative with confidence - if unsure, stay below 0.5."""

    def parse_response(
        self,
        text: str,
        categories: list[Category],
    ) -> list[CategorySuggestion]:
        """
        Parse the model's answer into suggestions.

        Unknown category keys are skipped; an answer with no JSON object
        or a malformed one is an INVALID_RESPONSE.
        """
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise ProviderError(
                ProviderErrorCode.INVALID_RESPONSE,
                "provider response contained no JSON object",
            )

        try:
            data = json.loads(text[start:end])
            raw_suggestions = data.get("suggestions", [])
            by_key = {c.key.lower(): c for c in categories}

            suggestions = []
            for item in raw_suggestions:
                category = by_key.get(str(item.get("category", "")).lower())
                if category is None:
                    continue
                confidence = min(max(float(item.get("confidence", 0.0)), 0.0), 1.0)
                suggestions.append(
                    CategorySuggestion(category_id=category.id, confidence=confidence)
                )
            return suggestions
        except (ValueError, TypeError, AttributeError) as e:
            raise ProviderError(
                ProviderErrorCode.INVALID_RESPONSE,
                f"provider response could not be parsed: {e}",
            ) from e

    async def suggest(
        self,
        draft: ExpenseDraft,
        categories: list[Category],
    ) -> list[CategorySuggestion]:
        prompt = self._build_prompt(draft, categories)
        try:
            response = await self._model.generate_content_async(prompt)
            text = response.text.strip()
        except Exception as e:
            raise ProviderError(ProviderErrorCode.PROVIDER_ERROR, str(e)) from e

        return self.parse_response(text, categories)
