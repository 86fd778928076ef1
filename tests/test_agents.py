"""
Tests for the Gemini categorization provider.

The model client is replaced with a fake; nothing calls the API.
"""

import asyncio

import pytest

from conftest import DINING_ID, GROCERIES_ID, make_draft, seeded_categories
from expense_ledger.agents import (
    GeminiCategorizationProvider,
    ProviderError,
    ProviderErrorCode,
)


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.prompts = []

    async def generate_content_async(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.text)


@pytest.fixture
def provider(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    return GeminiCategorizationProvider()


class TestParseResponse:
    """Tests for turning model text into suggestions."""

    def test_parses_fenced_json(self, provider):
        """Test that surrounding prose and code fences are ignored."""
        text = (
            "Sure!\n```json\n"
            '{"suggestions": [{"category": "dining", "confidence": 0.8},'
            ' {"category": "Groceries", "confidence": 0.15}]}\n```'
        )

        suggestions = provider.parse_response(text, seeded_categories())

        assert [s.category_id for s in suggestions] == [DINING_ID, GROCERIES_ID]
        assert suggestions[0].confidence == pytest.approx(0.8)

    def test_unknown_keys_are_dropped(self, provider):
        """Test that invented categories never come back."""
        text = '{"suggestions": [{"category": "crypto", "confidence": 0.99}]}'

        assert provider.parse_response(text, seeded_categories()) == []

    def test_confidence_is_clamped(self, provider):
        """Test that out-of-range confidences are pulled into [0, 1]."""
        text = '{"suggestions": [{"category": "dining", "confidence": 1.7}]}'

        [suggestion] = provider.parse_response(text, seeded_categories())

        assert suggestion.confidence == 1.0

    @pytest.mark.parametrize("text", ["no json here", "{not json}", '{"suggestions": 5}'])
    def test_invalid_response(self, provider, text):
        """Test that unusable answers are INVALID_RESPONSE."""
        with pytest.raises(ProviderError) as exc_info:
            provider.parse_response(text, seeded_categories())
        assert exc_info.value.code == ProviderErrorCode.INVALID_RESPONSE


class TestSuggest:
    """Tests for the async call path."""

    def test_prompt_lists_catalogue(self, provider):
        """Test that the prompt names the draft and every category key."""
        provider._model = FakeModel('{"suggestions": []}')

        asyncio.run(provider.suggest(make_draft("Bistro", description="date night"), seeded_categories()))

        [prompt] = provider._model.prompts
        assert "Name: Bistro" in prompt
        assert "Description: date night" in prompt
        assert "- dining: Dining" in prompt

    def test_upstream_failure_is_provider_error(self, provider):
        """Test that client exceptions are wrapped."""
        provider._model = FakeModel(error=RuntimeError("quota exceeded"))

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(provider.suggest(make_draft(), seeded_categories()))
        assert exc_info.value.code == ProviderErrorCode.PROVIDER_ERROR

    def test_missing_api_key(self, monkeypatch):
        """Test that the provider can't be built without a key."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        with pytest.raises(Exception):
            GeminiCategorizationProvider()
