"""Tests for the AI classifier adapter."""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from ledger_hub.ai_classifier import AIClassifier, parse_json_response
from ledger_hub.config import LLMConfig
from ledger_hub.errors import ClassificationError
from ledger_hub.schemas.transaction import TransactionCategory, TransactionType


def _response(content: str) -> MagicMock:
    response = MagicMock()
    response.json.return_value = {"message": {"content": content}}
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(enabled=True, model_fast="fast", model_fallback="slow", timeout_seconds=5)


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


class TestParseJsonResponse:
    def test_plain(self):
        assert parse_json_response('{"category": "rent"}') == {"category": "rent"}

    def test_code_fence(self):
        assert parse_json_response('```json\n{"category": "rent"}\n```') == {"category": "rent"}

    def test_surrounding_prose(self):
        content = 'Sure! Here you go: {"category": "rent", "confidence": 0.9} Hope that helps.'
        assert parse_json_response(content)["confidence"] == 0.9

    def test_trailing_comma_and_unquoted_keys(self):
        assert parse_json_response("{category: 'x',}".replace("'", '"')) == {"category": "x"}

    def test_garbage(self):
        with pytest.raises(json.JSONDecodeError):
            parse_json_response("no json here")


class TestAIClassifier:
    def test_classify(self, llm_config, client):
        client.post.return_value = _response(
            '{"category": "insurance", "type": "expense", "confidence": 0.9, "reason": "premium"}'
        )
        classifier = AIClassifier(llm_config, client=client)

        result = classifier.classify("ACME MUTUAL PREMIUM 0423", Decimal("-310"))

        assert result.category == TransactionCategory.INSURANCE
        assert result.type == TransactionType.EXPENSE
        assert result.confidence == pytest.approx(0.9)
        assert result.model == "fast"
        payload = client.post.call_args.kwargs["json"]
        assert payload["model"] == "fast"
        assert payload["format"] == "json"

    def test_disabled(self, client):
        classifier = AIClassifier(LLMConfig(enabled=False), client=client)
        with pytest.raises(ClassificationError):
            classifier.classify("anything", Decimal("1"))
        client.post.assert_not_called()

    def test_confidence_is_clamped(self, llm_config, client):
        client.post.return_value = _response('{"category": "rent", "confidence": 7}')
        result = AIClassifier(llm_config, client=client).classify("Rent", Decimal("1200"))
        assert result.confidence == 1.0
        # Missing type falls back to the amount's sign
        assert result.type == TransactionType.INCOME

    def test_unknown_category(self, llm_config, client):
        client.post.return_value = _response('{"category": "groceries", "confidence": 0.9}')
        with pytest.raises(ClassificationError):
            AIClassifier(llm_config, client=client).classify("Food", Decimal("-5"))

    def test_malformed_response(self, llm_config, client):
        client.post.return_value = _response("I cannot help with that")
        with pytest.raises(ClassificationError):
            AIClassifier(llm_config, client=client).classify("Food", Decimal("-5"))

    @pytest.mark.parametrize(
        "body",
        [
            {"message": None},
            {"message": {"content": 42}},
            {"message": "plain text"},
            ["not", "an", "object"],
            {},
        ],
    )
    def test_unexpected_body_shape(self, llm_config, client, body):
        response = MagicMock()
        response.json.return_value = body
        client.post.return_value = response

        with pytest.raises(ClassificationError):
            AIClassifier(llm_config, client=client).classify("Food", Decimal("-5"))
        assert client.post.call_count == 2

    def test_falls_back_to_slow_model(self, llm_config, client):
        client.post.side_effect = [
            httpx.TimeoutException("slow"),
            _response('{"category": "utilities", "confidence": 0.8}'),
        ]

        result = AIClassifier(llm_config, client=client).classify("Power", Decimal("-50"))

        assert result.category == TransactionCategory.UTILITIES
        assert result.model == "slow"
        assert client.post.call_count == 2

    def test_all_models_fail(self, llm_config, client):
        client.post.side_effect = httpx.ConnectError("refused")
        with pytest.raises(ClassificationError):
            AIClassifier(llm_config, client=client).classify("Power", Decimal("-50"))

    def test_cache_roundtrip(self, llm_config, client, store):
        client.post.return_value = _response('{"category": "taxes", "confidence": 0.95}')
        classifier = AIClassifier(llm_config, state_store=store, client=client)

        first = classifier.classify("County assessor", Decimal("-800"))
        second = classifier.classify("County assessor", Decimal("-800"))

        assert first.category == second.category == TransactionCategory.TAXES
        assert not first.from_cache
        assert second.from_cache
        assert client.post.call_count == 1

    def test_suggest_mapping(self, llm_config, client):
        client.post.return_value = _response(
            '{"category": "taxes", "confidence": 0.8, "reason": "association dues"}'
        )

        suggestion = AIClassifier(llm_config, client=client).suggest_mapping(
            "doorloop", "HOA Dues"
        )

        assert suggestion.category == TransactionCategory.TAXES
        assert suggestion.confidence == pytest.approx(0.8)
        assert suggestion.native_category == "HOA Dues"
