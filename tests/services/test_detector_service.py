"""
Tests for AI-likelihood scoring and its offline fallback.
"""

import httpx
import pytest

from humanizer.core.config import settings
from humanizer.services import detector_service
from humanizer.services.detector_service import (
    analyze_batch,
    analyze_text,
    fallback_result,
    parse_gptzero_response,
)


def _words(n: int) -> str:
    return " ".join(["word"] * n)


@pytest.fixture
def gptzero(monkeypatch):
    real_client = httpx.Client

    def install(handler):
        monkeypatch.setattr(settings, "gptzero_api_key", "gz-test")

        def factory(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(handler)
            return real_client(*args, **kwargs)

        monkeypatch.setattr(detector_service.httpx, "Client", factory)

    return install


class TestFallback:
    @pytest.mark.parametrize("words, score", [(10, 35), (49, 35), (50, 45), (200, 45), (201, 55)])
    def test_score_by_length(self, words: int, score: int) -> None:
        result = fallback_result(_words(words))

        assert result.ai_score == score
        assert result.is_ai is (score > 50)
        assert result.confidence == 0.3

    def test_fallback_is_deterministic(self) -> None:
        assert fallback_result(_words(120)) == fallback_result(_words(120))


class TestParseResponse:
    def test_parses_first_document(self) -> None:
        data = {
            "documents": [
                {
                    "class_probabilities": {"ai": 0.874, "human": 0.126},
                    "document_classification": "AI_ONLY",
                    "confidence_category": "high",
                }
            ]
        }

        result = parse_gptzero_response(data)

        assert (result.ai_score, result.is_ai, result.confidence) == (87, True, 0.9)

    def test_human_document_with_unknown_confidence(self) -> None:
        data = {"documents": [{"class_probabilities": {"ai": 0.02}, "document_classification": "HUMAN_ONLY"}]}

        result = parse_gptzero_response(data)

        assert (result.ai_score, result.is_ai, result.confidence) == (2, False, 0.5)

    def test_missing_documents(self) -> None:
        with pytest.raises(ValueError):
            parse_gptzero_response({"documents": []})


class TestAnalyzeText:
    def test_without_api_key_uses_fallback(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "gptzero_api_key", None)

        assert analyze_text(_words(10)) == fallback_result(_words(10))

    def test_calls_gptzero(self, gptzero) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "documents": [
                        {
                            "class_probabilities": {"ai": 0.5},
                            "document_classification": "MIXED",
                            "confidence_category": "medium",
                        }
                    ]
                },
            )

        gptzero(handler)

        result = analyze_text("some text")

        assert (result.ai_score, result.is_ai, result.confidence) == (50, True, 0.7)
        assert seen[0].headers["x-api-key"] == "gz-test"

    def test_http_error_uses_fallback(self, gptzero) -> None:
        gptzero(lambda request: httpx.Response(503, text="down"))

        assert analyze_text(_words(300)).ai_score == 55

    def test_malformed_body_uses_fallback(self, gptzero) -> None:
        gptzero(lambda request: httpx.Response(200, json={"unexpected": True}))

        assert analyze_text(_words(10)).confidence == 0.3

    def test_batch_keeps_order(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "gptzero_api_key", None)

        scores = [r.ai_score for r in analyze_batch([_words(10), _words(300)])]

        assert scores == [35, 55]
