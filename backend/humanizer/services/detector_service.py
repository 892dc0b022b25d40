from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

import httpx

from humanizer.core.config import settings
from humanizer.services.chunk_service import count_words

logger = logging.getLogger(__name__)

_CONFIDENCE = {"high": 0.9, "medium": 0.7}


@dataclass(frozen=True)
class DetectionResult:
    ai_score: int
    is_ai: bool
    confidence: float


# GPTZero 不可用时的兜底估计（仅按长度分档）
def fallback_result(text: str) -> DetectionResult:
    words = count_words(text)
    score = 45
    if words < 50:
        score = 35
    elif words > 200:
        score = 55
    return DetectionResult(ai_score=score, is_ai=score > 50, confidence=0.3)


def parse_gptzero_response(data: Dict[str, Any]) -> DetectionResult:
    documents = data.get("documents")
    if not isinstance(documents, list) or not documents or not isinstance(documents[0], dict):
        raise ValueError("Invalid GPTZero response: missing documents.")
    document = documents[0]
    probabilities = document.get("class_probabilities") or {}
    ai_probability = float(probabilities.get("ai") or 0.0)
    score = max(0, min(100, round(ai_probability * 100)))
    classification = document.get("document_classification")
    return DetectionResult(
        ai_score=score,
        is_ai=classification in ("AI_ONLY", "MIXED"),
        confidence=_CONFIDENCE.get(document.get("confidence_category"), 0.5),
    )


# 调用 GPTZero 检测文本 AI 概率
def analyze_text(text: str) -> DetectionResult:
    if not settings.gptzero_api_key:
        logger.warning("GPTZero API key not configured, returning fallback score")
        return fallback_result(text)

    headers = {
        "Accept": "application/json",
        "x-api-key": settings.gptzero_api_key,
    }
    try:
        with httpx.Client(timeout=settings.gptzero_timeout_seconds) as client:
            response = client.post(
                settings.gptzero_url,
                headers=headers,
                json={"document": text, "multilingual": False},
            )
            response.raise_for_status()
            return parse_gptzero_response(response.json())
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning(f"GPTZero call failed: {exc}. Using fallback score.")
        return fallback_result(text)


def analyze_batch(texts: Iterable[str]) -> List[DetectionResult]:
    return [analyze_text(text) for text in texts]
