from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Iterable

import httpx
from pydantic import BaseModel

from humanizer.core.config import settings
from humanizer.core.pricing import normalize_provider
from humanizer.services.prompt_strategy import (
    HOMEWORK_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    build_homework_prompt,
    build_rewrite_prompt,
)

logger = logging.getLogger(__name__)


class LLMServiceError(Exception):
    pass


class LLMConfig(BaseModel):
    provider: str = "anthropic"
    model: str
    api_key: str | None = None
    base_url: str


# 读取 provider 对应的密钥、地址与模型
def resolve_config(provider: str | None) -> LLMConfig:
    name = normalize_provider(provider or settings.llm_provider)
    if name == "openai":
        return LLMConfig(
            provider=name,
            model=settings.openai_model,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
        )
    if name == "deepseek":
        return LLMConfig(
            provider=name,
            model=settings.deepseek_model,
            api_key=settings.deepseek_api_key,
            base_url=settings.deepseek_base_url,
        )
    if name == "perplexity":
        return LLMConfig(
            provider=name,
            model=settings.perplexity_model,
            api_key=settings.perplexity_api_key,
            base_url=settings.perplexity_base_url,
        )
    if name == "anthropic":
        return LLMConfig(
            provider=name,
            model=settings.anthropic_model,
            api_key=settings.anthropic_api_key,
            base_url=settings.anthropic_base_url,
        )
    raise LLMServiceError(f"Unsupported provider: {provider}")


def _extract_error_message(payload: str) -> str:
    try:
        data = json.loads(payload)
    except ValueError:
        return payload.strip()[:300]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            msg = err.get("message") or err.get("type")
            if msg:
                return str(msg)
        msg = data.get("message") or data.get("detail") or data.get("error")
        if msg:
            return str(msg)
    return payload.strip()[:300]


def _format_llm_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = exc.response.text or ""
        message = _extract_error_message(body) if body else str(exc)
        lowered = message.lower()
        if status in (401, 403):
            return "Model API key is invalid or lacks permission."
        if status == 429 or "rate limit" in lowered:
            return "Model provider rate limited the request, try again later."
        if status == 402 or "insufficient" in lowered or "quota" in lowered:
            return "Model provider account has insufficient quota."
        return f"Model provider call failed ({status}): {message}"
    if isinstance(exc, httpx.HTTPError):
        return "Model provider call failed, check network or service status."
    return str(exc)[:300]


def _get_retry_delay(exc: httpx.HTTPError, attempt: int) -> float:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            retry_after = exc.response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                return min(30.0, float(retry_after))
            return min(30.0, 2.0 * (attempt + 1))
    return 0.0


def _extract_chat_content(data: Dict[str, Any]) -> str:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ValueError("Invalid chat response format: missing choices.")
    first = choices[0] if isinstance(choices[0], dict) else {}
    message = first.get("message") if isinstance(first.get("message"), dict) else {}
    content = message.get("content")
    if isinstance(content, str) and content.strip():
        return content.strip()
    raise ValueError("Invalid chat response format: missing message content.")


def _extract_anthropic_content(data: Dict[str, Any]) -> str:
    blocks = data.get("content")
    if not isinstance(blocks, list):
        raise ValueError("Invalid messages response format: missing content.")
    texts = [
        block["text"]
        for block in blocks
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
    ]
    joined = "".join(texts).strip()
    if not joined:
        raise ValueError("Invalid messages response format: empty text.")
    return joined


# 调用 OpenAI 兼容接口（OpenAI / DeepSeek / Perplexity）
def _call_openai_compatible(prompt: str, config: LLMConfig, system_prompt: str = SYSTEM_PROMPT) -> str:
    url = f"{config.base_url.rstrip('/')}/chat/completions"
    payload = {
        "model": config.model,
        "temperature": 0.9,
        "max_tokens": settings.llm_max_output_tokens,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ],
    }
    headers = {"Authorization": f"Bearer {config.api_key}"}
    with httpx.Client(timeout=settings.llm_timeout_seconds) as client:
        response = client.post(url, headers=headers, json=payload)
        response.raise_for_status()
        return _extract_chat_content(response.json())


# 调用 Anthropic Messages API
def _call_anthropic(prompt: str, config: LLMConfig, system_prompt: str = SYSTEM_PROMPT) -> str:
    url = f"{config.base_url.rstrip('/')}/messages"
    payload = {
        "model": config.model,
        "max_tokens": settings.llm_max_output_tokens,
        "system": system_prompt,
        "messages": [{"role": "user", "content": prompt}],
    }
    headers = {
        "x-api-key": config.api_key or "",
        "anthropic-version": settings.anthropic_version,
    }
    with httpx.Client(timeout=settings.llm_timeout_seconds) as client:
        response = client.post(url, headers=headers, json=payload)
        response.raise_for_status()
        return _extract_anthropic_content(response.json())


def _call_llm(prompt: str, config: LLMConfig, system_prompt: str = SYSTEM_PROMPT) -> str:
    if config.provider == "anthropic":
        return _call_anthropic(prompt, config, system_prompt)
    return _call_openai_compatible(prompt, config, system_prompt)


# 调用模型，失败自动重试；重试耗尽后抛出 LLMServiceError
def _complete_with_retries(
    prompt: str, config: LLMConfig, system_prompt: str, max_retries: int
) -> str:
    last_error: str | None = None
    for attempt in range(max_retries + 1):
        try:
            return _call_llm(prompt, config, system_prompt)
        except httpx.HTTPError as exc:
            last_error = _format_llm_error(exc)
            logger.warning(f"{config.provider} call failed (attempt {attempt + 1}): {last_error}")
            delay = _get_retry_delay(exc, attempt)
            if delay > 0:
                time.sleep(delay)
            continue
        except ValueError as exc:
            last_error = str(exc)
            logger.warning(f"{config.provider} returned an unusable response: {last_error}")
            continue

    raise LLMServiceError(last_error or "Unknown error")


# 改写单段文本
def rewrite_text(
    text: str,
    style_text: str | None = None,
    content_mix_text: str | None = None,
    custom_instructions: str | None = None,
    presets: Iterable[str] | None = None,
    provider: str | None = None,
    mixing_mode: str | None = None,
    max_retries: int = 2,
) -> str:
    config = resolve_config(provider)
    if not config.api_key:
        # 未配置密钥时原样返回，便于本地联调
        logger.warning(f"No API key configured for {config.provider}, returning input unchanged")
        return text

    prompt = build_rewrite_prompt(
        text,
        style_text=style_text,
        content_mix_text=content_mix_text,
        custom_instructions=custom_instructions,
        presets=presets,
        mixing_mode=mixing_mode,
    )
    return _complete_with_retries(prompt, config, SYSTEM_PROMPT, max_retries)


# 解答作业题目；未配置密钥时无法给出答案，直接报错
def solve_text(text: str, provider: str | None = None, max_retries: int = 2) -> str:
    config = resolve_config(provider)
    if not config.api_key:
        raise LLMServiceError(f"No API key configured for {config.provider}.")
    return _complete_with_retries(
        build_homework_prompt(text), config, HOMEWORK_SYSTEM_PROMPT, max_retries
    )
