from __future__ import annotations

import logging
import math
import re
from typing import Dict, Tuple

logger = logging.getLogger(__name__)


# 四个改写模型档位（与前端展示的 ZHI 名称保持一致）
# key: API 使用的 provider 标识
# zhi: 档位代号
# label: 展示名
# words_per_dollar: 每美元可处理的单词数
PROVIDER_PRICING: Dict[str, Dict[str, str | int]] = {
    "anthropic": {"zhi": "ZHI_1", "label": "ZHI 1 (Anthropic)", "words_per_dollar": 1_154_250},
    "openai": {"zhi": "ZHI_2", "label": "ZHI 2 (OpenAI)", "words_per_dollar": 28_834},
    "deepseek": {"zhi": "ZHI_3", "label": "ZHI 3 (DeepSeek)", "words_per_dollar": 189_540},
    "perplexity": {"zhi": "ZHI_4", "label": "ZHI 4 (Perplexity)", "words_per_dollar": 1_731_769},
}

# 余额按 ZHI 1 单词计价
BASE_PROVIDER = "anthropic"

# 充值档位（美元 -> 入账 token 数）
CREDIT_TIERS: Dict[int, int] = {
    5: 4_275_000,
    10: 8_977_500,
    25: 23_512_500,
    50: 51_300_000,
    100: 115_425_000,
}

# 匿名用户免费额度（单词数）
# input: 单次输入上限
# output: 预览输出上限
# daily: 每个访客会话每日合计上限
FREE_LIMITS: Dict[str, int] = {"input": 200, "output": 150, "daily": 500}

_MATH_HINT = re.compile(
    r"\b(solve|equation|calculate|derivative|integral|limit|matrix|algebra|geometry"
    r"|calculus|statistics|probability)\b",
    re.IGNORECASE,
)


def normalize_provider(value: str | None) -> str:
    if not value:
        return BASE_PROVIDER
    candidate = value.strip().lower()
    if candidate in PROVIDER_PRICING:
        return candidate
    # 允许传档位代号
    for key, meta in PROVIDER_PRICING.items():
        if str(meta["zhi"]).lower() == candidate.replace(" ", "_"):
            return key
    return candidate


def _words_per_dollar(provider: str) -> int:
    meta = PROVIDER_PRICING.get(provider)
    if not meta:
        logger.warning(f"Unknown provider: {provider}, using {BASE_PROVIDER} pricing")
        meta = PROVIDER_PRICING[BASE_PROVIDER]
    return int(meta["words_per_dollar"])


# 计算本次调用应扣除的 token 数（按 ZHI 1 单词折算）
def calculate_word_cost(input_words: int, output_words: int, provider: str) -> int:
    total = max(0, input_words) + max(0, output_words)
    if total == 0:
        return 0
    base_rate = _words_per_dollar(BASE_PROVIDER)
    return math.ceil(total * base_rate / _words_per_dollar(provider))


# 估算输出单词数：数学题解答更长
def estimate_output_words(text: str) -> int:
    input_words = len(text.split())
    if _MATH_HINT.search(text):
        return min(input_words * 3, 1000)
    return min(input_words * 2, 800)


def tokens_for_amount(amount: int) -> int:
    if amount not in CREDIT_TIERS:
        raise ValueError(f"Unsupported credit tier: {amount}")
    return CREDIT_TIERS[amount]


def list_providers() -> Tuple[dict[str, str | int], ...]:
    return tuple({"key": key, **meta} for key, meta in PROVIDER_PRICING.items())
