from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List


@dataclass(frozen=True)
class InstructionPreset:
    id: str
    name: str
    category: str
    instruction: str


# 改写指令预设（id 为前端使用的稳定标识）
PRESETS: Dict[str, InstructionPreset] = {
    preset.id: preset
    for preset in (
        InstructionPreset(
            "vary-sentence-length",
            "Vary sentence length",
            "rhythm",
            "Mix short, punchy sentences with longer, winding ones.",
        ),
        InstructionPreset(
            "plain-vocabulary",
            "Plain vocabulary",
            "diction",
            "Prefer everyday words over formal or ornate ones.",
        ),
        InstructionPreset(
            "drop-transitions",
            "Drop stock transitions",
            "structure",
            "Avoid stock transitions such as 'Moreover', 'Furthermore' and 'In conclusion'.",
        ),
        InstructionPreset(
            "first-person",
            "First person voice",
            "voice",
            "Write in the first person where it reads naturally.",
        ),
        InstructionPreset(
            "keep-citations",
            "Keep citations",
            "fidelity",
            "Keep every citation, number and proper noun exactly as written.",
        ),
    )
}

SYSTEM_PROMPT = (
    "You rewrite text so it reads as if a person wrote it. "
    "Return only the rewritten text, with no preamble or commentary."
)

HOMEWORK_SYSTEM_PROMPT = (
    "You are a patient tutor. Solve the assignment completely and show the reasoning "
    "step by step. Write mathematics in plain text or LaTeX, and end with a clearly "
    "marked final answer."
)

_MIXING_HINTS = {
    "style": "Take only the voice and rhythm from the style sample.",
    "content": "Blend ideas from the content reference into the rewrite.",
    "both": "Match the style sample and weave in ideas from the content reference.",
}


def list_presets() -> List[dict[str, str]]:
    return [asdict(preset) for preset in PRESETS.values()]


def _preset_lines(preset_ids: Iterable[str] | None) -> List[str]:
    lines: List[str] = []
    for preset_id in preset_ids or ():
        preset = PRESETS.get(preset_id)
        if preset:
            lines.append(f"- {preset.instruction}")
    return lines


# 组装改写提示词：风格样本、内容参考、预设与自定义指令
def build_rewrite_prompt(
    text: str,
    style_text: str | None = None,
    content_mix_text: str | None = None,
    custom_instructions: str | None = None,
    presets: Iterable[str] | None = None,
    mixing_mode: str | None = None,
) -> str:
    parts: List[str] = ["Rewrite the following text."]
    if style_text and style_text.strip():
        parts.append(f"Style sample to imitate:\n\"\"\"\n{style_text.strip()}\n\"\"\"")
    if content_mix_text and content_mix_text.strip():
        parts.append(f"Content reference:\n\"\"\"\n{content_mix_text.strip()}\n\"\"\"")
    hint = _MIXING_HINTS.get((mixing_mode or "").lower())
    if hint:
        parts.append(hint)
    instructions = _preset_lines(presets)
    if custom_instructions and custom_instructions.strip():
        instructions.append(f"- {custom_instructions.strip()}")
    if instructions:
        parts.append("Instructions:\n" + "\n".join(instructions))
    parts.append(f"Text:\n\"\"\"\n{text}\n\"\"\"")
    return "\n\n".join(parts)


# 组装作业解答提示词
def build_homework_prompt(text: str) -> str:
    return f"Assignment:\n\"\"\"\n{text.strip()}\n\"\"\"\n\nSolve it."
