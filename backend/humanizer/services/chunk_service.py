from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Sequence
from uuid import uuid4

from humanizer.core.config import settings


@dataclass(frozen=True)
class TextChunk:
    content: str
    start_word: int
    end_word: int
    id: str = field(default_factory=lambda: uuid4().hex)
    ai_score: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TextChunk":
        return cls(
            id=str(data["id"]),
            content=str(data.get("content") or ""),
            start_word=int(data["start_word"]),
            end_word=int(data["end_word"]),
            ai_score=data.get("ai_score"),
        )


@dataclass(frozen=True)
class ChunkStats:
    total_chunks: int
    total_words: int
    average_words_per_chunk: int


# 按连续空白切分单词，丢弃空 token
def tokenize(text: str) -> List[str]:
    return text.split()


def count_words(text: str) -> int:
    return len(tokenize(text))


def _resolve_window(window_size: int | None, overlap: int | None) -> tuple[int, int]:
    window = settings.chunk_window_words if window_size is None else window_size
    step_back = settings.chunk_overlap_words if overlap is None else overlap
    if window <= 0:
        raise ValueError("window_size must be positive.")
    if not 0 <= step_back < window:
        raise ValueError("overlap must satisfy 0 <= overlap < window_size.")
    return window, step_back


# 将文本按固定单词数切分为窗口，相邻窗口保留重叠
def chunk_text(
    text: str, window_size: int | None = None, overlap: int | None = None
) -> List[TextChunk]:
    window, step_back = _resolve_window(window_size, overlap)
    words = tokenize(text)
    total = len(words)

    if total <= window:
        return [TextChunk(content=" ".join(words), start_word=0, end_word=total - 1)]

    chunks: List[TextChunk] = []
    start = 0
    while True:
        end = min(start + window - 1, total - 1)
        chunks.append(
            TextChunk(content=" ".join(words[start : end + 1]), start_word=start, end_word=end)
        )
        if end >= total - 1:
            break
        # 下一个窗口从上一个窗口末尾回退 overlap 个单词开始，且必须严格前进
        start = max(end - step_back + 1, start + 1)
    return chunks


# 按选中 ID 拼回连续文本：重叠部分去重，空隙保持原样
def reconstruct_text(chunks: Sequence[TextChunk], selected_ids: Iterable[str]) -> str:
    wanted = set(selected_ids)
    selected = sorted(
        (chunk for chunk in chunks if chunk.id in wanted),
        key=lambda chunk: (chunk.start_word, chunk.end_word),
    )
    if not selected:
        return ""

    segments: List[List[str]] = []
    last_end = -1
    for chunk in selected:
        words = tokenize(chunk.content)
        if not segments or chunk.start_word > last_end + 1:
            segments.append(list(words))
        else:
            # 只追加 last_end 之后的单词；完全被覆盖的窗口不贡献内容
            skip = last_end - chunk.start_word + 1
            segments[-1].extend(words[skip:])
        last_end = max(last_end, chunk.end_word)

    return " ".join(" ".join(segment) for segment in segments if segment)


def chunk_stats(chunks: Sequence[TextChunk]) -> ChunkStats:
    if not chunks:
        return ChunkStats(total_chunks=0, total_words=0, average_words_per_chunk=0)
    total_words = sum(count_words(chunk.content) for chunk in chunks)
    return ChunkStats(
        total_chunks=len(chunks),
        total_words=total_words,
        average_words_per_chunk=round(total_words / len(chunks)),
    )


def select_all(chunks: Sequence[TextChunk]) -> List[str]:
    return [chunk.id for chunk in chunks]


# 按下标区间（闭区间）选择 chunk
def select_range(chunks: Sequence[TextChunk], start_index: int, end_index: int) -> List[str]:
    return [chunk.id for chunk in chunks[start_index : end_index + 1]]
