from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator


Provider = Literal["openai", "anthropic", "deepseek", "perplexity"]
MixingMode = Literal["style", "content", "both"]
JobStatus = Literal["pending", "processing", "done", "failed"]


class ChunkOut(BaseModel):
    id: str
    content: str
    start_word: int
    end_word: int
    ai_score: Optional[int] = None

    # 位置必须与内容单词数一致，拼接时依赖这一点做下标计算；空文本只允许 (0, -1)
    @model_validator(mode="after")
    def _check_word_span(self) -> "ChunkOut":
        words = len(self.content.split())
        if self.start_word < 0 or words != self.end_word - self.start_word + 1:
            raise ValueError("Chunk content does not match its start_word..end_word span.")
        if words == 0 and (self.start_word, self.end_word) != (0, -1):
            raise ValueError("An empty chunk must span (0, -1).")
        return self


class ChunkStatsOut(BaseModel):
    total_chunks: int = 0
    total_words: int = 0
    average_words_per_chunk: int = 0


class ChunkRequest(BaseModel):
    text: str = Field(min_length=1)


class ChunkResponse(BaseModel):
    chunks: List[ChunkOut] = Field(default_factory=list)
    stats: ChunkStatsOut


class ReconstructRequest(BaseModel):
    chunks: List[ChunkOut]
    selected_chunk_ids: List[str] = Field(default_factory=list)


class ReconstructResponse(BaseModel):
    text: str
    word_count: int = 0


class AnalyzeRequest(BaseModel):
    text: str = Field(min_length=1)


class DetectionOut(BaseModel):
    ai_score: int
    is_ai: bool
    confidence: float


class RewriteRequest(BaseModel):
    input_text: str = Field(min_length=1)
    style_text: Optional[str] = None
    content_mix_text: Optional[str] = None
    custom_instructions: Optional[str] = None
    selected_presets: List[str] = Field(default_factory=list)
    provider: Provider = "anthropic"
    selected_chunk_ids: List[str] = Field(default_factory=list)
    chunks: Optional[List[ChunkOut]] = None
    mixing_mode: Optional[MixingMode] = None


class RewriteQueuedResponse(BaseModel):
    job_id: str
    task_id: str
    status: str = "queued"


class RewriteJobOut(BaseModel):
    job_id: str
    status: JobStatus
    provider: str
    output_text: Optional[str] = None
    input_ai_score: Optional[int] = None
    output_ai_score: Optional[int] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class PresetOut(BaseModel):
    id: str
    name: str
    category: str
    instruction: str


class CheckoutRequest(BaseModel):
    amount: Literal[5, 10, 25, 50, 100]


class CheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    session_id: str
    status: Literal["pending", "completed", "failed"]
    credited: bool = False
    new_balance: Optional[int] = None


class PaymentOut(BaseModel):
    session_id: str
    amount: int
    tokens: int
    status: str
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class UserProfile(BaseModel):
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    token_balance: int = 0


class TokenCheckRequest(BaseModel):
    input_text: str
    provider: Provider = "anthropic"


class TokenCheckResponse(BaseModel):
    can_process: bool
    input_words: int
    estimated_output_words: int
    estimated_cost: int
    remaining_balance: int
    message: Optional[str] = None


class UserUsageResponse(BaseModel):
    calls: int = 0
    input_words: int = 0
    output_words: int = 0
    tokens_spent: int = 0
    token_balance: int = 0


class ProviderOut(BaseModel):
    key: str
    zhi: str
    label: str
    words_per_dollar: int


class BatchAnalyzeRequest(BaseModel):
    texts: List[str] = Field(min_length=1, max_length=20)


class HomeworkRequest(BaseModel):
    input_text: str = Field(min_length=1)
    provider: Provider = "anthropic"
    session_id: Optional[str] = None


class HomeworkResponse(BaseModel):
    id: str
    llm_response: str
    is_preview: bool = False
    session_id: Optional[str] = None
    input_words: int = 0
    output_words: int = 0
    processing_time_ms: int = 0
    remaining_balance: Optional[int] = None


class AssignmentListItem(BaseModel):
    id: str
    input_text: str
    llm_provider: str
    is_preview: bool = False
    processing_time_ms: int = 0
    created_at: Optional[str] = None


class AssignmentOut(AssignmentListItem):
    llm_response: Optional[str] = None
    input_words: int = 0
    output_words: int = 0
