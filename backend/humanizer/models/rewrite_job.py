from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from humanizer.core.database import Base


class RewriteJob(Base):
    __tablename__ = "rewrite_jobs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    input_text: Mapped[str] = mapped_column(Text, nullable=False)
    style_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_mix_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_presets: Mapped[list | None] = mapped_column(JSON, nullable=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    mixing_mode: Mapped[str | None] = mapped_column(String, nullable=True)
    chunks: Mapped[list | None] = mapped_column(JSON, nullable=True)
    selected_chunk_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)

    output_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    input_ai_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_ai_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
