from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from humanizer.core.database import Base


# 作业解答记录：登录用户按 user_id 归属，匿名用户按 session_id 归属
class Assignment(Base):
    __tablename__ = "assignments"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    input_text: Mapped[str] = mapped_column(Text, nullable=False)
    llm_provider: Mapped[str] = mapped_column(String, nullable=False)
    llm_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    # 匿名用户只保存预览
    is_preview: Mapped[bool] = mapped_column(Boolean, default=False)
    processing_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    input_words: Mapped[int] = mapped_column(Integer, default=0)
    output_words: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
