from __future__ import annotations

from datetime import datetime
from uuid import uuid4


# 生成改写任务 ID（日期前缀便于排查）
def new_job_id(now: datetime | None = None) -> str:
    current = now or datetime.utcnow()
    return f"rw_{current:%y%m%d}_{uuid4().hex[:12]}"


def new_assignment_id(now: datetime | None = None) -> str:
    current = now or datetime.utcnow()
    return f"as_{current:%y%m%d}_{uuid4().hex[:12]}"


# 匿名访客会话 ID（用于归属免费预览与每日额度）
def new_guest_session_id() -> str:
    return f"guest_{uuid4().hex}"
