from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List

from sqlalchemy import false, func
from sqlalchemy.orm import Query, Session

from humanizer.core.pricing import FREE_LIMITS, estimate_output_words, normalize_provider
from humanizer.models import Assignment
from humanizer.services.chunk_service import count_words, tokenize
from humanizer.services.llm_service import solve_text
from humanizer.services.usage_service import (
    InsufficientBalanceError,
    charge_usage,
    check_balance,
)
from humanizer.utils.ids import new_assignment_id

logger = logging.getLogger(__name__)


class FreeLimitError(Exception):
    pass


# 作业归属：登录用户优先，其次匿名访客会话
@dataclass(frozen=True)
class AssignmentOwner:
    user_id: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class SolveResult:
    assignment: Assignment
    remaining_balance: int | None = None


def _owned(query: Query, owner: AssignmentOwner) -> Query:
    if owner.user_id:
        return query.filter(Assignment.user_id == owner.user_id)
    if owner.session_id:
        return query.filter(
            Assignment.user_id.is_(None), Assignment.session_id == owner.session_id
        )
    return query.filter(false())


# 截断为免费预览：靠近结尾处有句号时在句号处断开，否则补省略号
def truncate_response(response: str, max_words: int) -> str:
    words = tokenize(response)
    if len(words) <= max_words:
        return response
    truncated = " ".join(words[:max_words])
    break_point = truncated.rfind(".")
    if break_point > len(truncated) * 0.8:
        return truncated[: break_point + 1]
    return truncated + "..."


# 匿名会话当天已用单词数（输入 + 预览输出）
def guest_words_today(db: Session, session_id: str, now: datetime | None = None) -> int:
    day_start = (now or datetime.utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
    total = (
        db.query(func.coalesce(func.sum(Assignment.input_words + Assignment.output_words), 0))
        .filter(
            Assignment.user_id.is_(None),
            Assignment.session_id == session_id,
            Assignment.created_at >= day_start,
        )
        .scalar()
    )
    return int(total or 0)


def _check_free_limits(db: Session, session_id: str, text: str, input_words: int) -> None:
    if input_words > FREE_LIMITS["input"]:
        raise FreeLimitError(
            f"Free preview accepts up to {FREE_LIMITS['input']} words. Buy credits to submit more."
        )
    expected = input_words + min(estimate_output_words(text), FREE_LIMITS["output"])
    if guest_words_today(db, session_id) + expected > FREE_LIMITS["daily"]:
        raise FreeLimitError(
            f"Daily free limit of {FREE_LIMITS['daily']} words reached. Buy credits to continue."
        )


# 解答一道作业：登录用户按余额扣费拿完整答案，匿名用户受免费额度限制且只拿预览
def solve_assignment(
    db: Session, text: str, provider: str | None, owner: AssignmentOwner
) -> SolveResult:
    if not owner.user_id and not owner.session_id:
        raise ValueError("An assignment needs a user or a guest session.")
    name = normalize_provider(provider)
    input_words = count_words(text)

    if owner.user_id:
        check = check_balance(db, owner.user_id, text, name)
        if not check.can_process:
            raise InsufficientBalanceError(
                owner.user_id, check.estimated_cost, check.remaining_balance
            )
    else:
        _check_free_limits(db, owner.session_id, text, input_words)

    started = time.monotonic()
    answer = solve_text(text, provider=name)
    elapsed_ms = int((time.monotonic() - started) * 1000)

    remaining: int | None = None
    if owner.user_id:
        output = answer
        remaining = charge_usage(
            db, owner.user_id, name, input_words, count_words(answer), cap_at_balance=True
        )
    else:
        output = truncate_response(answer, FREE_LIMITS["output"])

    assignment = Assignment(
        id=new_assignment_id(),
        user_id=owner.user_id,
        session_id=None if owner.user_id else owner.session_id,
        input_text=text,
        llm_provider=name,
        llm_response=output,
        is_preview=not owner.user_id,
        processing_time_ms=elapsed_ms,
        input_words=input_words,
        output_words=count_words(output),
        created_at=datetime.utcnow(),
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    logger.info(
        f"Solved assignment {assignment.id} with {name} in {elapsed_ms} ms (preview={assignment.is_preview})"
    )
    return SolveResult(assignment=assignment, remaining_balance=remaining)


def list_assignments(db: Session, owner: AssignmentOwner, limit: int = 50) -> List[Assignment]:
    return (
        _owned(db.query(Assignment), owner)
        .order_by(Assignment.created_at.desc())
        .limit(limit)
        .all()
    )


def get_assignment(db: Session, assignment_id: str, owner: AssignmentOwner) -> Assignment | None:
    return _owned(db.query(Assignment), owner).filter(Assignment.id == assignment_id).first()


def delete_assignment(db: Session, assignment_id: str, owner: AssignmentOwner) -> bool:
    assignment = get_assignment(db, assignment_id, owner)
    if not assignment:
        return False
    db.delete(assignment)
    db.commit()
    return True


# 清理没有答案的作业记录，返回删除条数
def cleanup_empty_assignments(db: Session, owner: AssignmentOwner) -> int:
    removed = 0
    for assignment in _owned(db.query(Assignment), owner).all():
        if not (assignment.llm_response or "").strip():
            db.delete(assignment)
            removed += 1
    db.commit()
    return removed
