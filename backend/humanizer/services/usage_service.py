from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from humanizer.core.pricing import calculate_word_cost, estimate_output_words, normalize_provider
from humanizer.models import TokenUsage, UserAccount
from humanizer.services.chunk_service import count_words

logger = logging.getLogger(__name__)


class InsufficientBalanceError(Exception):
    def __init__(self, user_id: str, required: int, available: int) -> None:
        super().__init__(f"User {user_id} needs {required} tokens, has {available}")
        self.user_id = user_id
        self.required = required
        self.available = available


@dataclass(frozen=True)
class TokenCheck:
    can_process: bool
    input_words: int
    estimated_output_words: int
    estimated_cost: int
    remaining_balance: int
    message: str | None = None


@dataclass(frozen=True)
class UsageSummary:
    calls: int
    input_words: int
    output_words: int
    tokens_spent: int


# 获取或创建用户账户（首次登录时余额为 0）
def get_or_create_account(db: Session, user_id: str, email: str | None = None) -> UserAccount:
    account = db.get(UserAccount, user_id)
    if account:
        return account
    account = UserAccount(id=user_id, email=email, token_balance=0, created_at=datetime.utcnow())
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def get_balance(db: Session, user_id: str) -> int:
    balance = db.query(UserAccount.token_balance).filter(UserAccount.id == user_id).scalar()
    return int(balance or 0)


# 处理前预估费用并检查余额
def check_balance(db: Session, user_id: str, text: str, provider: str | None) -> TokenCheck:
    name = normalize_provider(provider)
    input_words = count_words(text)
    output_words = estimate_output_words(text)
    cost = calculate_word_cost(input_words, output_words, name)
    balance = get_balance(db, user_id)
    if balance >= cost:
        return TokenCheck(True, input_words, output_words, cost, balance)
    return TokenCheck(
        False,
        input_words,
        output_words,
        cost,
        balance,
        message=f"Insufficient balance: {cost} tokens required, {balance} available.",
    )


# 扣除一次调用的费用并记录用量，返回剩余余额
def charge_usage(
    db: Session,
    user_id: str,
    provider: str | None,
    input_words: int,
    output_words: int,
    job_id: str | None = None,
    cap_at_balance: bool = False,
) -> int:
    name = normalize_provider(provider)
    cost = calculate_word_cost(input_words, output_words, name)
    if cap_at_balance:
        # 实际输出超过预估时最多扣到余额为 0
        cost = min(cost, get_balance(db, user_id))
    try:
        # 条件扣费：余额不足时不更新任何行
        updated = (
            db.query(UserAccount)
            .filter(UserAccount.id == user_id, UserAccount.token_balance >= cost)
            .update(
                {UserAccount.token_balance: UserAccount.token_balance - cost},
                synchronize_session=False,
            )
        )
        if not updated:
            db.rollback()
            raise InsufficientBalanceError(user_id, cost, get_balance(db, user_id))
        remaining = get_balance(db, user_id)
        db.add(
            TokenUsage(
                id=uuid4().hex,
                user_id=user_id,
                job_id=job_id,
                provider=name,
                input_words=max(0, input_words),
                output_words=max(0, output_words),
                cost=cost,
                remaining_balance=remaining,
                created_at=datetime.utcnow(),
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(f"Charged {cost} tokens to user {user_id} ({name}), remaining {remaining}")
    return remaining


def summarize_usage(db: Session, user_id: str) -> UsageSummary:
    calls, input_words, output_words, spent = (
        db.query(
            func.count(TokenUsage.id),
            func.coalesce(func.sum(TokenUsage.input_words), 0),
            func.coalesce(func.sum(TokenUsage.output_words), 0),
            func.coalesce(func.sum(TokenUsage.cost), 0),
        )
        .filter(TokenUsage.user_id == user_id)
        .one()
    )
    return UsageSummary(
        calls=int(calls or 0),
        input_words=int(input_words or 0),
        output_words=int(output_words or 0),
        tokens_spent=int(spent or 0),
    )
