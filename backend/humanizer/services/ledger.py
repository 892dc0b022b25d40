from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from humanizer.models import Payment, PaymentStatus, StripeEvent, UserAccount

logger = logging.getLogger(__name__)


# 待入账用户不存在：重试无意义
class UserNotFoundError(LookupError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


@dataclass(frozen=True)
class CreditResult:
    already_completed: bool
    new_balance: int | None = None


def get_payment(db: Session, session_id: str) -> Payment | None:
    return db.query(Payment).filter(Payment.session_id == session_id).first()


# 创建待支付记录（结账时调用）
def create_pending_payment(
    db: Session,
    session_id: str,
    user_id: str,
    amount: int,
    tokens: int,
    metadata: Dict[str, Any] | None = None,
) -> Payment:
    now = datetime.utcnow()
    payment = Payment(
        id=uuid4().hex,
        session_id=session_id,
        user_id=user_id,
        amount=amount,
        tokens=tokens,
        status=PaymentStatus.PENDING.value,
        metadata_json=metadata or {},
        created_at=now,
        updated_at=now,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def update_payment_metadata(
    db: Session,
    session_id: str,
    updates: Dict[str, Any],
    payment_intent_id: str | None = None,
) -> None:
    payment = get_payment(db, session_id)
    if not payment:
        return
    # JSON 列需整体替换才能被 ORM 识别为已修改
    payment.metadata_json = {**(payment.metadata_json or {}), **updates}
    if payment_intent_id:
        payment.payment_intent_id = payment_intent_id
    payment.updated_at = datetime.utcnow()
    db.commit()


def list_payments(db: Session, user_id: str | None = None, limit: int = 50) -> List[Payment]:
    query = db.query(Payment)
    if user_id is not None:
        query = query.filter(Payment.user_id == user_id)
    return query.order_by(Payment.created_at.desc()).limit(limit).all()


# 尝试认领支付记录：只有完成 pending -> completed 转换的调用者返回 True
def _claim_payment(db: Session, session_id: str, user_id: str, tokens: int) -> bool:
    now = datetime.utcnow()
    payment = get_payment(db, session_id)
    if payment:
        observed = payment.status
        if observed == PaymentStatus.COMPLETED.value:
            return False
        updated = (
            db.query(Payment)
            .filter(Payment.session_id == session_id, Payment.status == observed)
            .update(
                {
                    "status": PaymentStatus.COMPLETED.value,
                    "completed_at": now,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    db.add(
        Payment(
            id=uuid4().hex,
            session_id=session_id,
            user_id=user_id,
            amount=0,
            tokens=tokens,
            status=PaymentStatus.COMPLETED.value,
            metadata_json={"webhook_created": True},
            created_at=now,
            updated_at=now,
            completed_at=now,
        )
    )
    # 并发插入时唯一约束在这里触发 IntegrityError
    db.flush()
    return True


def _credit_balance(db: Session, user_id: str, tokens: int) -> int:
    updated = (
        db.query(UserAccount)
        .filter(UserAccount.id == user_id)
        .update(
            {UserAccount.token_balance: UserAccount.token_balance + tokens},
            synchronize_session=False,
        )
    )
    if not updated:
        raise UserNotFoundError(user_id)
    balance = db.query(UserAccount.token_balance).filter(UserAccount.id == user_id).scalar()
    return int(balance or 0)


# 将支付标记为 completed 并为用户入账，每个 session_id 只入账一次
# 重复调用或并发落败方返回 already_completed=True；存储失败回滚后向上抛出
def complete_and_credit(db: Session, session_id: str, user_id: str, tokens: int) -> CreditResult:
    if tokens <= 0:
        raise ValueError("tokens must be positive.")

    try:
        if not _claim_payment(db, session_id, user_id, tokens):
            db.rollback()
            logger.info(f"Payment {session_id} already completed, skipping credit")
            return CreditResult(already_completed=True)
        new_balance = _credit_balance(db, user_id, tokens)
        db.commit()
    except IntegrityError:
        db.rollback()
        if get_payment(db, session_id) is not None:
            logger.info(f"Payment {session_id} inserted concurrently, skipping credit")
            return CreditResult(already_completed=True)
        raise
    except (SQLAlchemyError, UserNotFoundError):
        db.rollback()
        raise

    logger.info(f"Credited {tokens} tokens to user {user_id} for payment {session_id}")
    return CreditResult(already_completed=False, new_balance=new_balance)


def is_event_processed(db: Session, event_id: str) -> bool:
    return db.get(StripeEvent, event_id) is not None


# 记录已处理的 webhook 事件；重复事件返回 False
def record_webhook_event(
    db: Session, event_id: str, event_type: str, session_id: str | None = None
) -> bool:
    if is_event_processed(db, event_id):
        return False
    db.add(
        StripeEvent(
            event_id=event_id,
            event_type=event_type,
            session_id=session_id,
            created_at=datetime.utcnow(),
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True
