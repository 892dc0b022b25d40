from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from humanizer.core.auth import require_admin_key
from humanizer.core.database import get_db
from humanizer.models import Payment, PaymentStatus, RewriteJob, StripeEvent, TokenUsage, UserAccount


router = APIRouter()


# 管理后台汇总：用户、支付、任务与用量
@router.get("/dashboard", dependencies=[Depends(require_admin_key)])
def get_dashboard(db: Session = Depends(get_db)) -> dict:
    users_count = db.query(func.count(UserAccount.id)).scalar() or 0
    outstanding = db.query(func.coalesce(func.sum(UserAccount.token_balance), 0)).scalar() or 0

    payments_by_status = dict(
        db.query(Payment.status, func.count(Payment.id)).group_by(Payment.status).all()
    )
    credited_tokens, revenue = (
        db.query(
            func.coalesce(func.sum(Payment.tokens), 0),
            func.coalesce(func.sum(Payment.amount), 0),
        )
        .filter(Payment.status == PaymentStatus.COMPLETED.value)
        .one()
    )
    events_count = db.query(func.count(StripeEvent.event_id)).scalar() or 0

    jobs_by_status = dict(
        db.query(RewriteJob.status, func.count(RewriteJob.id)).group_by(RewriteJob.status).all()
    )
    usage_calls, tokens_spent = (
        db.query(
            func.count(TokenUsage.id),
            func.coalesce(func.sum(TokenUsage.cost), 0),
        )
        .one()
    )

    return {
        "time": datetime.utcnow().isoformat() + "Z",
        "users": {
            "count": int(users_count),
            "outstanding_tokens": int(outstanding),
        },
        "payments": {
            "pending": int(payments_by_status.get(PaymentStatus.PENDING.value, 0)),
            "completed": int(payments_by_status.get(PaymentStatus.COMPLETED.value, 0)),
            "credited_tokens": int(credited_tokens or 0),
            "revenue_usd": int(revenue or 0),
            "webhook_events": int(events_count),
        },
        "jobs": {status: int(count) for status, count in jobs_by_status.items()},
        "usage": {
            "calls": int(usage_calls or 0),
            "tokens_spent": int(tokens_spent or 0),
        },
    }
