from __future__ import annotations

import logging
from datetime import datetime

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from humanizer.core.auth import UserContext, get_current_user
from humanizer.core.config import settings
from humanizer.core.database import get_db
from humanizer.core.pricing import tokens_for_amount
from humanizer.core.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentOut,
    PaymentStatusResponse,
)
from humanizer.models import PaymentStatus
from humanizer.services.ledger import (
    UserNotFoundError,
    complete_and_credit,
    create_pending_payment,
    get_payment,
    is_event_processed,
    list_payments,
    record_webhook_event,
    update_payment_metadata,
)
from humanizer.services.stripe_service import (
    InvalidWebhookError,
    StripeNotConfiguredError,
    create_checkout_session,
    extract_credit,
    retrieve_checkout_session,
    verify_webhook,
)
from humanizer.services.usage_service import get_or_create_account


logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_int(value: str | None) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


# 创建 Stripe 结账会话并写入待支付记录
@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    payload: CheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> CheckoutResponse:
    tokens = tokens_for_amount(payload.amount)
    origin = settings.public_base_url or str(request.base_url)
    get_or_create_account(db, user.user_id, user.email)

    try:
        session = create_checkout_session(user.user_id, payload.amount, tokens, origin)
    except StripeNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except stripe.StripeError as exc:
        logger.error(f"Checkout session creation failed for user {user.user_id}: {exc}")
        raise HTTPException(status_code=502, detail="CREATE_SESSION_FAILED") from exc

    try:
        create_pending_payment(
            db,
            session_id=session["id"],
            user_id=user.user_id,
            amount=payload.amount,
            tokens=tokens,
            metadata={"origin": origin},
        )
    except SQLAlchemyError:
        # 待支付记录写入失败时，webhook 仍会以 completed 状态补建记录并入账
        db.rollback()
        logger.exception(f"Could not store pending payment for session {session['id']}")

    return CheckoutResponse(session_id=session["id"], url=session.get("url"))


# 前端回跳后轮询支付状态；已支付时幂等入账
@router.get("/status/{session_id}", response_model=PaymentStatusResponse)
def payment_status(
    session_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> PaymentStatusResponse:
    payment = get_payment(db, session_id)
    if payment and payment.user_id != user.user_id:
        raise HTTPException(status_code=404, detail="Payment not found.")
    if payment and payment.status == PaymentStatus.COMPLETED.value:
        return PaymentStatusResponse(session_id=session_id, status="completed")

    try:
        session = retrieve_checkout_session(session_id)
    except StripeNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except stripe.StripeError as exc:
        logger.error(f"Payment status check failed for session {session_id}: {exc}")
        raise HTTPException(status_code=502, detail="Failed to check payment status.") from exc

    if session["payment_status"] == "paid" and session["status"] == "complete":
        if payment:
            owner, tokens = payment.user_id, payment.tokens
        else:
            metadata = session["metadata"]
            owner = metadata.get("user_id") or session.get("client_reference_id") or ""
            tokens = _parse_int(metadata.get("tokens"))
            if owner != user.user_id:
                raise HTTPException(status_code=404, detail="Payment not found.")
        if tokens <= 0:
            raise HTTPException(status_code=422, detail="Payment has no tokens to credit.")
        get_or_create_account(db, owner)
        try:
            result = complete_and_credit(db, session_id, owner, tokens)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return PaymentStatusResponse(
            session_id=session_id,
            status="completed",
            credited=not result.already_completed,
            new_balance=result.new_balance,
        )

    if session["status"] == "expired":
        return PaymentStatusResponse(session_id=session_id, status="failed")
    if session["status"] != "open" and session["payment_status"] in ("unpaid", "no_payment_required"):
        return PaymentStatusResponse(session_id=session_id, status="failed")
    return PaymentStatusResponse(session_id=session_id, status="pending")


# 在事件循环中读取原始请求体，签名校验必须使用未解析的字节
async def _raw_body(request: Request) -> bytes:
    return await request.body()


# Stripe webhook：至少一次投递，依赖 ledger 保证只入账一次
# 同步处理函数由线程池执行，数据库写锁等待不阻塞事件循环
@router.post("/webhook")
def stripe_webhook(
    payload: bytes = Depends(_raw_body),
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
) -> dict:
    try:
        event = verify_webhook(payload, stripe_signature)
    except StripeNotConfiguredError as exc:
        logger.error(f"Webhook rejected: {exc}")
        raise HTTPException(status_code=500, detail="Webhook not configured.") from exc
    except InvalidWebhookError as exc:
        logger.warning(f"Webhook rejected: {exc}")
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    event_id = event["id"]
    event_type = event["type"]
    if is_event_processed(db, event_id):
        logger.info(f"Webhook event {event_id} already processed, skipping")
        return {"received": True, "duplicate": True}

    credit = extract_credit(event)
    if credit is None:
        record_webhook_event(db, event_id, event_type)
        return {"received": True, "credited": False}

    try:
        result = complete_and_credit(db, credit.session_id, credit.user_id, credit.tokens)
    except UserNotFoundError as exc:
        # 用户不存在时重试无意义，返回 200 终止重投
        logger.error(f"Webhook event {event_id}: {exc}")
        record_webhook_event(db, event_id, event_type, credit.session_id)
        return {"received": True, "credited": False}

    updates = {
        f"event_{event_id}": True,
        "last_processed_event": event_id,
        "last_processed_at": datetime.utcnow().isoformat(),
    }
    update_payment_metadata(
        db, credit.session_id, updates, payment_intent_id=credit.payment_intent_id
    )
    record_webhook_event(db, event_id, event_type, credit.session_id)
    return {"received": True, "credited": not result.already_completed}


@router.get("/history", response_model=list[PaymentOut])
def payment_history(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> list[PaymentOut]:
    return [
        PaymentOut(
            session_id=payment.session_id,
            amount=payment.amount,
            tokens=payment.tokens,
            status=payment.status,
            created_at=payment.created_at.isoformat() if payment.created_at else None,
            completed_at=payment.completed_at.isoformat() if payment.completed_at else None,
        )
        for payment in list_payments(db, user_id=user.user_id, limit=limit)
    ]
