from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

import stripe
from jsonschema import ValidationError, validate

from humanizer.core.config import settings
from humanizer.core.json_schema import STRIPE_EVENT_SCHEMA

logger = logging.getLogger(__name__)

CREDIT_EVENT_TYPES = ("checkout.session.completed", "payment_intent.succeeded")


class StripeNotConfiguredError(RuntimeError):
    pass


class InvalidWebhookError(ValueError):
    pass


@dataclass(frozen=True)
class CreditRequest:
    session_id: str
    user_id: str
    tokens: int
    payment_intent_id: str | None = None


def _configure() -> None:
    if not settings.stripe_secret_key:
        raise StripeNotConfiguredError("STRIPE_SECRET_KEY not configured.")
    stripe.api_key = settings.stripe_secret_key


# 创建 Stripe Checkout 会话
def create_checkout_session(user_id: str, amount: int, tokens: int, origin: str) -> Dict[str, str]:
    _configure()
    base = origin.rstrip("/")
    session = stripe.checkout.Session.create(
        mode="payment",
        client_reference_id=user_id,
        metadata={"user_id": user_id, "tokens": str(tokens), "amount": str(amount)},
        line_items=[
            {
                "price_data": {
                    "currency": "usd",
                    "product_data": {
                        "name": f"{tokens:,} Humanizer Tokens",
                        "description": "Credits for AI rewriting",
                    },
                    "unit_amount": amount * 100,
                },
                "quantity": 1,
            }
        ],
        success_url=f"{base}/?payment=success&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base}/?payment=cancelled&session_id={{CHECKOUT_SESSION_ID}}",
    )
    logger.info(f"Created checkout session {session.id} for user {user_id}, tokens {tokens}")
    return {"id": session.id, "url": session.url}


# 查询 Checkout 会话，只保留判断支付状态所需字段
def retrieve_checkout_session(session_id: str) -> Dict[str, Any]:
    _configure()
    session = stripe.checkout.Session.retrieve(session_id)
    metadata = session.metadata or {}
    return {
        "id": session.id,
        "status": session.status,
        "payment_status": session.payment_status,
        "client_reference_id": session.client_reference_id,
        "metadata": {key: metadata.get(key) for key in ("user_id", "tokens", "amount")},
    }


# 校验 webhook 签名并解析为普通 dict
def verify_webhook(payload: bytes, signature: str | None) -> Dict[str, Any]:
    if not settings.stripe_webhook_secret:
        raise StripeNotConfiguredError("STRIPE_WEBHOOK_SECRET not configured.")
    try:
        stripe.Webhook.construct_event(payload, signature or "", settings.stripe_webhook_secret)
    except stripe.SignatureVerificationError as exc:
        raise InvalidWebhookError("Bad signature") from exc
    except ValueError as exc:
        raise InvalidWebhookError("Invalid payload") from exc
    return parse_event(payload)


def parse_event(payload: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(payload)
        validate(instance=event, schema=STRIPE_EVENT_SCHEMA)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise InvalidWebhookError(f"Invalid event payload: {exc}") from exc
    return event


def _parse_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


# 从事件中提取入账参数；不支持的事件或参数无效时返回 None
def extract_credit(event: Dict[str, Any]) -> CreditRequest | None:
    event_type = event.get("type")
    if event_type not in CREDIT_EVENT_TYPES:
        return None
    obj = event["data"]["object"]
    metadata = obj.get("metadata") or {}

    if event_type == "checkout.session.completed":
        session_id = obj["id"]
        user_id = metadata.get("user_id") or obj.get("client_reference_id") or ""
        payment_intent_id = obj.get("payment_intent")
    else:
        session_id = metadata.get("session_id") or obj["id"]
        user_id = metadata.get("user_id") or ""
        payment_intent_id = obj["id"]

    tokens = _parse_int(metadata.get("tokens"))
    if not user_id or tokens <= 0:
        logger.error(
            f"Invalid credit parameters in event {event.get('id')}: user_id={user_id!r}, tokens={tokens}"
        )
        return None
    return CreditRequest(
        session_id=session_id,
        user_id=str(user_id),
        tokens=tokens,
        payment_intent_id=payment_intent_id,
    )
