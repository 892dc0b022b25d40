"""
Tests for checkout, status polling and the Stripe webhook.

Webhook payloads are signed with the test secret so the real verification
path runs; calls that would reach the Stripe API are replaced.
"""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from humanizer.core.config import settings
from humanizer.core.pricing import tokens_for_amount
from humanizer.models import Payment, PaymentStatus, StripeEvent
from humanizer.services.ledger import create_pending_payment, get_payment

PAYMENTS = "humanizer.api.routes.payments"


def _signed_headers(payload: bytes) -> dict:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(settings.stripe_webhook_secret.encode(), signed, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={digest}", "Content-Type": "application/json"}


def _event(event_id: str, session_id: str = "cs_1", user_id: str = "user-1", tokens: int = 500) -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "client_reference_id": user_id,
                    "payment_intent": "pi_1",
                    "metadata": {"user_id": user_id, "tokens": str(tokens), "amount": "5"},
                }
            },
        }
    ).encode()


def _post_webhook(client, payload: bytes):
    return client.post("/api/payments/webhook", content=payload, headers=_signed_headers(payload))


@pytest.fixture
def stripe_session(monkeypatch):
    """Stand-in for retrieving a Checkout Session from Stripe."""
    state = {
        "id": "cs_1",
        "status": "complete",
        "payment_status": "paid",
        "client_reference_id": "user-1",
        "metadata": {"user_id": "user-1", "tokens": "500", "amount": "5"},
    }
    monkeypatch.setattr(f"{PAYMENTS}.retrieve_checkout_session", lambda session_id: dict(state, id=session_id))
    return state


class TestCheckout:
    def test_creates_session_and_pending_payment(self, client, db, monkeypatch) -> None:
        monkeypatch.setattr(
            f"{PAYMENTS}.create_checkout_session",
            lambda user_id, amount, tokens, origin: {"id": "cs_new", "url": "https://pay.test/cs_new"},
        )

        response = client.post("/api/payments/checkout", json={"amount": 5})

        assert response.status_code == 200
        assert response.json() == {"session_id": "cs_new", "url": "https://pay.test/cs_new"}
        payment = get_payment(db, "cs_new")
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.tokens == tokens_for_amount(5)
        assert payment.user_id == "user-1"

    def test_unsupported_amount(self, client) -> None:
        assert client.post("/api/payments/checkout", json={"amount": 7}).status_code == 422

    def test_stripe_failure(self, client, db, monkeypatch) -> None:
        def failing(*_args, **_kwargs):
            raise stripe.StripeError("card network down")

        monkeypatch.setattr(f"{PAYMENTS}.create_checkout_session", failing)

        response = client.post("/api/payments/checkout", json={"amount": 10})

        assert response.status_code == 502
        assert db.query(Payment).count() == 0


class TestPaymentStatus:
    def test_paid_session_is_credited_once(self, client, db, make_user, balance_of, stripe_session) -> None:
        make_user("user-1", balance=1000)
        create_pending_payment(db, "cs_1", "user-1", amount=5, tokens=500)

        first = client.get("/api/payments/status/cs_1").json()
        second = client.get("/api/payments/status/cs_1").json()

        assert first == {"session_id": "cs_1", "status": "completed", "credited": True, "new_balance": 1500}
        assert second["status"] == "completed"
        assert second["credited"] is False
        assert balance_of("user-1") == 1500

    def test_paid_session_without_record_uses_metadata(self, client, balance_of, stripe_session) -> None:
        response = client.get("/api/payments/status/cs_1")

        assert response.json()["credited"] is True
        assert balance_of("user-1") == 500

    def test_foreign_session_is_hidden(self, client, db, make_user, stripe_session) -> None:
        make_user("user-2")
        create_pending_payment(db, "cs_1", "user-2", amount=5, tokens=500)

        assert client.get("/api/payments/status/cs_1").status_code == 404

    def test_foreign_session_without_record_is_hidden(self, client, stripe_session) -> None:
        stripe_session["metadata"] = {"user_id": "user-2", "tokens": "500"}

        assert client.get("/api/payments/status/cs_1").status_code == 404

    @pytest.mark.parametrize(
        "status, payment_status, expected",
        [
            ("open", "unpaid", "pending"),
            ("expired", "unpaid", "failed"),
            ("complete", "unpaid", "failed"),
        ],
    )
    def test_unpaid_sessions(
        self, client, db, make_user, balance_of, stripe_session, status, payment_status, expected
    ) -> None:
        make_user("user-1")
        create_pending_payment(db, "cs_1", "user-1", amount=5, tokens=500)
        stripe_session.update(status=status, payment_status=payment_status)

        response = client.get("/api/payments/status/cs_1")

        assert response.json()["status"] == expected
        assert balance_of("user-1") == 0


class TestWebhook:
    def test_handler_runs_in_threadpool(self) -> None:
        import inspect

        from humanizer.api.routes.payments import stripe_webhook

        # 同步处理函数由 FastAPI 放入线程池，数据库等待不阻塞事件循环
        assert not inspect.iscoroutinefunction(stripe_webhook)

    def test_credits_user(self, client, db, make_user, balance_of) -> None:
        make_user("user-1", balance=1000)
        create_pending_payment(db, "cs_1", "user-1", amount=5, tokens=500)

        response = _post_webhook(client, _event("evt_1"))

        assert response.status_code == 200
        assert response.json() == {"received": True, "credited": True}
        assert balance_of("user-1") == 1500
        db.expire_all()
        payment = get_payment(db, "cs_1")
        assert payment.payment_intent_id == "pi_1"
        assert payment.metadata_json["last_processed_event"] == "evt_1"

    def test_redelivery_and_second_event_do_not_credit_again(self, client, make_user, balance_of) -> None:
        make_user("user-1", balance=0)

        assert _post_webhook(client, _event("evt_1")).json()["credited"] is True
        assert _post_webhook(client, _event("evt_1")).json() == {"received": True, "duplicate": True}
        assert _post_webhook(client, _event("evt_2")).json()["credited"] is False

        assert balance_of("user-1") == 500

    def test_webhook_after_status_poll(self, client, db, make_user, balance_of, stripe_session) -> None:
        make_user("user-1", balance=1000)
        create_pending_payment(db, "cs_1", "user-1", amount=5, tokens=500)

        client.get("/api/payments/status/cs_1")
        response = _post_webhook(client, _event("evt_1"))

        assert response.json()["credited"] is False
        assert balance_of("user-1") == 1500

    def test_unknown_user_is_acknowledged(self, client, db) -> None:
        response = _post_webhook(client, _event("evt_1", user_id="ghost"))

        assert response.status_code == 200
        assert response.json()["credited"] is False
        assert get_payment(db, "cs_1") is None
        assert db.get(StripeEvent, "evt_1") is not None

    def test_event_without_credit_is_recorded(self, client, db) -> None:
        payload = json.dumps({"id": "evt_9", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}}).encode()

        response = _post_webhook(client, payload)

        assert response.json() == {"received": True, "credited": False}
        assert db.get(StripeEvent, "evt_9").event_type == "invoice.paid"

    def test_storage_failure_is_retried_by_redelivery(self, client, db, make_user, balance_of, monkeypatch) -> None:
        from fastapi.testclient import TestClient
        from sqlalchemy.exc import OperationalError

        from humanizer.main import app
        from humanizer.services import ledger

        make_user("user-1", balance=1000)
        create_pending_payment(db, "cs_1", "user-1", amount=5, tokens=500)
        failures = {"left": 1}

        def flaky_complete_and_credit(*args, **kwargs):
            if failures["left"]:
                failures["left"] -= 1
                raise OperationalError("UPDATE payments", {}, Exception("disk I/O error"))
            return ledger.complete_and_credit(*args, **kwargs)

        monkeypatch.setattr(f"{PAYMENTS}.complete_and_credit", flaky_complete_and_credit)
        failing_client = TestClient(app, raise_server_exceptions=False)

        response = _post_webhook(failing_client, _event("evt_1"))

        # 非 2xx 让 Stripe 重投；事件未记录，余额未变
        assert response.status_code == 500
        db.expire_all()
        assert db.get(StripeEvent, "evt_1") is None
        assert balance_of("user-1") == 1000

        retried = _post_webhook(client, _event("evt_1"))

        assert retried.status_code == 200
        assert retried.json() == {"received": True, "credited": True}
        assert balance_of("user-1") == 1500
        assert _post_webhook(client, _event("evt_1")).json() == {"received": True, "duplicate": True}
        assert balance_of("user-1") == 1500

    def test_bad_signature(self, client, make_user, balance_of) -> None:
        make_user("user-1")
        payload = _event("evt_1")

        response = client.post(
            "/api/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
        )

        assert response.status_code == 400
        assert balance_of("user-1") == 0


def test_payment_history(client, db) -> None:
    create_pending_payment(db, "cs_a", "user-1", amount=5, tokens=10)
    create_pending_payment(db, "cs_b", "user-2", amount=5, tokens=10)

    response = client.get("/api/payments/history")

    assert response.status_code == 200
    assert [item["session_id"] for item in response.json()] == ["cs_a"]
