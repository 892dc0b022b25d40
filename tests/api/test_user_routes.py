"""
Tests for the /api/user and /api/admin endpoints.
"""

import jwt

from humanizer.core.config import settings
from humanizer.services.usage_service import charge_usage


def test_me_creates_account_on_first_visit(client) -> None:
    response = client.get("/api/user/me")

    assert response.status_code == 200
    assert response.json() == {
        "user_id": "user-1",
        "email": "writer@example.com",
        "display_name": None,
        "token_balance": 0,
    }


def test_check_tokens(client, make_user) -> None:
    make_user("user-1", balance=100)

    response = client.post(
        "/api/user/check-tokens",
        json={"input_text": "one two three four five six seven eight nine ten", "provider": "anthropic"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["can_process"] is True
    assert body["estimated_cost"] == 30
    assert body["remaining_balance"] == 100


def test_usage_summary(client, db, make_user) -> None:
    make_user("user-1", balance=100)
    charge_usage(db, "user-1", "anthropic", 10, 20)

    body = client.get("/api/user/usage").json()

    assert body == {"calls": 1, "input_words": 10, "output_words": 20, "tokens_spent": 30, "token_balance": 70}


def test_missing_bearer_token_is_rejected() -> None:
    from fastapi.testclient import TestClient

    from humanizer.main import app

    response = TestClient(app).get("/api/user/me")

    assert response.status_code == 401


def test_hs256_token_is_accepted() -> None:
    from fastapi.testclient import TestClient

    from humanizer.main import app

    token = jwt.encode(
        {"sub": "user-9", "email": "nine@example.com", "aud": settings.auth_jwt_audience},
        settings.auth_jwt_secret,
        algorithm="HS256",
    )

    response = TestClient(app).get("/api/user/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["user_id"] == "user-9"


def test_token_with_wrong_secret_is_rejected() -> None:
    from fastapi.testclient import TestClient

    from humanizer.main import app

    token = jwt.encode({"sub": "user-9", "aud": settings.auth_jwt_audience}, "not-the-secret", algorithm="HS256")

    response = TestClient(app).get("/api/user/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


class TestAdminDashboard:
    def test_requires_key(self, client) -> None:
        assert client.get("/api/admin/dashboard").status_code == 401
        assert client.get("/api/admin/dashboard", headers={"X-Admin-Key": "wrong"}).status_code == 401

    def test_aggregates(self, client, make_user) -> None:
        make_user("user-1", balance=250)
        make_user("user-2", balance=50)

        response = client.get("/api/admin/dashboard", headers={"X-Admin-Key": settings.admin_api_key})

        assert response.status_code == 200
        body = response.json()
        assert body["users"] == {"count": 2, "outstanding_tokens": 300}
        assert body["payments"]["completed"] == 0
