"""
Tests for balance checks and usage charging.
"""

import pytest

from humanizer.models import TokenUsage, UserAccount
from humanizer.services.usage_service import (
    InsufficientBalanceError,
    charge_usage,
    check_balance,
    get_balance,
    get_or_create_account,
    summarize_usage,
)

TEN_WORDS = "one two three four five six seven eight nine ten"


def test_get_or_create_account_is_idempotent(db) -> None:
    first = get_or_create_account(db, "user-1", "writer@example.com")
    second = get_or_create_account(db, "user-1", "other@example.com")

    assert first.id == second.id
    assert second.email == "writer@example.com"
    assert second.token_balance == 0
    assert db.query(UserAccount).count() == 1


def test_balance_of_unknown_user_is_zero(db) -> None:
    assert get_balance(db, "nobody") == 0


class TestCheckBalance:
    def test_enough_balance(self, db, make_user) -> None:
        make_user("user-1", balance=30)

        check = check_balance(db, "user-1", TEN_WORDS, "anthropic")

        assert check.can_process is True
        assert (check.input_words, check.estimated_output_words) == (10, 20)
        assert check.estimated_cost == 30
        assert check.message is None

    def test_short_balance(self, db, make_user) -> None:
        make_user("user-1", balance=29)

        check = check_balance(db, "user-1", TEN_WORDS, "anthropic")

        assert check.can_process is False
        assert check.remaining_balance == 29
        assert "30" in check.message


class TestChargeUsage:
    def test_deducts_and_records(self, db, make_user, balance_of) -> None:
        make_user("user-1", balance=100)

        remaining = charge_usage(db, "user-1", "anthropic", 10, 20, job_id="rw_1")

        assert remaining == 70
        assert balance_of("user-1") == 70
        usage = db.query(TokenUsage).one()
        assert (usage.job_id, usage.cost, usage.remaining_balance) == ("rw_1", 30, 70)

    def test_insufficient_balance_changes_nothing(self, db, make_user, balance_of) -> None:
        make_user("user-1", balance=10)

        with pytest.raises(InsufficientBalanceError) as excinfo:
            charge_usage(db, "user-1", "anthropic", 10, 20)

        assert (excinfo.value.required, excinfo.value.available) == (30, 10)
        assert balance_of("user-1") == 10
        assert db.query(TokenUsage).count() == 0

    def test_summarize_usage(self, db, make_user) -> None:
        make_user("user-1", balance=1000)
        charge_usage(db, "user-1", "anthropic", 10, 20)
        charge_usage(db, "user-1", "anthropic", 5, 5)

        summary = summarize_usage(db, "user-1")

        assert summary.calls == 2
        assert (summary.input_words, summary.output_words) == (15, 25)
        assert summary.tokens_spent == 40

    def test_summarize_without_usage(self, db) -> None:
        assert summarize_usage(db, "user-1").calls == 0
