from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from humanizer.core.auth import UserContext, get_current_user
from humanizer.core.database import get_db
from humanizer.core.schemas import (
    TokenCheckRequest,
    TokenCheckResponse,
    UserProfile,
    UserUsageResponse,
)
from humanizer.services.usage_service import (
    check_balance,
    get_or_create_account,
    summarize_usage,
)


router = APIRouter()


@router.get("/me", response_model=UserProfile)
def get_me(
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> UserProfile:
    account = get_or_create_account(db, user.user_id, user.email)
    return UserProfile(
        user_id=account.id,
        email=account.email or user.email,
        display_name=account.display_name,
        token_balance=account.token_balance,
    )


@router.get("/usage", response_model=UserUsageResponse)
def get_user_usage(
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> UserUsageResponse:
    account = get_or_create_account(db, user.user_id, user.email)
    summary = summarize_usage(db, user.user_id)
    return UserUsageResponse(
        calls=summary.calls,
        input_words=summary.input_words,
        output_words=summary.output_words,
        tokens_spent=summary.tokens_spent,
        token_balance=account.token_balance,
    )


# 处理前检查余额是否足够
@router.post("/check-tokens", response_model=TokenCheckResponse)
def check_tokens(
    payload: TokenCheckRequest,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> TokenCheckResponse:
    get_or_create_account(db, user.user_id, user.email)
    check = check_balance(db, user.user_id, payload.input_text, payload.provider)
    return TokenCheckResponse(
        can_process=check.can_process,
        input_words=check.input_words,
        estimated_output_words=check.estimated_output_words,
        estimated_cost=check.estimated_cost,
        remaining_balance=check.remaining_balance,
        message=check.message,
    )
