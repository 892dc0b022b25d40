from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from humanizer.core.auth import UserContext, get_optional_user
from humanizer.core.database import get_db
from humanizer.core.schemas import (
    AssignmentListItem,
    AssignmentOut,
    HomeworkRequest,
    HomeworkResponse,
)
from humanizer.models import Assignment
from humanizer.services.homework_service import (
    AssignmentOwner,
    FreeLimitError,
    cleanup_empty_assignments,
    delete_assignment,
    get_assignment,
    list_assignments,
    solve_assignment,
)
from humanizer.services.llm_service import LLMServiceError
from humanizer.services.usage_service import InsufficientBalanceError, get_or_create_account
from humanizer.utils.ids import new_guest_session_id


# API 路由器：作业解答相关接口
router = APIRouter()


def _owner(user: UserContext | None, session_id: str | None) -> AssignmentOwner:
    if user:
        return AssignmentOwner(user_id=user.user_id)
    return AssignmentOwner(session_id=session_id)


def _list_item(assignment: Assignment) -> AssignmentListItem:
    return AssignmentListItem(
        id=assignment.id,
        input_text=assignment.input_text,
        llm_provider=assignment.llm_provider,
        is_preview=assignment.is_preview,
        processing_time_ms=assignment.processing_time_ms or 0,
        created_at=assignment.created_at.isoformat() if assignment.created_at else None,
    )


# 解答作业：登录用户扣费返回完整答案，匿名用户返回免费预览
@router.post("/process", response_model=HomeworkResponse)
def process_homework(
    payload: HomeworkRequest,
    x_session_id: str | None = Header(default=None, alias="X-Session-Id"),
    db: Session = Depends(get_db),
    user: UserContext | None = Depends(get_optional_user),
) -> HomeworkResponse:
    session_id = None
    if user:
        get_or_create_account(db, user.user_id, user.email)
    else:
        session_id = payload.session_id or x_session_id or new_guest_session_id()

    try:
        result = solve_assignment(
            db, payload.input_text, payload.provider, _owner(user, session_id)
        )
    except InsufficientBalanceError as exc:
        raise HTTPException(status_code=402, detail=str(exc)) from exc
    except FreeLimitError as exc:
        raise HTTPException(status_code=402, detail=str(exc)) from exc
    except LLMServiceError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    assignment = result.assignment
    return HomeworkResponse(
        id=assignment.id,
        llm_response=assignment.llm_response or "",
        is_preview=assignment.is_preview,
        session_id=session_id,
        input_words=assignment.input_words,
        output_words=assignment.output_words,
        processing_time_ms=assignment.processing_time_ms,
        remaining_balance=result.remaining_balance,
    )


@router.get("/assignments", response_model=list[AssignmentListItem])
def get_assignments(
    limit: int = Query(50, ge=1, le=200),
    x_session_id: str | None = Header(default=None, alias="X-Session-Id"),
    db: Session = Depends(get_db),
    user: UserContext | None = Depends(get_optional_user),
) -> list[AssignmentListItem]:
    owner = _owner(user, x_session_id)
    return [_list_item(item) for item in list_assignments(db, owner, limit=limit)]


# 清理没有答案的作业记录（只作用于当前用户或访客会话）
@router.post("/assignments/cleanup")
def cleanup_assignments(
    x_session_id: str | None = Header(default=None, alias="X-Session-Id"),
    db: Session = Depends(get_db),
    user: UserContext | None = Depends(get_optional_user),
) -> dict:
    return {"removed": cleanup_empty_assignments(db, _owner(user, x_session_id))}


@router.get("/assignments/{assignment_id}", response_model=AssignmentOut)
def get_assignment_detail(
    assignment_id: str,
    x_session_id: str | None = Header(default=None, alias="X-Session-Id"),
    db: Session = Depends(get_db),
    user: UserContext | None = Depends(get_optional_user),
) -> AssignmentOut:
    assignment = get_assignment(db, assignment_id, _owner(user, x_session_id))
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found.")
    return AssignmentOut(
        **_list_item(assignment).model_dump(),
        llm_response=assignment.llm_response,
        input_words=assignment.input_words,
        output_words=assignment.output_words,
    )


@router.delete("/assignments/{assignment_id}")
def remove_assignment(
    assignment_id: str,
    x_session_id: str | None = Header(default=None, alias="X-Session-Id"),
    db: Session = Depends(get_db),
    user: UserContext | None = Depends(get_optional_user),
) -> dict:
    if not delete_assignment(db, assignment_id, _owner(user, x_session_id)):
        raise HTTPException(status_code=404, detail="Assignment not found.")
    return {"success": True}
