from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from humanizer.core.auth import UserContext, get_current_user
from humanizer.core.celery_app import REWRITE_TASK, celery_app
from humanizer.core.database import get_db
from humanizer.core.pricing import list_providers
from humanizer.core.schemas import (
    AnalyzeRequest,
    BatchAnalyzeRequest,
    ChunkOut,
    ChunkRequest,
    ChunkResponse,
    ChunkStatsOut,
    DetectionOut,
    PresetOut,
    ProviderOut,
    ReconstructRequest,
    ReconstructResponse,
    RewriteJobOut,
    RewriteQueuedResponse,
    RewriteRequest,
)
from humanizer.models import RewriteJob
from humanizer.services.chunk_service import (
    TextChunk,
    chunk_stats,
    chunk_text,
    count_words,
    reconstruct_text,
)
from humanizer.services.detector_service import analyze_batch, analyze_text
from humanizer.services.prompt_strategy import list_presets
from humanizer.services.usage_service import check_balance, get_or_create_account
from humanizer.utils.ids import new_job_id


# API 路由器：改写相关接口
router = APIRouter()


def _to_chunk(item: ChunkOut) -> TextChunk:
    return TextChunk(
        id=item.id,
        content=item.content,
        start_word=item.start_word,
        end_word=item.end_word,
        ai_score=item.ai_score,
    )


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _job_out(job: RewriteJob) -> RewriteJobOut:
    return RewriteJobOut(
        job_id=job.id,
        status=job.status,
        provider=job.provider,
        output_text=job.output_text,
        input_ai_score=job.input_ai_score,
        output_ai_score=job.output_ai_score,
        error=job.error,
        created_at=_isoformat(job.created_at),
        completed_at=_isoformat(job.completed_at),
    )


# 将输入文本切块，供前端勾选
@router.post("/chunk", response_model=ChunkResponse)
def chunk_input(payload: ChunkRequest) -> ChunkResponse:
    chunks = chunk_text(payload.text)
    stats = chunk_stats(chunks)
    return ChunkResponse(
        chunks=[ChunkOut(**chunk.to_dict()) for chunk in chunks],
        stats=ChunkStatsOut(
            total_chunks=stats.total_chunks,
            total_words=stats.total_words,
            average_words_per_chunk=stats.average_words_per_chunk,
        ),
    )


# 按勾选结果拼回文本
@router.post("/reconstruct", response_model=ReconstructResponse)
def reconstruct_selection(payload: ReconstructRequest) -> ReconstructResponse:
    text = reconstruct_text([_to_chunk(item) for item in payload.chunks], payload.selected_chunk_ids)
    return ReconstructResponse(text=text, word_count=count_words(text))


@router.post("/analyze", response_model=DetectionOut)
def analyze(payload: AnalyzeRequest) -> DetectionOut:
    result = analyze_text(payload.text)
    return DetectionOut(ai_score=result.ai_score, is_ai=result.is_ai, confidence=result.confidence)


# 批量检测（如改写前后对比），逐条调用检测服务
@router.post("/analyze/batch", response_model=list[DetectionOut])
def analyze_many(payload: BatchAnalyzeRequest) -> list[DetectionOut]:
    return [
        DetectionOut(ai_score=result.ai_score, is_ai=result.is_ai, confidence=result.confidence)
        for result in analyze_batch(payload.texts)
    ]


# 可选模型档位及单价，供前端展示
@router.get("/providers", response_model=list[ProviderOut])
def get_providers() -> list[ProviderOut]:
    return [ProviderOut(**item) for item in list_providers()]


@router.get("/presets", response_model=list[PresetOut])
def get_presets() -> list[PresetOut]:
    return [PresetOut(**preset) for preset in list_presets()]


# 创建改写任务并交给 Celery 执行
@router.post("/rewrite", response_model=RewriteQueuedResponse)
def submit_rewrite(
    payload: RewriteRequest,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> RewriteQueuedResponse:
    if payload.selected_chunk_ids and not payload.chunks:
        raise HTTPException(status_code=400, detail="Chunks are required when selecting chunk ids.")

    get_or_create_account(db, user.user_id, user.email)
    chunks = [_to_chunk(item) for item in payload.chunks or []]
    source = (
        reconstruct_text(chunks, payload.selected_chunk_ids)
        if payload.selected_chunk_ids
        else payload.input_text
    )
    if not source.strip():
        raise HTTPException(status_code=400, detail="Selected chunks are empty.")

    check = check_balance(db, user.user_id, source, payload.provider)
    if not check.can_process:
        raise HTTPException(status_code=402, detail=check.message)

    job = RewriteJob(
        id=new_job_id(),
        user_id=user.user_id,
        input_text=payload.input_text,
        style_text=payload.style_text,
        content_mix_text=payload.content_mix_text,
        custom_instructions=payload.custom_instructions,
        selected_presets=payload.selected_presets,
        provider=payload.provider,
        mixing_mode=payload.mixing_mode,
        chunks=[chunk.to_dict() for chunk in chunks] or None,
        selected_chunk_ids=payload.selected_chunk_ids or None,
        status="pending",
        created_at=datetime.utcnow(),
    )
    db.add(job)
    db.commit()
    # 通过 Celery 派发任务
    task = celery_app.send_task(REWRITE_TASK, args=[job.id])
    return RewriteQueuedResponse(job_id=job.id, task_id=task.id, status="queued")


@router.get("/jobs", response_model=list[RewriteJobOut])
def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> list[RewriteJobOut]:
    rows = (
        db.query(RewriteJob)
        .filter(RewriteJob.user_id == user.user_id)
        .order_by(RewriteJob.created_at.desc())
        .limit(limit)
        .all()
    )
    return [_job_out(job) for job in rows]


@router.get("/jobs/{job_id}", response_model=RewriteJobOut)
def get_job(
    job_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> RewriteJobOut:
    job = db.get(RewriteJob, job_id)
    if not job or job.user_id != user.user_id:
        raise HTTPException(status_code=404, detail="Job not found.")
    return _job_out(job)
