from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List

from humanizer.core.celery_app import celery_app
from humanizer.core.database import SessionLocal
from humanizer.models import RewriteJob
from humanizer.services.chunk_service import TextChunk, chunk_text, count_words, reconstruct_text
from humanizer.services.detector_service import analyze_batch
from humanizer.services.llm_service import LLMServiceError, rewrite_text
from humanizer.services.usage_service import InsufficientBalanceError, charge_usage

logger = logging.getLogger(__name__)


# 创建数据库会话
def _db_session():
    return SessionLocal()


def _fail_job(db, job: RewriteJob, error: str) -> Dict[str, Any]:
    job.status = "failed"
    job.error = error
    job.completed_at = datetime.utcnow()
    db.commit()
    logger.warning(f"Rewrite job {job.id} failed: {error}")
    return {"ok": False, "job_id": job.id, "error": error}


# 有选中 chunk 时只改写选中部分（重叠去重后拼接），否则改写全文
def select_source_text(job: RewriteJob) -> str:
    if job.chunks and job.selected_chunk_ids:
        chunks = [TextChunk.from_dict(item) for item in job.chunks]
        return reconstruct_text(chunks, job.selected_chunk_ids)
    return job.input_text


# 按不重叠窗口顺序改写，保证输出不重复
def rewrite_in_windows(text: str, job: RewriteJob) -> str:
    outputs: List[str] = []
    for window in chunk_text(text, overlap=0):
        rewritten = rewrite_text(
            window.content,
            style_text=job.style_text,
            content_mix_text=job.content_mix_text,
            custom_instructions=job.custom_instructions,
            presets=job.selected_presets or [],
            provider=job.provider,
            mixing_mode=job.mixing_mode,
        )
        if rewritten.strip():
            outputs.append(rewritten.strip())
    return "\n\n".join(outputs)


# 认领任务：只有把 pending/failed 改为 processing 的调用者继续执行
def _claim_job(db, job_id: str) -> bool:
    claimed = (
        db.query(RewriteJob)
        .filter(RewriteJob.id == job_id, RewriteJob.status.in_(("pending", "failed")))
        .update({"status": "processing", "error": None}, synchronize_session=False)
    )
    db.commit()
    return claimed == 1


def _run_job(db, job: RewriteJob) -> Dict[str, Any]:
    source = select_source_text(job)
    if not source.strip():
        return _fail_job(db, job, "EMPTY_INPUT")

    try:
        output = rewrite_in_windows(source, job)
    except LLMServiceError as exc:
        return _fail_job(db, job, str(exc))
    if not output:
        return _fail_job(db, job, "EMPTY_OUTPUT")

    input_result, output_result = analyze_batch([source, output])

    try:
        remaining = charge_usage(
            db,
            job.user_id,
            job.provider,
            count_words(source),
            count_words(output),
            job_id=job.id,
        )
    except InsufficientBalanceError:
        return _fail_job(db, job, "INSUFFICIENT_BALANCE")

    job.output_text = output
    job.input_ai_score = input_result.ai_score
    job.output_ai_score = output_result.ai_score
    job.status = "done"
    job.completed_at = datetime.utcnow()
    db.commit()
    return {
        "ok": True,
        "job_id": job.id,
        "status": "done",
        "input_ai_score": input_result.ai_score,
        "output_ai_score": output_result.ai_score,
        "remaining_balance": remaining,
    }


# Celery 任务：执行一次改写（切窗 -> LLM -> 检测 -> 扣费）
@celery_app.task
def process_rewrite_job(job_id: str) -> Dict[str, Any]:
    db = _db_session()
    try:
        if not _claim_job(db, job_id):
            job = db.get(RewriteJob, job_id)
            if not job:
                return {"ok": False, "job_id": job_id, "error": "JOB_NOT_FOUND"}
            if job.status == "done":
                # 任务重复投递时不重复扣费
                return {"ok": True, "job_id": job_id, "status": "done"}
            logger.info(f"Rewrite job {job_id} is already being processed, skipping")
            return {"ok": False, "job_id": job_id, "error": "JOB_IN_PROGRESS"}

        job = db.get(RewriteJob, job_id)
        try:
            return _run_job(db, job)
        except Exception:
            db.rollback()
            logger.exception(f"Rewrite job {job_id} crashed")
            _fail_job(db, db.get(RewriteJob, job_id), "INTERNAL_ERROR")
            raise
    finally:
        db.close()
