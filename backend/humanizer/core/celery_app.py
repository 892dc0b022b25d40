from __future__ import annotations

from celery import Celery

from humanizer.core.config import settings

REWRITE_TASK = "humanizer.tasks.rewrite.process_rewrite_job"

# 改写任务由独立队列消费，worker 启动时需指定 -Q
celery_app = Celery(
    "humanizer",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["humanizer.tasks.rewrite"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_routes={REWRITE_TASK: {"queue": settings.celery_rewrite_queue}},
    # worker 崩溃时任务重新投递；任务内部按状态认领，重复执行不会重复扣费
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # LLM 调用耗时长，每个进程只预取一个任务
    worker_prefetch_multiplier=1,
    result_expires=settings.celery_result_expires_seconds,
)
