from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from humanizer.core.config import settings


# ORM 基类：所有模型继承它
class Base(DeclarativeBase):
    pass


# 创建数据库引擎（默认 SQLite，配置 DATABASE_URL 时使用外部数据库）
def build_engine(database_url: str | None = None) -> Engine:
    url = database_url or settings.database_url
    if url and not url.startswith("sqlite"):
        return create_engine(url, future=True, pool_pre_ping=True)
    if not url:
        settings.ensure_dirs()
        url = f"sqlite:///{settings.sqlite_path}"
    return create_engine(
        url,
        connect_args={
            "check_same_thread": False,
            "timeout": settings.sqlite_busy_timeout_seconds,
        },
        future=True,
    )


# 全局数据库引擎
engine = build_engine()
# 会话工厂
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


# 初始化数据库表
def init_db(bind: Engine | None = None) -> None:
    from humanizer.models import (  # noqa: F401
        assignment,
        payment,
        rewrite_job,
        stripe_event,
        token_usage,
        user_account,
    )

    target = bind or engine
    # For PostgreSQL, multiple gunicorn workers can race on create_all(),
    # causing DDL conflicts (e.g. duplicate pg_type). Use an advisory lock to serialize.
    if target.dialect.name.startswith("postgres"):
        lock_id = 58213307
        with target.connect() as conn:
            conn.execute(text("SELECT pg_advisory_lock(:lock_id)"), {"lock_id": lock_id})
            try:
                Base.metadata.create_all(bind=conn)
            finally:
                conn.execute(text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": lock_id})
            conn.commit()
    else:
        Base.metadata.create_all(bind=target)


# FastAPI 依赖：获取数据库会话
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
