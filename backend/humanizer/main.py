from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from humanizer.api.routes import (
    admin_router,
    homework_router,
    humanize_router,
    payments_router,
    user_router,
)
from humanizer.core.config import settings
from humanizer.core.database import init_db


logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# 应用入口：初始化 FastAPI 实例
app = FastAPI(title="Humanizer", root_path=settings.root_path or "")

# 配置 CORS，允许前端访问后端 API
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
api_prefix = settings.api_prefix
if api_prefix is None:
    api_prefix = "" if (settings.root_path or "").strip() else "/api"
api_prefix = api_prefix.rstrip("/")
app.include_router(humanize_router, prefix=f"{api_prefix}/humanize", tags=["humanize"])
app.include_router(homework_router, prefix=f"{api_prefix}/homework", tags=["homework"])
app.include_router(payments_router, prefix=f"{api_prefix}/payments", tags=["payments"])
app.include_router(user_router, prefix=f"{api_prefix}/user", tags=["user"])
app.include_router(admin_router, prefix=f"{api_prefix}/admin", tags=["admin"])


# 启动事件：创建数据库表结构
@app.on_event("startup")
def on_startup() -> None:
    init_db()
