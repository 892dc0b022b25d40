from __future__ import annotations

import os

from pydantic import model_validator
from pydantic_settings import BaseSettings


# 应用配置：统一管理环境变量与默认值
class Settings(BaseSettings):
    # 运行环境标识（便于日志、调试、区分开发/生产）
    app_env: str = "dev"
    # 日志级别
    log_level: str = "INFO"
    # FastAPI 根路径（反向代理或子路径部署时使用）
    root_path: str = ""
    # API 前缀（兼容多版本路由或网关转发）
    api_prefix: str | None = None
    # 项目运行时数据根目录
    data_dir: str = "data"
    # SQLite 数据库文件路径（默认本地文件）
    sqlite_path: str = "data/app.db"
    # 可选数据库连接串（优先用于 PostgreSQL 等外部数据库）
    database_url: str | None = None
    # SQLite 写锁等待时间（秒），并发 webhook 时避免立即报 locked
    sqlite_busy_timeout_seconds: float = 30.0

    # Celery Broker（任务队列）连接地址
    celery_broker_url: str = "redis://localhost:6379/0"
    # Celery 结果存储地址
    celery_result_backend: str = "redis://localhost:6379/1"
    # 改写任务所在队列
    celery_rewrite_queue: str = "rewrite"
    # 任务结果保留时间（秒）
    celery_result_expires_seconds: int = 86400

    # 切块窗口大小（单词数）
    chunk_window_words: int = 300
    # 相邻窗口重叠的单词数
    chunk_overlap_words: int = 50

    # OpenAI
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    # Anthropic
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_model: str = "claude-3-5-sonnet-latest"
    anthropic_version: str = "2023-06-01"
    # DeepSeek（OpenAI 兼容协议）
    deepseek_api_key: str | None = None
    deepseek_base_url: str = "https://api.deepseek.com/v1"
    deepseek_model: str = "deepseek-chat"
    # Perplexity（OpenAI 兼容协议）
    perplexity_api_key: str | None = None
    perplexity_base_url: str = "https://api.perplexity.ai"
    perplexity_model: str = "sonar"
    # 默认改写模型提供方
    llm_provider: str = "anthropic"
    # LLM 请求超时时间（秒）
    llm_timeout_seconds: int = 120
    # 单次改写最大输出 token
    llm_max_output_tokens: int = 4000

    # GPTZero 检测服务
    gptzero_api_key: str | None = None
    gptzero_url: str = "https://api.gptzero.me/v2/predict/text"
    gptzero_timeout_seconds: int = 30

    # Stripe 密钥与 webhook 签名密钥
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    # 支付回跳地址（留空则按请求 Host 推导）
    public_base_url: str | None = None

    # JWT 验证：对称密钥 / JWKS 地址 / issuer / audience
    auth_jwt_secret: str | None = None
    auth_jwks_url: str | None = None
    auth_jwt_issuer: str | None = None
    auth_jwt_audience: str = "authenticated"

    # 管理后台访问密钥（用于 /admin/dashboard）
    admin_api_key: str | None = None

    # 允许跨域访问的前端地址列表（逗号分隔）
    cors_origins: str = "http://localhost:5173"

    # Pydantic Settings 行为配置
    class Config:
        env_file = (
            os.getenv("APP_ENV_FILE") or "config/.env",
            "backend/config/.env",
            ".env",
        )
        case_sensitive = False
        extra = "ignore" if os.getenv("APP_ENV", "dev").lower() == "dev" else "forbid"

    # 切块参数必须满足 0 <= overlap < window，否则窗口无法推进
    @model_validator(mode="after")
    def _check_chunk_window(self) -> "Settings":
        if self.chunk_window_words <= 0:
            raise ValueError("CHUNK_WINDOW_WORDS must be positive.")
        if not 0 <= self.chunk_overlap_words < self.chunk_window_words:
            raise ValueError("CHUNK_OVERLAP_WORDS must satisfy 0 <= overlap < window.")
        return self

    # 解析 CORS 允许域名列表（供中间件直接使用）
    @property
    def cors_origin_list(self) -> list[str]:
        return [item.strip() for item in self.cors_origins.split(",") if item.strip()]

    # 确保运行时数据目录存在
    def ensure_dirs(self) -> None:
        for path in (self.data_dir, os.path.dirname(self.sqlite_path)):
            if path:
                os.makedirs(path, exist_ok=True)


# 全局配置实例
settings = Settings()
