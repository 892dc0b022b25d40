from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient

from humanizer.core.config import settings


@dataclass
class UserContext:
    user_id: str
    email: str | None
    claims: dict[str, Any]


# 按 JWKS 地址缓存客户端（公钥在客户端内部缓存）
@lru_cache(maxsize=4)
def _jwks_client_for(url: str) -> PyJWKClient:
    return PyJWKClient(url)


# HS* 使用共享密钥，其余算法从 JWKS 取公钥
def _signing_key(token: str) -> tuple[Any, str]:
    alg = jwt.get_unverified_header(token).get("alg") or ""
    if not alg or alg.lower() == "none":
        raise HTTPException(status_code=401, detail="Invalid JWT algorithm.")
    if alg.startswith("HS"):
        if not settings.auth_jwt_secret:
            raise HTTPException(status_code=500, detail="AUTH_JWT_SECRET not configured.")
        return settings.auth_jwt_secret, alg
    if not settings.auth_jwks_url:
        raise HTTPException(status_code=500, detail="AUTH_JWKS_URL not configured.")
    return _jwks_client_for(settings.auth_jwks_url).get_signing_key_from_jwt(token).key, alg


def verify_jwt(token: str) -> dict[str, Any]:
    try:
        key, alg = _signing_key(token)
        return jwt.decode(
            token,
            key,
            algorithms=[alg],
            audience=settings.auth_jwt_audience,
            issuer=settings.auth_jwt_issuer,
            options={"verify_iss": bool(settings.auth_jwt_issuer)},
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid JWT.") from exc


# FastAPI 依赖：解析 Bearer token 得到当前用户
def get_current_user(authorization: str = Header(default="")) -> UserContext:
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    claims = verify_jwt(token.strip())
    subject = claims.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="JWT has no subject.")
    return UserContext(user_id=str(subject), email=claims.get("email"), claims=claims)


# FastAPI 依赖：未携带 Authorization 时视为匿名访客
def get_optional_user(authorization: str = Header(default="")) -> UserContext | None:
    if not authorization:
        return None
    return get_current_user(authorization)


# FastAPI 依赖：管理接口需携带 X-Admin-Key
def require_admin_key(x_admin_key: str | None = Header(default=None, alias="X-Admin-Key")) -> None:
    if not settings.admin_api_key:
        raise HTTPException(status_code=503, detail="ADMIN_API_KEY not configured.")
    if x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Unauthorized.")
