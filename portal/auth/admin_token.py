"""
管理员认证

Token 来源：X-Admin-Token 请求头，其次 Authorization: Bearer。
先查 admin_tokens 表，找不到可用记录时再与环境变量 ADMIN_TOKEN 比对。
失败一律返回 401 UNAUTHORIZED，不区分原因。
"""

import hmac
import logging
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import get_settings
from portal.db.session import get_db
from portal.services.admin_tokens import (
    authenticate_admin_token,
    generate_admin_token,
    hash_admin_token,
)

logger = logging.getLogger(__name__)

ENV_TOKEN_ID = "env_admin_token"

__all__ = [
    "AdminIdentity",
    "ENV_TOKEN_ID",
    "generate_admin_token",
    "get_admin_user",
    "hash_admin_token",
]


@dataclass
class AdminIdentity:
    token_id: str
    user_id: str | None = None


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "UNAUTHORIZED", "detail": "Unauthorized"},
    )


def _read_token(x_admin_token: str | None, authorization: str | None) -> str | None:
    if x_admin_token and x_admin_token.strip():
        return x_admin_token.strip()
    scheme, _, credentials = (authorization or "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


async def get_admin_user(
    x_admin_token: str | None = Header(None, alias="X-Admin-Token"),
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> AdminIdentity:
    """FastAPI 依赖：返回认证通过的管理员，否则抛出 401"""
    raw_token = _read_token(x_admin_token, authorization)
    if raw_token is None:
        raise _unauthorized()

    token = await authenticate_admin_token(db, raw_token)
    if token is not None:
        return AdminIdentity(token_id=token.id, user_id=token.user_id)

    fallback = get_settings().admin_token
    if fallback and hmac.compare_digest(raw_token.encode(), fallback.encode()):
        logger.debug("使用环境变量 ADMIN_TOKEN 认证")
        return AdminIdentity(token_id=ENV_TOKEN_ID)

    raise _unauthorized()
