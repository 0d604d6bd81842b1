"""
管理员 Token 服务

Token 格式为 {admin_token_prefix}{随机部分}，数据库只保存 SHA256 哈希和前 12 位前缀。
明文只在签发时返回一次，之后无法取回，丢失只能重新签发。
"""

import hashlib
import logging
import secrets
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import get_settings
from portal.exceptions import NotFoundError
from portal.models import AdminToken, User
from portal.models.user import ROLE_ADMIN

logger = logging.getLogger(__name__)

DISPLAY_PREFIX_LENGTH = 12


def hash_admin_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_admin_token(prefix: str | None = None) -> tuple[str, str, str]:
    """
    生成管理员 Token

    Returns:
        tuple: (明文 Token, 哈希值, 列表中显示的前缀)
    """
    raw_token = (prefix or get_settings().admin_token_prefix) + secrets.token_urlsafe(32)
    return raw_token, hash_admin_token(raw_token), raw_token[:DISPLAY_PREFIX_LENGTH]


async def get_admin_token(db: AsyncSession, token_id: str) -> AdminToken:
    token = await db.get(AdminToken, token_id)
    if token is None:
        raise NotFoundError("ADMIN_TOKEN_NOT_FOUND", "Admin token not found")
    return token


async def issue_admin_token(
    db: AsyncSession,
    name: str,
    user_id: str | None = None,
    expires_at: datetime | None = None,
    description: str | None = None,
) -> tuple[AdminToken, str]:
    """
    签发管理员 Token

    Returns:
        tuple: (已保存的 Token 记录, 明文 Token)

    Raises:
        NotFoundError: user_id 对应的用户不存在
    """
    if user_id is not None and await db.get(User, user_id) is None:
        raise NotFoundError("USER_NOT_FOUND", "User not found")

    raw_token, hashed, prefix = generate_admin_token()
    token = AdminToken(
        name=name,
        user_id=user_id,
        prefix=prefix,
        hashed_token=hashed,
        expires_at=expires_at,
        description=description,
    )
    db.add(token)
    await db.commit()
    await db.refresh(token)

    logger.info("管理员 Token 已签发", extra={"prefix": prefix, "user_id": user_id})
    return token, raw_token


async def list_admin_tokens(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 20,
    include_revoked: bool = False,
) -> tuple[list[AdminToken], int]:
    conditions = [] if include_revoked else [AdminToken.revoked.is_(False)]

    total = await db.scalar(select(func.count()).select_from(AdminToken).where(*conditions))
    result = await db.execute(
        select(AdminToken)
        .where(*conditions)
        .order_by(AdminToken.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def revoke_admin_token(db: AsyncSession, token_id: str) -> AdminToken:
    token = await get_admin_token(db, token_id)
    if not token.revoked:
        token.revoked = True
        await db.commit()
        await db.refresh(token)
        logger.info("管理员 Token 已撤销", extra={"prefix": token.prefix})
    return token


async def delete_admin_token(db: AsyncSession, token_id: str) -> None:
    token = await get_admin_token(db, token_id)
    await db.delete(token)
    await db.commit()


async def authenticate_admin_token(db: AsyncSession, raw_token: str) -> AdminToken | None:
    """
    按明文查找可用的管理员 Token，并记录使用时间

    以下情况返回 None：不存在、已撤销、已过期、所属用户被禁用或不是管理员。
    """
    token = await db.scalar(
        select(AdminToken).where(AdminToken.hashed_token == hash_admin_token(raw_token))
    )
    if token is None:
        return None

    now = datetime.now(timezone.utc)
    if not token.is_usable(now):
        return None

    if token.user_id is not None:
        owner = await db.get(User, token.user_id)
        if owner is None or not owner.is_active or owner.role != ROLE_ADMIN:
            logger.warning("非管理员用户的 Token 被拒绝", extra={"prefix": token.prefix})
            return None

    token.last_used_at = now
    await db.commit()
    return token
