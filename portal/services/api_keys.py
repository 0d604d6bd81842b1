"""
应用 API Key 服务

创建流程：
1. 生成 {api_key_prefix}{随机部分} 格式的 Key
2. 数据库只保存 SHA256 哈希和前缀
3. 明文写入 Vault：api_key_{application_id}_{key_id}
4. 创建响应中返回一次明文

没有 Vault 时拒绝创建（否则明文将无法再次取回）。
"""

import hashlib
import logging
import secrets
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import get_settings
from portal.exceptions import NotFoundError, VaultUnavailableError
from portal.infra.vault import VaultClient
from portal.models import ApiKey, Application, Environment
from portal.models.mixins import new_id

logger = logging.getLogger(__name__)


def hash_api_key(raw_key: str) -> str:
    """对 API Key 进行 SHA256 哈希"""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(prefix: str | None = None) -> tuple[str, str, str]:
    """
    生成新的 API Key

    Returns:
        tuple: (完整 Key, 哈希值, 用于识别的前缀)
    """
    prefix = prefix or get_settings().api_key_prefix
    display_key = f"{prefix}{secrets.token_urlsafe(32)}"
    return display_key, hash_api_key(display_key), display_key[:16]


def api_key_vault_key(application_id: str, key_id: str) -> str:
    return f"api_key_{application_id}_{key_id}"


async def _get_application(db: AsyncSession, application_id: str) -> Application:
    application = await db.get(Application, application_id)
    if application is None:
        raise NotFoundError("APPLICATION_NOT_FOUND", "Application not found")
    return application


async def get_api_key(db: AsyncSession, application_id: str, key_id: str) -> ApiKey:
    api_key = await db.get(ApiKey, key_id)
    if api_key is None or api_key.application_id != application_id:
        raise NotFoundError("API_KEY_NOT_FOUND", "API key not found")
    return api_key


async def list_api_keys(db: AsyncSession, application_id: str) -> list[ApiKey]:
    await _get_application(db, application_id)
    result = await db.execute(
        select(ApiKey)
        .where(ApiKey.application_id == application_id)
        .order_by(ApiKey.created_at.desc())
    )
    return list(result.scalars().all())


async def create_api_key(
    db: AsyncSession,
    vault: VaultClient,
    application_id: str,
    name: str,
    environment_id: str | None = None,
    expires_at: datetime | None = None,
    description: str | None = None,
) -> tuple[ApiKey, str]:
    """
    创建 API Key

    Returns:
        tuple: (ApiKey 记录, 明文 Key)
    """
    application = await _get_application(db, application_id)
    if not vault.has_provider():
        raise VaultUnavailableError("No vault provider configured")

    if environment_id is not None:
        environment = await db.get(Environment, environment_id)
        if environment is None or environment.application_id != application.id:
            raise NotFoundError("ENVIRONMENT_NOT_FOUND", "Environment not found")

    raw_key, hashed, prefix = generate_api_key()
    key_id = new_id()
    vault_key = api_key_vault_key(application.id, key_id)

    # 先写 Vault，失败时不会留下无法取回明文的数据库记录
    await vault.store_value(vault_key, raw_key)

    api_key = ApiKey(
        id=key_id,
        application_id=application.id,
        environment_id=environment_id,
        name=name,
        prefix=prefix,
        hashed_token=hashed,
        expires_at=expires_at,
        description=description,
        vault_key=vault_key,
    )
    db.add(api_key)
    await db.commit()
    await db.refresh(api_key)

    logger.info(f"应用 {application.id} 创建 API Key: {api_key.id}")
    return api_key, raw_key


async def get_plaintext(
    db: AsyncSession,
    vault: VaultClient,
    application_id: str,
    key_id: str,
) -> tuple[ApiKey, str]:
    """从 Vault 取回 API Key 明文"""
    api_key = await get_api_key(db, application_id, key_id)
    if not vault.has_provider():
        raise VaultUnavailableError("No vault provider configured")

    raw_key = await vault.get_value(api_key.vault_key or api_key_vault_key(application_id, key_id))
    if raw_key is None:
        raise NotFoundError("API_KEY_PLAINTEXT_NOT_FOUND", "API key plaintext not found in vault")
    return api_key, raw_key


async def revoke_api_key(db: AsyncSession, application_id: str, key_id: str) -> ApiKey:
    api_key = await get_api_key(db, application_id, key_id)
    api_key.status = "REVOKED"
    await db.commit()
    await db.refresh(api_key)
    return api_key


async def delete_api_key(
    db: AsyncSession,
    vault: VaultClient,
    application_id: str,
    key_id: str,
) -> None:
    """删除 API Key：先清理 Vault（失败只记录日志），再删除数据库记录"""
    api_key = await get_api_key(db, application_id, key_id)

    if vault.has_provider():
        try:
            await vault.delete(api_key.vault_key or api_key_vault_key(application_id, key_id))
        except Exception as e:
            logger.warning(f"清理 API Key 明文失败: key_id={key_id}, error={type(e).__name__}")

    await db.delete(api_key)
    await db.commit()
