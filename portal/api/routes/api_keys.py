"""
应用 API Key 管理接口

API Key 明文保存在 Vault 中，数据库只保存哈希；创建响应中返回一次明文，
之后可以通过 /plaintext 接口从 Vault 取回。
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import VaultClient, get_admin_user, get_db_session, get_vault_client
from portal.schemas.api_key import ApiKeyCreate, ApiKeyInfo, ApiKeySecret
from portal.services import api_keys as api_key_service

router = APIRouter(
    prefix="/admin/applications/{application_id}/api-keys",
    tags=["api-keys"],
    dependencies=[Depends(get_admin_user)],
)


@router.get("", response_model=list[ApiKeyInfo])
async def list_api_keys(
    application_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> list[ApiKeyInfo]:
    """列出应用的 API Key（不含明文）"""
    keys = await api_key_service.list_api_keys(db, application_id)
    return [ApiKeyInfo.model_validate(k) for k in keys]


@router.post("", response_model=ApiKeySecret, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    application_id: str,
    data: ApiKeyCreate,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> ApiKeySecret:
    """创建 API Key，未配置 Vault 时返回 503"""
    api_key, raw_key = await api_key_service.create_api_key(
        db,
        vault,
        application_id,
        name=data.name,
        environment_id=data.environment_id,
        expires_at=data.expires_at,
        description=data.description,
    )
    return ApiKeySecret(id=api_key.id, name=api_key.name, prefix=api_key.prefix, token=raw_key)


@router.get("/{key_id}/plaintext", response_model=ApiKeySecret)
async def get_api_key_plaintext(
    application_id: str,
    key_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> ApiKeySecret:
    """从 Vault 取回 API Key 明文"""
    api_key, raw_key = await api_key_service.get_plaintext(db, vault, application_id, key_id)
    return ApiKeySecret(id=api_key.id, name=api_key.name, prefix=api_key.prefix, token=raw_key)


@router.post("/{key_id}/revoke", response_model=ApiKeyInfo)
async def revoke_api_key(
    application_id: str,
    key_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> ApiKeyInfo:
    """撤销 API Key"""
    api_key = await api_key_service.revoke_api_key(db, application_id, key_id)
    return ApiKeyInfo.model_validate(api_key)


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(
    application_id: str,
    key_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
):
    """删除 API Key 及其在 Vault 中的明文"""
    await api_key_service.delete_api_key(db, vault, application_id, key_id)
