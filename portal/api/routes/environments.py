"""
部署环境接口

- 环境详情、更新、删除（删除时级联安全配置并清理 Vault）
- 环境安全配置读写
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import VaultClient, get_admin_user, get_db_session, get_vault_client
from portal.models import ApiKey, Environment, EnvironmentSecurity
from portal.schemas.environment import (
    EnvironmentResponse,
    EnvironmentUpdate,
    SecuritySettingsResponse,
    SecuritySettingsUpdate,
)
from portal.services import security_settings

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/environments",
    tags=["environments"],
    dependencies=[Depends(get_admin_user)],
)


async def get_environment_or_404(db: AsyncSession, environment_id: str) -> Environment:
    environment = await db.get(Environment, environment_id)
    if not environment:
        raise HTTPException(
            status_code=404,
            detail={"code": "ENVIRONMENT_NOT_FOUND", "detail": "Environment not found"},
        )
    return environment


@router.get("/{environment_id}", response_model=EnvironmentResponse)
async def get_environment(
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> EnvironmentResponse:
    return EnvironmentResponse.model_validate(await get_environment_or_404(db, environment_id))


@router.patch("/{environment_id}", response_model=EnvironmentResponse)
async def update_environment(
    environment_id: str,
    data: EnvironmentUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> EnvironmentResponse:
    environment = await get_environment_or_404(db, environment_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field in ("status", "health_status"):
            continue
        setattr(environment, field, value)

    await db.commit()
    await db.refresh(environment)
    return EnvironmentResponse.model_validate(environment)


@router.delete("/{environment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_environment(
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
):
    """删除环境：级联删除安全配置，解绑 API Key，清理 Vault 中的凭据（失败只记录日志）"""
    environment = await get_environment_or_404(db, environment_id)

    await db.execute(
        delete(EnvironmentSecurity).where(EnvironmentSecurity.environment_id == environment.id)
    )
    await db.execute(
        update(ApiKey).where(ApiKey.environment_id == environment.id).values(environment_id=None)
    )
    await db.delete(environment)
    await db.commit()

    await security_settings.delete_environment_secrets(vault, environment.id)
    logger.info(f"删除环境: {environment.name} ({environment.id})")


@router.get("/{environment_id}/security", response_model=SecuritySettingsResponse)
async def get_security_settings(
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> SecuritySettingsResponse:
    """
    获取环境安全配置

    从数据库读取非敏感配置，从 Vault 读取敏感字段并合并；
    Vault 不可用时只返回数据库中的内容。
    """
    return await security_settings.get_environment_security(db, vault, environment_id)


@router.put("/{environment_id}/security", response_model=SecuritySettingsResponse)
async def put_security_settings(
    environment_id: str,
    payload: SecuritySettingsUpdate,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> SecuritySettingsResponse:
    """
    创建或更新环境安全配置

    敏感字段写入 Vault，其余字段写入数据库；未配置 Vault 时降级保存到数据库。
    """
    return await security_settings.put_environment_security(db, vault, environment_id, payload)
