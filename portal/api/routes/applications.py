"""
应用管理接口

- 应用 CRUD（列表附带环境 / API Key / 接口定义数量）
- 应用认证配置（凭据保存在 Vault）
- 应用下的部署环境：列表、创建
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import (
    AdminIdentity,
    VaultClient,
    get_admin_user,
    get_db_session,
    get_vault_client,
)
from portal.models import ApiKey, Application, Endpoint, Environment, EnvironmentSecurity
from portal.schemas.api_key import ApiKeyInfo
from portal.schemas.application import (
    ApplicationCreate,
    ApplicationDetailResponse,
    ApplicationListItem,
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationSecurityResponse,
    ApplicationUpdate,
    auth_settings_adapter,
)
from portal.schemas.endpoint import EndpointResponse
from portal.schemas.environment import EnvironmentCreate, EnvironmentResponse
from portal.services import security_settings
from portal.services.api_keys import api_key_vault_key

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/applications",
    tags=["applications"],
    dependencies=[Depends(get_admin_user)],
)


async def get_application_or_404(db: AsyncSession, application_id: str) -> Application:
    application = await db.get(Application, application_id)
    if not application:
        raise HTTPException(
            status_code=404,
            detail={"code": "APPLICATION_NOT_FOUND", "detail": "Application not found"},
        )
    return application


async def _count(db: AsyncSession, model, application_id: str) -> int:
    return (
        await db.execute(
            select(func.count(model.id)).where(model.application_id == application_id)
        )
    ).scalar() or 0


# ==================== 应用 CRUD ====================

@router.get("", response_model=ApplicationListResponse)
async def list_applications(
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationListResponse:
    """列出应用"""
    result = await db.execute(select(Application).order_by(Application.created_at.desc()))
    applications = result.scalars().all()

    items = []
    for application in applications:
        item = ApplicationListItem.model_validate(application)
        item.environment_count = await _count(db, Environment, application.id)
        item.api_key_count = await _count(db, ApiKey, application.id)
        item.endpoint_count = await _count(db, Endpoint, application.id)
        items.append(item)

    return ApplicationListResponse(items=items, total=len(items))


@router.post("", response_model=ApplicationResponse, status_code=status.HTTP_201_CREATED)
async def create_application(
    data: ApplicationCreate,
    admin: AdminIdentity = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationResponse:
    """创建应用"""
    application = Application(
        user_id=admin.user_id,
        name=data.name,
        description=data.description,
        status=data.status,
        authentication_method=data.authentication_method,
        health_check_url=data.health_check_url,
        health_check_interval=data.health_check_interval,
    )
    db.add(application)
    await db.commit()
    await db.refresh(application)

    logger.info(f"创建应用: {application.name} ({application.id})")
    return ApplicationResponse.model_validate(application)


@router.get("/{application_id}", response_model=ApplicationDetailResponse)
async def get_application(
    application_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationDetailResponse:
    """获取应用详情（附带环境、API Key（不含明文）和接口定义）"""
    application = await get_application_or_404(db, application_id)

    environments = (
        await db.execute(
            select(Environment)
            .where(Environment.application_id == application.id)
            .order_by(Environment.created_at)
        )
    ).scalars().all()
    api_keys = (
        await db.execute(
            select(ApiKey)
            .where(ApiKey.application_id == application.id)
            .order_by(ApiKey.created_at.desc())
        )
    ).scalars().all()
    endpoints = (
        await db.execute(
            select(Endpoint)
            .where(Endpoint.application_id == application.id)
            .order_by(Endpoint.path)
        )
    ).scalars().all()

    detail = ApplicationDetailResponse.model_validate(application)
    detail.environments = [EnvironmentResponse.model_validate(e) for e in environments]
    detail.api_keys = [ApiKeyInfo.model_validate(k) for k in api_keys]
    detail.endpoints = [EndpointResponse.model_validate(e) for e in endpoints]
    return detail


@router.patch("/{application_id}", response_model=ApplicationResponse)
async def update_application(
    application_id: str,
    data: ApplicationUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationResponse:
    """更新应用"""
    application = await get_application_or_404(db, application_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field in ("name", "status", "authentication_method"):
            continue
        setattr(application, field, value)

    await db.commit()
    await db.refresh(application)
    return ApplicationResponse.model_validate(application)


@router.delete("/{application_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_application(
    application_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
):
    """删除应用及其环境、安全配置、API Key 和接口定义，并清理 Vault 中的凭据"""
    application = await get_application_or_404(db, application_id)

    environment_ids = list(
        (
            await db.execute(
                select(Environment.id).where(Environment.application_id == application.id)
            )
        ).scalars().all()
    )
    api_key_ids = list(
        (
            await db.execute(select(ApiKey.id).where(ApiKey.application_id == application.id))
        ).scalars().all()
    )

    if environment_ids:
        await db.execute(
            delete(EnvironmentSecurity).where(
                EnvironmentSecurity.environment_id.in_(environment_ids)
            )
        )
    await db.execute(delete(ApiKey).where(ApiKey.application_id == application.id))
    await db.execute(delete(Endpoint).where(Endpoint.application_id == application.id))
    await db.execute(delete(Environment).where(Environment.application_id == application.id))
    await db.delete(application)
    await db.commit()

    if vault.has_provider():
        keys = [api_key_vault_key(application.id, key_id) for key_id in api_key_ids]
        if application.auth_vault_key:
            keys.append(application.auth_vault_key)
        for key in keys:
            try:
                await vault.delete(key)
            except Exception as e:
                logger.warning(f"清理 Vault 凭据失败: key={key}, error={type(e).__name__}")
    for environment_id in environment_ids:
        await security_settings.delete_environment_secrets(vault, environment_id)

    logger.info(f"删除应用: {application.name} ({application.id})")


# ==================== 应用认证配置 ====================

@router.get("/{application_id}/security", response_model=ApplicationSecurityResponse)
async def get_application_security(
    application_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> ApplicationSecurityResponse:
    """获取应用认证配置（合并 Vault 中的凭据）"""
    return await security_settings.get_application_security(db, vault, application_id)


@router.put("/{application_id}/security", response_model=ApplicationSecurityResponse)
async def put_application_security(
    application_id: str,
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> ApplicationSecurityResponse:
    """
    更新应用认证配置

    请求体按 authenticationMethod 区分结构，校验失败返回 422。
    """
    try:
        settings = auth_settings_adapter.validate_python(payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "code": "VALIDATION_ERROR",
                "detail": "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                ),
            },
        ) from e
    return await security_settings.put_application_security(db, vault, application_id, settings)


# ==================== 应用下的部署环境 ====================

@router.get("/{application_id}/environments", response_model=list[EnvironmentResponse])
async def list_environments(
    application_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> list[EnvironmentResponse]:
    """列出应用的部署环境"""
    application = await get_application_or_404(db, application_id)
    result = await db.execute(
        select(Environment)
        .where(Environment.application_id == application.id)
        .order_by(Environment.created_at)
    )
    return [EnvironmentResponse.model_validate(e) for e in result.scalars().all()]


@router.post(
    "/{application_id}/environments",
    response_model=EnvironmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_environment(
    application_id: str,
    data: EnvironmentCreate,
    db: AsyncSession = Depends(get_db_session),
) -> EnvironmentResponse:
    """
    创建部署环境

    环境名称统一转为小写，同一应用下不允许重名。
    """
    application = await get_application_or_404(db, application_id)
    name = data.name.strip().lower()

    existing = await db.execute(
        select(Environment.id).where(
            Environment.application_id == application.id,
            Environment.name == name,
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "ENVIRONMENT_EXISTS",
                "detail": f"Environment '{name}' already exists for this application",
            },
        )

    environment = Environment(
        application_id=application.id,
        name=name,
        base_domain=data.base_domain,
        description=data.description,
        status=data.status,
    )
    db.add(environment)
    await db.commit()
    await db.refresh(environment)

    logger.info(f"应用 {application.id} 创建环境: {environment.name}")
    return EnvironmentResponse.model_validate(environment)
