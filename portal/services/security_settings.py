"""
安全配置服务

编排凭据拆分、Vault 读写和数据库 upsert。

环境安全配置的状态：
    无配置 ──PUT──> 有配置（凭据在 Vault）
                 └> 有配置（无 Vault，凭据降级保存在数据库）

PUT：
1. 拆分请求体：顶层字段按白名单拆分，credentials 子对象中的非空字段全部视为敏感
2. 限流字段、非敏感字段按 environment_id upsert 到数据库（后写覆盖先写）
3. 有 Vault 时敏感字段写入 env_{id}_security_settings，数据库只保存引用键
4. 无 Vault 或写入失败时记录警告，敏感字段降级保存到数据库，并清除 vault_key 和旧的 Vault 条目

GET：
1. 读取数据库记录，不存在返回 404
2. 记录中有 vault_key 时按该键读取 Vault，失败只记录日志
3. 合并为统一视图，并解析旧版 JSON 字符串字段
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.exceptions import NotFoundError, VaultError, VaultUnavailableError
from portal.infra.vault import VaultClient
from portal.models import Application, Environment, EnvironmentSecurity
from portal.schemas.application import ApplicationSecurityResponse, AuthSettings
from portal.schemas.environment import SecuritySettingsResponse, SecuritySettingsUpdate
from portal.services.credentials import (
    application_vault_key,
    encode_legacy_json,
    environment_vault_key,
    merge_for_read,
    partition_flat,
    partition_nested,
    public_config,
)

logger = logging.getLogger(__name__)

# 客户端回传 GET 结果时可能带上的只读字段
READ_ONLY_FIELDS = {
    "id",
    "environmentId",
    "vaultKey",
    "hasVaultCredentials",
    "settings",
    "createdAt",
    "updatedAt",
}

RATE_LIMIT_COLUMNS = ("rate_limit_enabled", "rate_limit_requests", "rate_limit_window")

LEGACY_COLUMNS = {
    "custom_headers": "customHeaders",
    "dynamic_fields_config": "dynamicFieldsConfig",
    "custom_dynamic_fields": "customDynamicFields",
}


async def _get_environment(db: AsyncSession, environment_id: str) -> Environment:
    environment = await db.get(Environment, environment_id)
    if environment is None:
        raise NotFoundError("ENVIRONMENT_NOT_FOUND", "Environment not found")
    return environment


async def _get_security_record(
    db: AsyncSession, environment_id: str
) -> EnvironmentSecurity | None:
    result = await db.execute(
        select(EnvironmentSecurity).where(EnvironmentSecurity.environment_id == environment_id)
    )
    return result.scalar_one_or_none()


def _build_view(
    record: EnvironmentSecurity,
    vault_data: dict[str, Any] | None,
) -> SecuritySettingsResponse:
    config = record.config or {}
    legacy = {
        key: getattr(record, column)
        for column, key in LEGACY_COLUMNS.items()
    }
    return SecuritySettingsResponse(
        id=record.id,
        environment_id=record.environment_id,
        rate_limit_enabled=record.rate_limit_enabled,
        rate_limit_requests=record.rate_limit_requests,
        rate_limit_window=record.rate_limit_window,
        vault_key=record.vault_key,
        has_vault_credentials=bool(vault_data),
        authentication_method=config.get("authenticationMethod"),
        settings=public_config(config),
        credentials=merge_for_read(config, vault_data, legacy),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


async def put_environment_security(
    db: AsyncSession,
    vault: VaultClient,
    environment_id: str,
    payload: SecuritySettingsUpdate,
) -> SecuritySettingsResponse:
    """创建或更新环境安全配置"""
    environment = await _get_environment(db, environment_id)

    extra = {
        key: value
        for key, value in (payload.model_extra or {}).items()
        if key not in READ_ONLY_FIELDS
    }
    flat = partition_flat(extra)
    config: dict[str, Any] = dict(flat.non_sensitive)

    nested_sensitive: dict[str, Any] = {}
    if payload.credentials is not None:
        nested = partition_nested(payload.credentials)
        nested_sensitive = nested.sensitive
        if nested.non_sensitive:
            config["credentials"] = dict(nested.non_sensitive)

    sensitive = {**flat.sensitive, **nested_sensitive}

    record = await _get_security_record(db, environment.id)
    if record is None:
        record = EnvironmentSecurity(environment_id=environment.id)
        db.add(record)

    for column in RATE_LIMIT_COLUMNS:
        if column in payload.model_fields_set and getattr(payload, column) is not None:
            setattr(record, column, getattr(payload, column))

    for column in LEGACY_COLUMNS:
        if column in payload.model_fields_set:
            setattr(record, column, encode_legacy_json(getattr(payload, column)))

    vault_data: dict[str, Any] | None = None
    if sensitive:
        vault_key = environment_vault_key(environment.id)
        if vault.has_provider():
            try:
                await vault.store(vault_key, sensitive)
                vault_data = sensitive
                record.vault_key = vault_key
                logger.info(
                    f"环境 {environment.id} 的敏感字段已写入 Vault",
                    extra={"fields": sorted(sensitive)},
                )
            except VaultError as e:
                logger.warning(f"写入 Vault 失败，敏感字段降级保存到数据库: {e}")
        else:
            logger.warning(
                "未配置 Vault 提供者，敏感字段将直接保存到数据库（不推荐）",
                extra={"environment_id": environment.id, "fields": sorted(sensitive)},
            )

        if vault_data is None:
            config.update(flat.sensitive)
            if nested_sensitive:
                config["credentials"] = {**config.get("credentials", {}), **nested_sensitive}
            # 本次写入的敏感字段只在数据库中，旧的 Vault 条目不能再参与读取
            if record.vault_key:
                await _discard_vault_entry(vault, record.vault_key)
                record.vault_key = None

    record.config = config
    await db.commit()
    await db.refresh(record)

    if vault_data is None and record.vault_key and vault.has_provider():
        vault_data = await _read_vault(vault, record.vault_key)

    return _build_view(record, vault_data)


async def _discard_vault_entry(vault: VaultClient, key: str) -> None:
    """删除降级写入前留下的 Vault 条目，失败只记录日志"""
    if not vault.has_provider():
        logger.warning(f"未配置 Vault，无法删除旧的 Vault 条目: key={key}")
        return
    try:
        await vault.delete(key)
    except Exception as e:
        logger.warning(f"删除旧的 Vault 条目失败: key={key}, error={type(e).__name__}")


async def _read_vault(vault: VaultClient, key: str) -> dict[str, Any] | None:
    """读取 Vault，任何错误只记录日志"""
    try:
        return await vault.get(key)
    except Exception as e:
        logger.warning(f"读取 Vault 失败，仅返回数据库中的配置: key={key}, error={type(e).__name__}")
        return None


async def get_environment_security(
    db: AsyncSession,
    vault: VaultClient,
    environment_id: str,
) -> SecuritySettingsResponse:
    """读取环境安全配置（合并 Vault 中的凭据）"""
    environment = await _get_environment(db, environment_id)
    record = await _get_security_record(db, environment.id)
    if record is None:
        raise NotFoundError("SECURITY_SETTINGS_NOT_FOUND", "Security settings not found")

    # vault_key 为空表示敏感字段保存在数据库中（降级写入），不读取 Vault
    vault_data = None
    if record.vault_key and vault.has_provider():
        vault_data = await _read_vault(vault, record.vault_key)

    return _build_view(record, vault_data)


async def delete_environment_secrets(vault: VaultClient, environment_id: str) -> None:
    """删除环境在 Vault 中的凭据，失败只记录日志"""
    if not vault.has_provider():
        return
    try:
        await vault.delete(environment_vault_key(environment_id))
    except Exception as e:
        logger.warning(f"清理环境 Vault 凭据失败: environment_id={environment_id}, error={e}")


# ==================== 应用认证配置 ====================

async def _get_application(db: AsyncSession, application_id: str) -> Application:
    application = await db.get(Application, application_id)
    if application is None:
        raise NotFoundError("APPLICATION_NOT_FOUND", "Application not found")
    return application


async def put_application_security(
    db: AsyncSession,
    vault: VaultClient,
    application_id: str,
    settings: AuthSettings,
) -> ApplicationSecurityResponse:
    """
    更新应用认证配置

    应用凭据必须保存在 Vault 中，未配置 Vault 时拒绝写入。
    """
    application = await _get_application(db, application_id)
    if not vault.has_provider():
        raise VaultUnavailableError("No vault provider configured")

    credentials = settings.model_dump(
        by_alias=True,
        exclude={"authentication_method"},
        exclude_none=True,
    )
    partition = partition_nested(credentials)
    vault_key = application_vault_key(application.id)

    if partition.sensitive:
        await vault.store(vault_key, partition.sensitive)
        application.auth_vault_key = vault_key
    elif application.auth_vault_key:
        await vault.delete(application.auth_vault_key)
        application.auth_vault_key = None

    application.authentication_method = settings.authentication_method
    application.auth_config = partition.non_sensitive or None
    await db.commit()

    logger.info(f"应用 {application.id} 认证方式已更新为 {settings.authentication_method}")
    return ApplicationSecurityResponse(
        authentication_method=settings.authentication_method,
        credentials=credentials,
    )


async def get_application_security(
    db: AsyncSession,
    vault: VaultClient,
    application_id: str,
) -> ApplicationSecurityResponse:
    """读取应用认证配置"""
    application = await _get_application(db, application_id)

    credentials: dict[str, Any] = dict(application.auth_config or {})
    if application.auth_vault_key and vault.has_provider():
        vault_data = await _read_vault(vault, application.auth_vault_key)
        if vault_data:
            credentials.update(vault_data)

    return ApplicationSecurityResponse(
        authentication_method=application.authentication_method,
        credentials=credentials,
    )
