"""
数据代理服务

数据代理保存数据源的连接类型和默认连接配置，每个连接配置（DataAgentEnvironment）
可以覆盖默认配置并拥有独立的凭据。

Vault 键：
- 数据代理凭据: data_agent_{agent_id}_credentials
- 连接配置凭据: data_agent_{agent_id}_env_{uuid}

connection_config 中出现的敏感字段会被移到凭据中，数据库中永远不保存明文凭据。
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.exceptions import (
    ConflictError,
    CredentialsRetrievalError,
    NotFoundError,
    VaultUnavailableError,
)
from portal.infra import drivers
from portal.infra.drivers import DescribeResult
from portal.infra.vault import VaultClient
from portal.models import (
    DataAgent,
    DataAgentEnvironment,
    DataAgentRelation,
    DataAgentTable,
)
from portal.models.mixins import new_id
from portal.schemas.data_agent import (
    ConnectionTestResponse,
    CredentialsInfo,
    DataAgentCreate,
    DataAgentEnvironmentBrief,
    DataAgentEnvironmentCreate,
    DataAgentEnvironmentUpdate,
    DataAgentResponse,
    DataAgentUpdate,
    DiscoverTablesRequest,
)
from portal.schemas.table import (
    AvailableColumnsResponse,
    DiscoveredTableItem,
    DiscoveryResponse,
    TableImportResponse,
    TableSelection,
)
from portal.services import table_import

logger = logging.getLogger(__name__)

# connection_config 中不允许出现的字段
CONNECTION_SECRET_FIELDS = frozenset({
    "password",
    "accessToken",
    "token",
    "serviceAccountKey",
    "gcpKeyFile",
    "keyFile",
    "privateKey",
    "clientSecret",
    "apiKey",
})

STATUS_ACTIVE = "ACTIVE"
STATUS_INACTIVE = "INACTIVE"
STATUS_ERROR = "ERROR"


def agent_vault_key(agent_id: str) -> str:
    return f"data_agent_{agent_id}_credentials"


def environment_vault_key(agent_id: str) -> str:
    return f"data_agent_{agent_id}_env_{new_id()}"


def split_connection_config(
    config: dict[str, Any] | None,
    credentials: dict[str, Any] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    拆分连接配置

    Returns:
        tuple: (不含敏感字段的配置, 凭据)
    """
    clean: dict[str, Any] = {}
    secrets: dict[str, Any] = {}
    for key, value in (config or {}).items():
        if key in CONNECTION_SECRET_FIELDS:
            if value not in (None, ""):
                secrets[key] = value
        else:
            clean[key] = value
    for key, value in (credentials or {}).items():
        if value not in (None, ""):
            secrets[key] = value
    return clean, secrets


async def _store_credentials(
    vault: VaultClient,
    key: str,
    credentials: dict[str, Any],
    merge: bool = False,
) -> None:
    if not vault.has_provider():
        raise VaultUnavailableError("No vault provider configured")
    if merge:
        existing = await vault.get(key) or {}
        credentials = {**existing, **credentials}
    await vault.store(key, credentials)
    logger.info(f"连接凭据已写入 Vault: key={key}, fields={sorted(credentials)}")


async def _delete_vault_keys(vault: VaultClient, keys: list[str | None]) -> None:
    """清理 Vault 中的凭据，失败只记录日志"""
    if not vault.has_provider():
        return
    for key in keys:
        if not key:
            continue
        try:
            await vault.delete(key)
        except Exception as e:
            logger.warning(f"清理 Vault 凭据失败: key={key}, error={type(e).__name__}")


# ==================== 数据代理 ====================

async def get_agent(db: AsyncSession, agent_id: str) -> DataAgent:
    agent = await db.get(DataAgent, agent_id)
    if agent is None:
        raise NotFoundError("DATA_AGENT_NOT_FOUND", "Data agent not found")
    return agent


async def _list_environments(db: AsyncSession, agent_id: str) -> list[DataAgentEnvironment]:
    result = await db.execute(
        select(DataAgentEnvironment)
        .where(DataAgentEnvironment.data_agent_id == agent_id)
        .order_by(DataAgentEnvironment.created_at.desc())
    )
    return list(result.scalars().all())


async def build_agent_response(db: AsyncSession, agent: DataAgent) -> DataAgentResponse:
    environments = await _list_environments(db, agent.id)
    env_ids = [e.id for e in environments]

    table_count = 0
    relation_count = 0
    if env_ids:
        table_count = await db.scalar(
            select(func.count(DataAgentTable.id))
            .where(DataAgentTable.environment_id.in_(env_ids))
        ) or 0
        relation_count = await db.scalar(
            select(func.count(DataAgentRelation.id))
            .where(DataAgentRelation.environment_id.in_(env_ids))
        ) or 0

    response = DataAgentResponse.model_validate(agent)
    response.environments = [DataAgentEnvironmentBrief.model_validate(e) for e in environments]
    response.table_count = table_count
    response.relation_count = relation_count
    return response


async def list_agents(db: AsyncSession) -> list[DataAgentResponse]:
    result = await db.execute(select(DataAgent).order_by(DataAgent.created_at.desc()))
    return [await build_agent_response(db, a) for a in result.scalars().all()]


async def create_agent(
    db: AsyncSession,
    vault: VaultClient,
    data: DataAgentCreate,
    user_id: str | None = None,
) -> DataAgentResponse:
    """创建数据代理，初始状态为 INACTIVE（创建第一个连接配置后激活）"""
    config, credentials = split_connection_config(data.connection_config, data.credentials)

    agent = DataAgent(
        id=new_id(),
        user_id=user_id,
        name=data.name,
        description=data.description,
        connection_type=data.connection_type.strip().lower(),
        connection_config=config,
        status=STATUS_INACTIVE,
    )
    if credentials:
        key = agent_vault_key(agent.id)
        await _store_credentials(vault, key, credentials)
        agent.vault_key = key

    db.add(agent)
    await db.commit()
    await db.refresh(agent)

    logger.info(f"创建数据代理: {agent.name} ({agent.connection_type})")
    return await build_agent_response(db, agent)


async def update_agent(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    data: DataAgentUpdate,
) -> DataAgentResponse:
    agent = await get_agent(db, agent_id)
    changes = data.model_dump(exclude_unset=True, exclude={"credentials", "connection_config"})

    for field_name, value in changes.items():
        if value is None:
            continue
        if field_name == "connection_type":
            value = value.strip().lower()
        setattr(agent, field_name, value)

    credentials: dict[str, Any] = {}
    if data.connection_config is not None:
        agent.connection_config, credentials = split_connection_config(data.connection_config)
    if data.credentials:
        credentials.update({k: v for k, v in data.credentials.items() if v not in (None, "")})

    if credentials:
        key = agent.vault_key or agent_vault_key(agent.id)
        await _store_credentials(vault, key, credentials, merge=data.credentials is None)
        agent.vault_key = key

    await db.commit()
    await db.refresh(agent)
    return await build_agent_response(db, agent)


async def delete_agent(db: AsyncSession, vault: VaultClient, agent_id: str) -> None:
    """删除数据代理及其连接配置、表、字段、关系，并清理 Vault 凭据"""
    agent = await get_agent(db, agent_id)
    environments = await _list_environments(db, agent.id)
    vault_keys = [agent.vault_key] + [e.vault_key for e in environments]

    for environment in environments:
        await table_import.delete_environment_tables(db, environment.id)
        await db.delete(environment)
    await db.delete(agent)
    await db.commit()

    await _delete_vault_keys(vault, vault_keys)
    logger.info(f"删除数据代理: {agent.name} (连接配置 {len(environments)} 个)")


# ==================== 连接配置 ====================

async def get_environment(
    db: AsyncSession, agent_id: str, environment_id: str
) -> DataAgentEnvironment:
    environment = await db.get(DataAgentEnvironment, environment_id)
    if environment is None or environment.data_agent_id != agent_id:
        raise NotFoundError("DATA_AGENT_ENVIRONMENT_NOT_FOUND", "Data agent environment not found")
    return environment


async def list_environments(db: AsyncSession, agent_id: str) -> list[DataAgentEnvironment]:
    await get_agent(db, agent_id)
    return await _list_environments(db, agent_id)


async def _ensure_unique_name(
    db: AsyncSession, agent_id: str, name: str, exclude_id: str | None = None
) -> None:
    stmt = select(DataAgentEnvironment.id).where(
        DataAgentEnvironment.data_agent_id == agent_id,
        DataAgentEnvironment.name == name,
    )
    existing = await db.scalar(stmt)
    if existing is not None and existing != exclude_id:
        raise ConflictError(
            "DATA_AGENT_ENVIRONMENT_EXISTS", f"Environment '{name}' already exists"
        )


async def create_environment(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    data: DataAgentEnvironmentCreate,
) -> DataAgentEnvironment:
    """创建连接配置，凭据写入 Vault，并激活数据代理"""
    agent = await get_agent(db, agent_id)
    await _ensure_unique_name(db, agent.id, data.name)

    config, credentials = split_connection_config(data.connection_config, data.credentials)
    environment = DataAgentEnvironment(
        id=new_id(),
        data_agent_id=agent.id,
        name=data.name,
        description=data.description,
        connection_config=config,
        status=STATUS_ACTIVE,
    )
    if credentials:
        key = environment_vault_key(agent.id)
        await _store_credentials(vault, key, credentials)
        environment.vault_key = key

    db.add(environment)
    agent.status = STATUS_ACTIVE
    await db.commit()
    await db.refresh(environment)

    logger.info(f"数据代理 {agent.id} 创建连接配置: {environment.name}")
    return environment


async def update_environment(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    environment_id: str,
    data: DataAgentEnvironmentUpdate,
) -> DataAgentEnvironment:
    environment = await get_environment(db, agent_id, environment_id)

    if data.name is not None and data.name != environment.name:
        await _ensure_unique_name(db, agent_id, data.name, exclude_id=environment.id)
        environment.name = data.name
    if "description" in data.model_fields_set:
        environment.description = data.description
    if data.status is not None:
        environment.status = data.status

    if data.connection_config is not None:
        config, credentials = split_connection_config(data.connection_config)
        environment.connection_config = config
        if credentials:
            key = environment.vault_key or environment_vault_key(agent_id)
            await _store_credentials(vault, key, credentials, merge=True)
            environment.vault_key = key

    await db.commit()
    await db.refresh(environment)
    return environment


async def delete_environment(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    environment_id: str,
) -> None:
    environment = await get_environment(db, agent_id, environment_id)
    vault_key = environment.vault_key

    await table_import.delete_environment_tables(db, environment.id)
    await db.delete(environment)
    await db.commit()

    await _delete_vault_keys(vault, [vault_key])
    logger.info(f"删除连接配置: {environment.name} (data_agent={agent_id})")


async def get_credentials_info(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    environment_id: str,
) -> CredentialsInfo:
    """凭据概要：是否存在、用户名和字段名，不返回敏感值"""
    await get_agent(db, agent_id)
    environment = await get_environment(db, agent_id, environment_id)

    credentials: dict[str, Any] | None = None
    if environment.vault_key and vault.has_provider():
        try:
            credentials = await vault.get(environment.vault_key)
        except Exception as e:
            logger.warning(f"读取连接凭据失败: key={environment.vault_key}, error={type(e).__name__}")

    credentials = credentials or {}
    username = credentials.get("username") or credentials.get("user") or (
        environment.connection_config or {}
    ).get("username")
    return CredentialsInfo(
        has_credentials=bool(credentials),
        username=username,
        vault_key=environment.vault_key,
        fields=sorted(credentials),
    )


async def put_credentials(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    environment_id: str,
    credentials: dict[str, Any],
) -> CredentialsInfo:
    """更新连接配置凭据（与已有凭据合并）"""
    await get_agent(db, agent_id)
    environment = await get_environment(db, agent_id, environment_id)
    if not vault.has_provider():
        raise VaultUnavailableError("No vault provider configured")

    _, secrets = split_connection_config(None, credentials)
    key = environment.vault_key or environment_vault_key(agent_id)
    await _store_credentials(vault, key, secrets, merge=True)
    if environment.vault_key != key:
        environment.vault_key = key
        await db.commit()

    return await get_credentials_info(db, vault, agent_id, environment_id)


# ==================== 连接解析 ====================

async def resolve_connection(
    vault: VaultClient,
    agent: DataAgent,
    environment: DataAgentEnvironment | None = None,
) -> tuple[str, dict[str, Any], dict[str, Any]]:
    """
    解析实际使用的连接参数

    连接配置覆盖数据代理的默认配置；凭据优先取连接配置的 Vault 键，其次是数据代理的。

    Returns:
        tuple: (连接类型, 配置, 凭据)

    Raises:
        CredentialsRetrievalError: 有 Vault 键但无法读取凭据
    """
    config = dict(agent.connection_config or {})
    if environment is not None:
        config.update(environment.connection_config or {})

    vault_key = (environment.vault_key if environment is not None else None) or agent.vault_key
    credentials: dict[str, Any] = {}
    if vault_key:
        if not vault.has_provider():
            logger.error(f"连接凭据保存在 Vault 中，但未配置 Vault 提供者: key={vault_key}")
            raise CredentialsRetrievalError("Failed to retrieve connection credentials")
        try:
            credentials = await vault.get(vault_key) or {}
        except Exception as e:
            logger.error(f"读取连接凭据失败: key={vault_key}, error={type(e).__name__}")
            raise CredentialsRetrievalError("Failed to retrieve connection credentials") from e

    return agent.connection_type, config, credentials


async def _resolve_with_overrides(
    vault: VaultClient,
    agent: DataAgent,
    environment: DataAgentEnvironment | None,
    overrides: DiscoverTablesRequest | None,
) -> tuple[str, dict[str, Any], dict[str, Any]]:
    """请求中临时提供的配置和凭据覆盖已保存的值（创建前预览）"""
    if overrides is not None and overrides.credentials is not None:
        connection_type = agent.connection_type
        config = dict(agent.connection_config or {})
        if environment is not None:
            config.update(environment.connection_config or {})
        credentials = dict(overrides.credentials)
    else:
        connection_type, config, credentials = await resolve_connection(vault, agent, environment)

    if overrides is not None:
        if overrides.connection_type:
            connection_type = overrides.connection_type
        if overrides.connection_config:
            override_config, override_secrets = split_connection_config(overrides.connection_config)
            config.update(override_config)
            credentials.update(override_secrets)
    return connection_type, config, credentials


def _mark_connected(target: DataAgent | DataAgentEnvironment, success: bool) -> None:
    if success:
        target.status = STATUS_ACTIVE
        target.last_connected_at = datetime.now(timezone.utc)
        if isinstance(target, DataAgentEnvironment):
            target.health_status = "HEALTHY"
    else:
        target.status = STATUS_ERROR
        if isinstance(target, DataAgentEnvironment):
            target.health_status = "UNHEALTHY"


# ==================== 发现与连接测试 ====================

async def discover_agent_tables(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    overrides: DiscoverTablesRequest | None = None,
) -> DiscoveryResponse:
    agent = await get_agent(db, agent_id)
    connection_type, config, credentials = await _resolve_with_overrides(
        vault, agent, None, overrides
    )
    result = await drivers.discover_tables(connection_type, config, credentials)
    if not result.success:
        return DiscoveryResponse(success=False, error=result.error)
    return DiscoveryResponse(
        success=True,
        tables=[DiscoveredTableItem(**t.to_dict()) for t in result.tables or []],
    )


async def check_agent_connection(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    overrides: DiscoverTablesRequest | None = None,
) -> ConnectionTestResponse:
    """测试数据代理连接；使用已保存配置时同步更新状态"""
    agent = await get_agent(db, agent_id)
    connection_type, config, credentials = await _resolve_with_overrides(
        vault, agent, None, overrides
    )
    result = await drivers.check_connection(connection_type, config, credentials)

    if overrides is None:
        _mark_connected(agent, result.success)
        await db.commit()

    return ConnectionTestResponse(success=result.success, message=result.message, error=result.error)


async def check_environment_connection(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    environment_id: str,
) -> ConnectionTestResponse:
    agent = await get_agent(db, agent_id)
    environment = await get_environment(db, agent_id, environment_id)
    connection_type, config, credentials = await resolve_connection(vault, agent, environment)
    result = await drivers.check_connection(connection_type, config, credentials)

    _mark_connected(environment, result.success)
    await db.commit()

    return ConnectionTestResponse(success=result.success, message=result.message, error=result.error)


async def discover_environment_tables(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    environment_id: str,
    overrides: DiscoverTablesRequest | None = None,
) -> DiscoveryResponse:
    """发现连接配置下的表，并标记已导入的表"""
    agent = await get_agent(db, agent_id)
    environment = await get_environment(db, agent_id, environment_id)
    connection_type, config, credentials = await _resolve_with_overrides(
        vault, agent, environment, overrides
    )
    result = await drivers.discover_tables(connection_type, config, credentials)
    return await table_import.list_available_tables(db, environment, result)


async def list_available_columns(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    environment_id: str,
    schema_name: str,
    table_name: str,
) -> AvailableColumnsResponse:
    agent = await get_agent(db, agent_id)
    environment = await get_environment(db, agent_id, environment_id)
    connection_type, config, credentials = await resolve_connection(vault, agent, environment)
    described = await drivers.describe_table(
        connection_type, config, credentials, schema_name, table_name
    )
    return await table_import.list_available_columns(
        db, environment, schema_name, table_name, described
    )


async def import_environment_tables(
    db: AsyncSession,
    vault: VaultClient,
    agent_id: str,
    environment_id: str,
    selections: list[TableSelection],
) -> TableImportResponse:
    """
    导入表

    字段元数据优先从数据源读取；凭据无法读取时只使用请求中提供的字段信息。
    """
    agent = await get_agent(db, agent_id)
    environment = await get_environment(db, agent_id, environment_id)

    describe = None
    try:
        connection_type, config, credentials = await resolve_connection(vault, agent, environment)
    except CredentialsRetrievalError:
        logger.warning(f"无法读取连接凭据，仅使用请求中的字段信息: environment={environment.id}")
    else:
        async def describe(schema_name: str, table_name: str) -> DescribeResult:
            return await drivers.describe_table(
                connection_type, config, credentials, schema_name, table_name
            )

    return await table_import.import_tables(db, environment, selections, describe)
