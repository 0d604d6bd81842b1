"""
数据代理管理接口

路由结构：
    /admin/data-agents                                   数据代理 CRUD
    /admin/data-agents/{id}/discover-tables              发现表（可传入临时配置预览）
    /admin/data-agents/{id}/test-connection              测试连接
    /admin/data-agents/{id}/environments                 连接配置 CRUD
    /admin/data-agents/{id}/environments/{envId}/...     凭据、发现、导入、关系推断
"""

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import (
    AdminIdentity,
    VaultClient,
    get_admin_user,
    get_db_session,
    get_vault_client,
)
from portal.schemas.data_agent import (
    ConnectionTestResponse,
    CredentialsInfo,
    CredentialsPayload,
    DataAgentCreate,
    DataAgentEnvironmentCreate,
    DataAgentEnvironmentResponse,
    DataAgentEnvironmentUpdate,
    DataAgentResponse,
    DataAgentUpdate,
    DiscoverTablesRequest,
)
from portal.schemas.relationship import (
    RelationshipAnalysisResponse,
    RelationshipCreate,
    RelationshipResponse,
)
from portal.schemas.table import (
    AvailableColumnsRequest,
    AvailableColumnsResponse,
    DiscoveryResponse,
    TableImportRequest,
    TableImportResponse,
    TableResponse,
)
from portal.services import data_agents as agent_service
from portal.services import relationships as relationship_service
from portal.services import table_import

router = APIRouter(
    prefix="/admin/data-agents",
    tags=["data-agents"],
    dependencies=[Depends(get_admin_user)],
)


# ==================== 数据代理 ====================

@router.get("", response_model=list[DataAgentResponse])
async def list_data_agents(
    db: AsyncSession = Depends(get_db_session),
) -> list[DataAgentResponse]:
    return await agent_service.list_agents(db)


@router.post("", response_model=DataAgentResponse, status_code=status.HTTP_201_CREATED)
async def create_data_agent(
    data: DataAgentCreate,
    admin: AdminIdentity = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> DataAgentResponse:
    """创建数据代理（状态为 INACTIVE，创建第一个连接配置后激活）"""
    return await agent_service.create_agent(db, vault, data, user_id=admin.user_id)


@router.get("/{agent_id}", response_model=DataAgentResponse)
async def get_data_agent(
    agent_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> DataAgentResponse:
    agent = await agent_service.get_agent(db, agent_id)
    return await agent_service.build_agent_response(db, agent)


@router.patch("/{agent_id}", response_model=DataAgentResponse)
async def update_data_agent(
    agent_id: str,
    data: DataAgentUpdate,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> DataAgentResponse:
    return await agent_service.update_agent(db, vault, agent_id, data)


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_data_agent(
    agent_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
):
    """删除数据代理及其全部连接配置、表和关系"""
    await agent_service.delete_agent(db, vault, agent_id)


@router.post("/{agent_id}/discover-tables", response_model=DiscoveryResponse)
async def discover_agent_tables(
    agent_id: str,
    overrides: DiscoverTablesRequest | None = Body(None),
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> DiscoveryResponse:
    """
    发现数据源中的表

    连接失败时返回 {"success": false, "error": ...}，不返回错误状态码。
    """
    return await agent_service.discover_agent_tables(db, vault, agent_id, overrides)


@router.post("/{agent_id}/test-connection", response_model=ConnectionTestResponse)
async def test_agent_connection(
    agent_id: str,
    overrides: DiscoverTablesRequest | None = Body(None),
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> ConnectionTestResponse:
    """测试连接；未传入临时配置时同步更新数据代理状态"""
    return await agent_service.check_agent_connection(db, vault, agent_id, overrides)


# ==================== 连接配置 ====================

@router.get("/{agent_id}/environments", response_model=list[DataAgentEnvironmentResponse])
async def list_agent_environments(
    agent_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> list[DataAgentEnvironmentResponse]:
    environments = await agent_service.list_environments(db, agent_id)
    return [DataAgentEnvironmentResponse.model_validate(e) for e in environments]


@router.post(
    "/{agent_id}/environments",
    response_model=DataAgentEnvironmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_agent_environment(
    agent_id: str,
    data: DataAgentEnvironmentCreate,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> DataAgentEnvironmentResponse:
    """创建连接配置，凭据写入 Vault"""
    environment = await agent_service.create_environment(db, vault, agent_id, data)
    return DataAgentEnvironmentResponse.model_validate(environment)


@router.get(
    "/{agent_id}/environments/{environment_id}",
    response_model=DataAgentEnvironmentResponse,
)
async def get_agent_environment(
    agent_id: str,
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> DataAgentEnvironmentResponse:
    environment = await agent_service.get_environment(db, agent_id, environment_id)
    return DataAgentEnvironmentResponse.model_validate(environment)


@router.patch(
    "/{agent_id}/environments/{environment_id}",
    response_model=DataAgentEnvironmentResponse,
)
async def update_agent_environment(
    agent_id: str,
    environment_id: str,
    data: DataAgentEnvironmentUpdate,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> DataAgentEnvironmentResponse:
    environment = await agent_service.update_environment(db, vault, agent_id, environment_id, data)
    return DataAgentEnvironmentResponse.model_validate(environment)


@router.delete(
    "/{agent_id}/environments/{environment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_agent_environment(
    agent_id: str,
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
):
    await agent_service.delete_environment(db, vault, agent_id, environment_id)


@router.get(
    "/{agent_id}/environments/{environment_id}/credentials",
    response_model=CredentialsInfo,
)
async def get_environment_credentials(
    agent_id: str,
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> CredentialsInfo:
    """凭据概要（不返回密码）"""
    return await agent_service.get_credentials_info(db, vault, agent_id, environment_id)


@router.put(
    "/{agent_id}/environments/{environment_id}/credentials",
    response_model=CredentialsInfo,
)
async def put_environment_credentials(
    agent_id: str,
    environment_id: str,
    payload: CredentialsPayload,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> CredentialsInfo:
    """更新凭据（与 Vault 中已有的凭据合并），未配置 Vault 时返回 503"""
    return await agent_service.put_credentials(
        db, vault, agent_id, environment_id, payload.credentials
    )


@router.post(
    "/{agent_id}/environments/{environment_id}/test-connection",
    response_model=ConnectionTestResponse,
)
async def test_environment_connection(
    agent_id: str,
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> ConnectionTestResponse:
    return await agent_service.check_environment_connection(db, vault, agent_id, environment_id)


@router.post(
    "/{agent_id}/environments/{environment_id}/discover-tables",
    response_model=DiscoveryResponse,
)
async def discover_environment_tables(
    agent_id: str,
    environment_id: str,
    overrides: DiscoverTablesRequest | None = Body(None),
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> DiscoveryResponse:
    return await agent_service.discover_environment_tables(
        db, vault, agent_id, environment_id, overrides
    )


# ==================== 表导入 ====================

@router.get(
    "/{agent_id}/environments/{environment_id}/tables/available",
    response_model=DiscoveryResponse,
)
async def list_available_tables(
    agent_id: str,
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> DiscoveryResponse:
    """可导入的表（已导入的表 isImported=true）"""
    return await agent_service.discover_environment_tables(db, vault, agent_id, environment_id)


@router.post(
    "/{agent_id}/environments/{environment_id}/tables/available-columns",
    response_model=AvailableColumnsResponse,
)
async def list_available_columns(
    agent_id: str,
    environment_id: str,
    data: AvailableColumnsRequest,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> AvailableColumnsResponse:
    """指定表的可导入字段（已导入的字段 isImported=true）"""
    return await agent_service.list_available_columns(
        db, vault, agent_id, environment_id, data.schema_name, data.table_name
    )


@router.post(
    "/{agent_id}/environments/{environment_id}/tables/import",
    response_model=TableImportResponse,
)
async def import_tables(
    agent_id: str,
    environment_id: str,
    data: TableImportRequest,
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
) -> TableImportResponse:
    """导入选择的表，重复导入只更新已有记录"""
    return await agent_service.import_environment_tables(
        db, vault, agent_id, environment_id, data.tables
    )


@router.get(
    "/{agent_id}/environments/{environment_id}/tables",
    response_model=list[TableResponse],
)
async def list_imported_tables(
    agent_id: str,
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> list[TableResponse]:
    environment = await agent_service.get_environment(db, agent_id, environment_id)
    return await table_import.list_tables(db, environment.id)


# ==================== 关系 ====================

@router.get(
    "/{agent_id}/environments/{environment_id}/relationships",
    response_model=list[RelationshipResponse],
)
async def list_relationships(
    agent_id: str,
    environment_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> list[RelationshipResponse]:
    environment = await agent_service.get_environment(db, agent_id, environment_id)
    return await relationship_service.list_relationships(db, environment.id)


@router.post(
    "/{agent_id}/environments/{environment_id}/relationships",
    response_model=RelationshipResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_relationship(
    agent_id: str,
    environment_id: str,
    data: RelationshipCreate,
    db: AsyncSession = Depends(get_db_session),
) -> RelationshipResponse:
    """人工创建关系（已验证，置信度 1.0）"""
    environment = await agent_service.get_environment(db, agent_id, environment_id)
    return await relationship_service.create_relationship(db, environment.id, data)


@router.post(
    "/{agent_id}/environments/{environment_id}/relationships/analyze",
    response_model=RelationshipAnalysisResponse,
)
async def analyze_relationships(
    agent_id: str,
    environment_id: str,
    analyzer: str | None = None,
    db: AsyncSession = Depends(get_db_session),
) -> RelationshipAnalysisResponse:
    """
    推断已导入表之间的关系

    已验证的关系不会被修改；少于 2 张表时返回 400。
    analyzer 查询参数可指定 heuristic / llm，默认使用配置。
    """
    environment = await agent_service.get_environment(db, agent_id, environment_id)
    return await relationship_service.analyze_relationships(
        db, environment.id, relationship_service.get_analyzer(analyzer)
    )
