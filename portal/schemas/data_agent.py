"""
数据代理 Schemas

连接配置（connectionConfig）只包含非敏感信息，凭据（credentials）单独提交并写入 Vault。

连接配置示例：
    postgres:   {"host": "db", "port": 5432, "database": "shop", "schema": "public", "username": "ro"}
    bigquery:   {"projectId": "my-project", "dataset": "analytics"}
    databricks: {"serverHostname": "https://xxx.cloud.databricks.com", "warehouseId": "abc", "catalog": "main"}

凭据示例：
    postgres:   {"password": "***"}
    bigquery:   {"serviceAccountKey": "{...json...}"}
    databricks: {"accessToken": "dapi..."}
"""

from datetime import datetime
from typing import Any

from pydantic import Field

from portal.schemas.common import CamelModel


class DataAgentCreate(CamelModel):
    """创建数据代理请求"""
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    connection_type: str = Field(..., min_length=1, description="postgres / mysql / mssql / bigquery / databricks")
    connection_config: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, Any] | None = Field(None, description="连接凭据，写入 Vault")


class DataAgentUpdate(CamelModel):
    """更新数据代理请求"""
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    connection_type: str | None = None
    connection_config: dict[str, Any] | None = None
    credentials: dict[str, Any] | None = None
    status: str | None = None


class DataAgentEnvironmentBrief(CamelModel):
    id: str
    name: str
    status: str
    health_status: str
    last_connected_at: datetime | None
    created_at: datetime


class DataAgentResponse(CamelModel):
    """数据代理响应"""
    id: str
    name: str
    description: str | None
    connection_type: str
    connection_config: dict[str, Any]
    vault_key: str | None
    status: str
    last_connected_at: datetime | None
    created_at: datetime
    updated_at: datetime
    environments: list[DataAgentEnvironmentBrief] = Field(default_factory=list)
    table_count: int = 0
    relation_count: int = 0


class DataAgentEnvironmentCreate(CamelModel):
    """创建连接配置请求"""
    name: str = Field(..., min_length=1, max_length=100, description="如 production / staging / development")
    description: str | None = None
    connection_config: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, Any] | None = None


class DataAgentEnvironmentUpdate(CamelModel):
    """更新连接配置请求"""
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    connection_config: dict[str, Any] | None = None
    status: str | None = None


class DataAgentEnvironmentResponse(CamelModel):
    """连接配置响应"""
    id: str
    data_agent_id: str
    name: str
    description: str | None
    connection_config: dict[str, Any]
    vault_key: str | None
    status: str
    health_status: str
    last_connected_at: datetime | None
    relationship_analysis: dict[str, Any] | None
    analyzed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class CredentialsPayload(CamelModel):
    """凭据读写"""
    credentials: dict[str, Any] = Field(default_factory=dict)


class DiscoverTablesRequest(CamelModel):
    """
    发现表请求

    所有字段可选：为空时使用已保存的连接配置和 Vault 中的凭据，
    用于创建前的"预览"时传入临时配置。
    """
    connection_type: str | None = None
    connection_config: dict[str, Any] | None = None
    credentials: dict[str, Any] | None = None


class ConnectionTestResponse(CamelModel):
    success: bool
    message: str
    error: str | None = None


class CredentialsInfo(CamelModel):
    """凭据概要：不返回密码等敏感值"""
    has_credentials: bool
    username: str | None = None
    vault_key: str | None = None
    fields: list[str] = Field(default_factory=list)
