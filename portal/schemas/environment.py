"""
部署环境 Schemas

安全配置的请求体是自由结构（扁平或带 credentials 子对象），
由安全配置服务在边界处拆分，因此这里只定义响应模型。
"""

from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field

from portal.schemas.common import CamelModel


class EnvironmentCreate(CamelModel):
    """创建部署环境请求"""
    name: str = Field(..., min_length=1, max_length=100, description="环境名称，如 production / stage / development")
    base_domain: str | None = Field(None, description="环境基础域名")
    description: str | None = None
    status: str = Field("ACTIVE", description="环境状态")


class EnvironmentUpdate(CamelModel):
    """更新部署环境请求"""
    base_domain: str | None = None
    description: str | None = None
    status: str | None = None
    health_status: str | None = None


class EnvironmentResponse(CamelModel):
    """部署环境响应"""
    id: str
    application_id: str
    name: str
    base_domain: str | None
    description: str | None
    status: str
    health_status: str
    created_at: datetime
    updated_at: datetime


class SecuritySettingsUpdate(CamelModel):
    """
    环境安全配置更新请求

    除限流字段和旧版字段外，其余字段（authenticationMethod、apiKey、tokenUrl 等）
    原样保留在 model_extra 中，由凭据拆分服务决定写入 Vault 还是数据库。
    传入 credentials 子对象时按嵌套结构处理。
    """
    model_config = ConfigDict(extra="allow")

    rate_limit_enabled: bool | None = None
    rate_limit_requests: int | None = Field(None, ge=1, description="时间窗口内允许的请求数")
    rate_limit_window: int | None = Field(None, ge=1, description="限流时间窗口（秒）")
    credentials: dict[str, Any] | None = None
    custom_headers: Any = None
    dynamic_fields_config: Any = None
    custom_dynamic_fields: Any = None


class SecuritySettingsResponse(CamelModel):
    """
    环境安全配置响应

    credentials 中合并了 Vault 字段、降级保存的字段和旧版字段；
    settings 为数据库中的非敏感配置。
    """
    id: str
    environment_id: str
    rate_limit_enabled: bool
    rate_limit_requests: int
    rate_limit_window: int
    vault_key: str | None
    has_vault_credentials: bool
    authentication_method: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
