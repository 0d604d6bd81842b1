"""
应用 API Key Schemas

- ApiKeyCreate: 创建请求
- ApiKeyInfo: 列表/详情响应（不含明文）
- ApiKeySecret: 创建响应和明文查询响应（仅包含一次性明文）
"""

from datetime import datetime

from pydantic import Field

from portal.schemas.common import CamelModel


class ApiKeyCreate(CamelModel):
    """创建 API Key 请求"""
    name: str = Field(..., min_length=1, max_length=255, description="Key 名称")
    environment_id: str | None = Field(None, description="绑定的部署环境，为空表示全部环境")
    expires_at: datetime | None = Field(None, description="过期时间（UTC）")
    description: str | None = None


class ApiKeyInfo(CamelModel):
    """API Key 信息（不含明文）"""
    id: str
    application_id: str
    environment_id: str | None
    name: str
    prefix: str
    status: str
    expires_at: datetime | None
    last_used_at: datetime | None
    description: str | None
    created_at: datetime


class ApiKeySecret(CamelModel):
    """API Key 明文"""
    id: str
    name: str
    prefix: str
    token: str
