"""
管理员 Token Schemas
"""

from datetime import datetime

from pydantic import Field

from portal.schemas.common import CamelModel


class AdminTokenCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255, description="用途说明，如 ci、运维")
    description: str | None = None
    expires_at: datetime | None = Field(None, description="过期时间（UTC），不传则永不过期")
    user_id: str | None = Field(None, description="所属用户，不传则归属当前管理员")


class AdminTokenResponse(CamelModel):
    id: str
    name: str
    description: str | None
    prefix: str
    user_id: str | None
    revoked: bool
    expires_at: datetime | None
    last_used_at: datetime | None
    created_at: datetime
    updated_at: datetime


class AdminTokenCreateResponse(AdminTokenResponse):
    """签发响应，token 字段为明文，只返回这一次"""
    token: str


class AdminTokenListResponse(CamelModel):
    items: list[AdminTokenResponse]
    total: int
    skip: int
    limit: int
