"""
应用模型 (Application)

应用是被网关托管的上游服务。每个应用拥有多个部署环境、API Key 和接口定义。

认证方式（authentication_method）决定网关调用上游时如何携带凭据，
凭据中的敏感部分保存在 Vault 中，数据库只保存引用键 auth_vault_key。
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base
from portal.models.mixins import UUID_PK, TimestampMixin, new_id

# 支持的认证方式
AUTHENTICATION_METHODS = (
    "none",
    "api_key",
    "bearer_token",
    "basic_auth",
    "oauth2",
    "jwt",
    "azure_apim",
    "azure_ad",
    "aws_iam",
    "gcp_service_account",
    "signature_auth",
    "custom",
)


class Application(TimestampMixin, Base):
    """
    应用表

    字段说明：
    - status: ACTIVE / INACTIVE / MAINTENANCE
    - authentication_method: 见 AUTHENTICATION_METHODS
    - auth_config: 认证配置中的非敏感部分
    - auth_vault_key: Vault 中认证凭据的引用键
    - health_*: 健康检查配置与最近一次结果
    """
    __tablename__ = "applications"

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text)

    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", nullable=False)

    authentication_method: Mapped[str] = mapped_column(String(40), default="none", nullable=False)

    auth_config: Mapped[dict | None] = mapped_column(JSON)

    auth_vault_key: Mapped[str | None] = mapped_column(String(255))

    # ==================== 健康检查 ====================
    health_check_url: Mapped[str | None] = mapped_column(String(1024))

    health_check_interval: Mapped[int | None] = mapped_column()  # 秒

    health_status: Mapped[str] = mapped_column(String(20), default="UNKNOWN", nullable=False)

    last_health_check: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
