"""
API 密钥模型 (ApiKey)

应用的 API Key，供调用方访问网关。

安全设计：
- 数据库只保存 SHA256 哈希值和前缀
- 明文保存在 Vault 中（api_key_{application_id}_{key_id}），只能在创建时
  或通过明文查询接口按需取回
- 支持过期时间和撤销

API Key 格式示例：
    mcp_key_xxxxxxxxxxxxxxxxxxxx
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base
from portal.models.mixins import UUID_PK, TimestampMixin, new_id


class ApiKey(TimestampMixin, Base):
    """API 密钥表"""
    __tablename__ = "api_keys"

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    application_id: Mapped[str] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # 绑定的部署环境：为空表示对所有环境有效
    environment_id: Mapped[str | None] = mapped_column(
        ForeignKey("environments.id", ondelete="SET NULL"),
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # 前缀用于在列表中识别（明文）
    prefix: Mapped[str] = mapped_column(String(16), index=True)

    hashed_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    # ACTIVE / REVOKED / EXPIRED
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", nullable=False)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    vault_key: Mapped[str | None] = mapped_column(String(255))

    description: Mapped[str | None] = mapped_column(Text)
