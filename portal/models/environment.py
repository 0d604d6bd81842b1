"""
部署环境模型 (Environment / EnvironmentSecurity)

Environment 是应用的一个部署目标，name 同时作为环境类型标签
（production / stage / development）。

EnvironmentSecurity 保存环境的安全配置：
- 限流配置直接保存在数据库中（仅作为配置数据，不在本服务内执行限流）
- 凭据保存在 Vault 中，数据库只保存引用键 vault_key
- 无 Vault 时降级：敏感字段写入 config（不推荐）
"""

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base
from portal.models.mixins import UUID_PK, TimestampMixin, new_id


class Environment(TimestampMixin, Base):
    """
    部署环境表

    同一应用内环境名称唯一（创建时统一转为小写）。
    """
    __tablename__ = "environments"

    __table_args__ = (
        UniqueConstraint("application_id", "name", name="uq_environment_app_name"),
    )

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    application_id: Mapped[str] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    base_domain: Mapped[str | None] = mapped_column(String(1024))

    description: Mapped[str | None] = mapped_column(Text)

    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", nullable=False)

    health_status: Mapped[str] = mapped_column(String(20), default="UNKNOWN", nullable=False)


class EnvironmentSecurity(TimestampMixin, Base):
    """
    环境安全配置表

    每个环境最多一条记录，按 environment_id 做 upsert。
    """
    __tablename__ = "environment_security"

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    environment_id: Mapped[str] = mapped_column(
        ForeignKey("environments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # ==================== 限流配置 ====================
    rate_limit_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rate_limit_requests: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    rate_limit_window: Mapped[int] = mapped_column(Integer, default=60, nullable=False)  # 秒

    # Vault 引用键：env_{environment_id}_security_settings
    vault_key: Mapped[str | None] = mapped_column(String(255))

    # 非敏感配置（认证方式、tokenUrl、region 等）
    config: Mapped[dict | None] = mapped_column(JSON)

    # ==================== 旧版字段 ====================
    # 以 JSON 字符串形式保存，读取时解析为对象
    custom_headers: Mapped[str | None] = mapped_column(Text)
    dynamic_fields_config: Mapped[str | None] = mapped_column(Text)
    custom_dynamic_fields: Mapped[str | None] = mapped_column(Text)
