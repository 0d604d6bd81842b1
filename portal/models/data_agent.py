"""
数据代理模型 (Data Agent)

数据代理连接一个外部数据源（Postgres / MySQL / SQL Server / BigQuery / Databricks），
导入表和字段元数据，并推断表之间的关联关系。

数据模型关系图：
    DataAgent (数据代理)
       │
       └── DataAgentEnvironment (连接配置：production / staging / development)
              │
              ├── DataAgentTable (已导入的表)
              │      │
              │      └── DataAgentTableColumn (已导入的字段)
              │
              └── DataAgentRelation (表之间的关联关系)

安全设计：
- connection_config 只保存主机、端口、库名等非敏感信息
- 密码、Token、服务账号密钥保存在 Vault 中，通过 vault_key 引用
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base
from portal.models.mixins import UUID_PK, TimestampMixin, new_id

# 表分析状态
ANALYSIS_PENDING = "PENDING"
ANALYSIS_ANALYZING = "ANALYZING"
ANALYSIS_COMPLETED = "COMPLETED"
ANALYSIS_FAILED = "FAILED"

# 关系类型
RELATIONSHIP_TYPES = ("one_to_one", "one_to_many", "many_to_one", "many_to_many")


class DataAgent(TimestampMixin, Base):
    """
    数据代理表

    status: INACTIVE（新建，尚无连接配置）/ ACTIVE / ERROR
    """
    __tablename__ = "data_agents"

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text)

    # postgres / mysql / mssql / bigquery / databricks ...
    connection_type: Mapped[str] = mapped_column(String(50), nullable=False)

    connection_config: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    vault_key: Mapped[str | None] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(String(20), default="INACTIVE", nullable=False)

    last_connected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class DataAgentEnvironment(TimestampMixin, Base):
    """
    数据代理连接配置表

    一个数据代理可以有多套连接配置，connection_config 会覆盖数据代理的默认配置。
    relationship_analysis 保存最近一次关系推断的摘要，表被删除时重置。
    """
    __tablename__ = "data_agent_environments"

    __table_args__ = (
        UniqueConstraint("data_agent_id", "name", name="uq_data_agent_env_name"),
    )

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    data_agent_id: Mapped[str] = mapped_column(
        ForeignKey("data_agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(Text)

    connection_config: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    vault_key: Mapped[str | None] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", nullable=False)

    health_status: Mapped[str] = mapped_column(String(20), default="UNKNOWN", nullable=False)

    last_connected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    relationship_analysis: Mapped[dict | None] = mapped_column(JSON)

    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class DataAgentTable(TimestampMixin, Base):
    """
    已导入的表

    自然键：(environment_id, schema_name, table_name)，重复导入只更新不新增。
    """
    __tablename__ = "data_agent_tables"

    __table_args__ = (
        UniqueConstraint(
            "environment_id", "schema_name", "table_name",
            name="uq_data_agent_table_natural_key",
        ),
    )

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    environment_id: Mapped[str] = mapped_column(
        ForeignKey("data_agent_environments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    schema_name: Mapped[str] = mapped_column(String(255), nullable=False)

    table_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # BASE TABLE / VIEW / EXTERNAL ...
    table_type: Mapped[str | None] = mapped_column(String(50))

    description: Mapped[str | None] = mapped_column(Text)

    row_count: Mapped[int | None] = mapped_column(Integer)

    analysis_status: Mapped[str] = mapped_column(
        String(20), default=ANALYSIS_PENDING, nullable=False
    )

    # AI 分析结果：{"summary": ..., "columns": {...}} 或 {"error": ...}
    analysis_result: Mapped[dict | None] = mapped_column(JSON)

    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class DataAgentTableColumn(TimestampMixin, Base):
    """
    已导入的字段

    自然键：(table_id, column_name)。
    """
    __tablename__ = "data_agent_table_columns"

    __table_args__ = (
        UniqueConstraint("table_id", "column_name", name="uq_data_agent_column_natural_key"),
    )

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    table_id: Mapped[str] = mapped_column(
        ForeignKey("data_agent_tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    column_name: Mapped[str] = mapped_column(String(255), nullable=False)

    data_type: Mapped[str | None] = mapped_column(String(255))

    is_nullable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    is_primary_key: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_foreign_key: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # 外键指向：schema.table / column
    referenced_table: Mapped[str | None] = mapped_column(String(512))
    referenced_column: Mapped[str | None] = mapped_column(String(255))

    default_value: Mapped[str | None] = mapped_column(Text)

    comment: Mapped[str | None] = mapped_column(Text)

    ai_description: Mapped[str | None] = mapped_column(Text)

    sample_values: Mapped[list | None] = mapped_column(JSON)

    ordinal_position: Mapped[int | None] = mapped_column(Integer)


class DataAgentRelation(TimestampMixin, Base):
    """
    表之间的关联关系

    confidence 仅供参考，is_verified 才是可信标记：
    任何人工编辑都会把 is_verified 置为 True，关系推断不会覆盖已验证的关系。
    """
    __tablename__ = "data_agent_relations"

    __table_args__ = (
        UniqueConstraint(
            "source_table_id", "source_column", "target_table_id", "target_column",
            name="uq_data_agent_relation",
        ),
    )

    id: Mapped[UUID_PK] = mapped_column(default=new_id)

    environment_id: Mapped[str] = mapped_column(
        ForeignKey("data_agent_environments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    source_table_id: Mapped[str] = mapped_column(
        ForeignKey("data_agent_tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    target_table_id: Mapped[str] = mapped_column(
        ForeignKey("data_agent_tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    source_column: Mapped[str] = mapped_column(String(255), nullable=False)

    target_column: Mapped[str] = mapped_column(String(255), nullable=False)

    relationship_type: Mapped[str] = mapped_column(String(20), default="many_to_one", nullable=False)

    confidence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    description: Mapped[str | None] = mapped_column(Text)

    example: Mapped[str | None] = mapped_column(Text)
