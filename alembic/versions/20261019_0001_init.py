"""
初始数据库迁移脚本

创建所有基础表：
- users / admin_tokens          : 管理员与管理员 Token
- applications                  : 应用
- environments                  : 部署环境
- environment_security          : 环境安全配置
- api_keys                      : 应用 API Key
- endpoints                     : 接口定义
- data_agents                   : 数据代理
- data_agent_environments       : 数据代理连接配置
- data_agent_tables             : 已导入的表
- data_agent_table_columns      : 已导入的字段
- data_agent_relations          : 表关联关系

Revision ID: 20261019_0001
Revises: 无（初始迁移）
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# 迁移版本标识
revision: str = "20261019_0001"
down_revision: Union[str, None] = None  # 无前置迁移
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    """升级：创建所有表"""
    op.create_table(
        "users",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "admin_tokens",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("prefix", sa.String(length=12), nullable=False),
        sa.Column("hashed_token", sa.String(length=128), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hashed_token"),
    )
    op.create_index("ix_admin_tokens_user_id", "admin_tokens", ["user_id"])
    op.create_index("ix_admin_tokens_prefix", "admin_tokens", ["prefix"])
    op.create_index("ix_admin_tokens_revoked", "admin_tokens", ["revoked"])

    op.create_table(
        "applications",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("authentication_method", sa.String(length=40), nullable=False),
        sa.Column("auth_config", sa.JSON(), nullable=True),
        sa.Column("auth_vault_key", sa.String(length=255), nullable=True),
        sa.Column("health_check_url", sa.String(length=1024), nullable=True),
        sa.Column("health_check_interval", sa.Integer(), nullable=True),
        sa.Column("health_status", sa.String(length=20), nullable=False),
        sa.Column("last_health_check", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_applications_user_id", "applications", ["user_id"])

    op.create_table(
        "environments",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("application_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("base_domain", sa.String(length=1024), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("health_status", sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_id", "name", name="uq_environment_app_name"),
    )
    op.create_index("ix_environments_application_id", "environments", ["application_id"])

    op.create_table(
        "environment_security",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("environment_id", sa.String(length=36), nullable=False),
        sa.Column("rate_limit_enabled", sa.Boolean(), nullable=False),
        sa.Column("rate_limit_requests", sa.Integer(), nullable=False),
        sa.Column("rate_limit_window", sa.Integer(), nullable=False),
        sa.Column("vault_key", sa.String(length=255), nullable=True),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("custom_headers", sa.Text(), nullable=True),
        sa.Column("dynamic_fields_config", sa.Text(), nullable=True),
        sa.Column("custom_dynamic_fields", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["environment_id"], ["environments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("environment_id"),
    )

    op.create_table(
        "api_keys",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("application_id", sa.String(length=36), nullable=False),
        sa.Column("environment_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("prefix", sa.String(length=16), nullable=False),
        sa.Column("hashed_token", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("vault_key", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["environment_id"], ["environments.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hashed_token"),
    )
    op.create_index("ix_api_keys_application_id", "api_keys", ["application_id"])
    op.create_index("ix_api_keys_environment_id", "api_keys", ["environment_id"])
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"])

    op.create_table(
        "endpoints",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("application_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("path", sa.String(length=1024), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("path_params", sa.JSON(), nullable=True),
        sa.Column("query_params", sa.JSON(), nullable=True),
        sa.Column("request_body", sa.JSON(), nullable=True),
        sa.Column("response_body", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_endpoints_application_id", "endpoints", ["application_id"])

    op.create_table(
        "data_agents",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("connection_type", sa.String(length=50), nullable=False),
        sa.Column("connection_config", sa.JSON(), nullable=False),
        sa.Column("vault_key", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("last_connected_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_data_agents_user_id", "data_agents", ["user_id"])

    op.create_table(
        "data_agent_environments",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("data_agent_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("connection_config", sa.JSON(), nullable=False),
        sa.Column("vault_key", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("health_status", sa.String(length=20), nullable=False),
        sa.Column("last_connected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("relationship_analysis", sa.JSON(), nullable=True),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["data_agent_id"], ["data_agents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("data_agent_id", "name", name="uq_data_agent_env_name"),
    )
    op.create_index(
        "ix_data_agent_environments_data_agent_id", "data_agent_environments", ["data_agent_id"]
    )

    op.create_table(
        "data_agent_tables",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("environment_id", sa.String(length=36), nullable=False),
        sa.Column("schema_name", sa.String(length=255), nullable=False),
        sa.Column("table_name", sa.String(length=255), nullable=False),
        sa.Column("table_type", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=True),
        sa.Column("analysis_status", sa.String(length=20), nullable=False),
        sa.Column("analysis_result", sa.JSON(), nullable=True),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["environment_id"], ["data_agent_environments.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "environment_id", "schema_name", "table_name",
            name="uq_data_agent_table_natural_key",
        ),
    )
    op.create_index("ix_data_agent_tables_environment_id", "data_agent_tables", ["environment_id"])

    op.create_table(
        "data_agent_table_columns",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("table_id", sa.String(length=36), nullable=False),
        sa.Column("column_name", sa.String(length=255), nullable=False),
        sa.Column("data_type", sa.String(length=255), nullable=True),
        sa.Column("is_nullable", sa.Boolean(), nullable=False),
        sa.Column("is_primary_key", sa.Boolean(), nullable=False),
        sa.Column("is_foreign_key", sa.Boolean(), nullable=False),
        sa.Column("referenced_table", sa.String(length=512), nullable=True),
        sa.Column("referenced_column", sa.String(length=255), nullable=True),
        sa.Column("default_value", sa.Text(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("ai_description", sa.Text(), nullable=True),
        sa.Column("sample_values", sa.JSON(), nullable=True),
        sa.Column("ordinal_position", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["table_id"], ["data_agent_tables.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("table_id", "column_name", name="uq_data_agent_column_natural_key"),
    )
    op.create_index(
        "ix_data_agent_table_columns_table_id", "data_agent_table_columns", ["table_id"]
    )

    op.create_table(
        "data_agent_relations",
        *_timestamps(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("environment_id", sa.String(length=36), nullable=False),
        sa.Column("source_table_id", sa.String(length=36), nullable=False),
        sa.Column("target_table_id", sa.String(length=36), nullable=False),
        sa.Column("source_column", sa.String(length=255), nullable=False),
        sa.Column("target_column", sa.String(length=255), nullable=False),
        sa.Column("relationship_type", sa.String(length=20), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("example", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["environment_id"], ["data_agent_environments.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["source_table_id"], ["data_agent_tables.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_table_id"], ["data_agent_tables.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "source_table_id", "source_column", "target_table_id", "target_column",
            name="uq_data_agent_relation",
        ),
    )
    op.create_index(
        "ix_data_agent_relations_environment_id", "data_agent_relations", ["environment_id"]
    )
    op.create_index(
        "ix_data_agent_relations_source_table_id", "data_agent_relations", ["source_table_id"]
    )
    op.create_index(
        "ix_data_agent_relations_target_table_id", "data_agent_relations", ["target_table_id"]
    )


def downgrade() -> None:
    """降级：按依赖关系逆序删除所有表"""
    op.drop_table("data_agent_relations")
    op.drop_table("data_agent_table_columns")
    op.drop_table("data_agent_tables")
    op.drop_table("data_agent_environments")
    op.drop_table("data_agents")
    op.drop_table("endpoints")
    op.drop_table("api_keys")
    op.drop_table("environment_security")
    op.drop_table("environments")
    op.drop_table("applications")
    op.drop_table("admin_tokens")
    op.drop_table("users")
