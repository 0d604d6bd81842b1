"""
关系型数据库驱动（Postgres / MySQL / SQL Server）

基于 SQLAlchemy 异步引擎，每次调用创建独立引擎（NullPool，不复用连接），
在 finally 中 dispose，确保成功或失败都会关闭连接。

底层驱动：
- postgres  : postgresql+asyncpg
- mysql     : mysql+aiomysql
- mssql     : mssql+aioodbc（需要系统安装 ODBC Driver for SQL Server）

配置字段：host / port / database / schema / username（或 user）
凭据字段：password（也可以放 username）
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from portal.infra.drivers.base import (
    BaseDriver,
    ConnectionSpec,
    DiscoveredColumn,
    DiscoveredTable,
)
from portal.infra.drivers.registry import register_driver

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    # Postgres 未 ANALYZE 的表 reltuples 为 -1
    return number if number >= 0 else None


def _join_ref(schema: str | None, table: str | None) -> str | None:
    if not table:
        return None
    return f"{schema}.{table}" if schema else table


class SQLAlchemyDriver(BaseDriver):
    """SQLAlchemy 驱动基类，子类提供 URL 和元数据查询"""

    drivername: str = ""
    default_port: int | None = None

    DISCOVER_SQL: str = ""
    DESCRIBE_SQL: str = ""
    TEST_SQL: str = "SELECT 1"

    def build_url(self, spec: ConnectionSpec) -> URL:
        host = spec.get("host", "server")
        if not host:
            raise ValueError("Missing required connection field: host")
        port = spec.get("port", default=self.default_port)
        return URL.create(
            self.drivername,
            username=spec.get("username", "user"),
            password=spec.get("password"),
            host=host,
            port=int(port) if port else None,
            database=spec.get("database", "databaseName"),
            query=self.url_query(spec),
        )

    def url_query(self, spec: ConnectionSpec) -> dict[str, str]:
        return {}

    def connect_args(self, spec: ConnectionSpec) -> dict[str, Any]:
        return {}

    def create_engine(self, spec: ConnectionSpec) -> AsyncEngine:
        return create_async_engine(
            self.build_url(spec),
            poolclass=NullPool,
            connect_args=self.connect_args(spec),
        )

    async def _fetch(
        self, spec: ConnectionSpec, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        engine = self.create_engine(spec)
        try:
            async with engine.connect() as conn:
                result = await conn.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings().all()]
        finally:
            await engine.dispose()

    def discover_params(self, spec: ConnectionSpec) -> dict[str, Any]:
        return {}

    async def discover(self, spec: ConnectionSpec) -> list[DiscoveredTable]:
        rows = await self._fetch(spec, self.DISCOVER_SQL, self.discover_params(spec))
        return [
            DiscoveredTable(
                schema_name=row["schema_name"],
                table_name=row["table_name"],
                table_type=row.get("table_type"),
                comment=row.get("comment") or None,
                column_count=_to_int(row.get("column_count")),
                estimated_rows=_to_int(row.get("estimated_rows")),
            )
            for row in rows
        ]

    def describe_params(
        self, spec: ConnectionSpec, schema_name: str, table_name: str
    ) -> dict[str, Any]:
        return {"schema": schema_name, "table": table_name}

    async def describe_table(
        self, spec: ConnectionSpec, schema_name: str, table_name: str
    ) -> list[DiscoveredColumn]:
        rows = await self._fetch(
            spec, self.DESCRIBE_SQL, self.describe_params(spec, schema_name, table_name)
        )
        return [self._row_to_column(row) for row in rows]

    @staticmethod
    def _row_to_column(row: dict[str, Any]) -> DiscoveredColumn:
        ref_table = _join_ref(row.get("ref_schema"), row.get("ref_table"))
        default_value = row.get("default_value")
        return DiscoveredColumn(
            column_name=row["column_name"],
            data_type=row.get("data_type"),
            is_nullable=bool(row.get("is_nullable", True)),
            is_primary_key=bool(row.get("is_primary_key")),
            is_foreign_key=ref_table is not None,
            referenced_table=ref_table,
            referenced_column=row.get("ref_column"),
            default_value=str(default_value) if default_value is not None else None,
            comment=row.get("comment") or None,
            ordinal_position=_to_int(row.get("ordinal_position")),
        )

    async def test_connection(self, spec: ConnectionSpec) -> str:
        await self._fetch(spec, self.TEST_SQL)
        return f"Successfully connected to {self.name} database"


@register_driver("postgres", "postgresql")
class PostgresDriver(SQLAlchemyDriver):
    """PostgreSQL：information_schema + pg_catalog"""

    name = "postgres"
    drivername = "postgresql+asyncpg"
    default_port = 5432

    DISCOVER_SQL = """
        SELECT
            t.table_schema AS schema_name,
            t.table_name AS table_name,
            t.table_type AS table_type,
            obj_description(CAST(format('%I.%I', t.table_schema, t.table_name) AS regclass), 'pg_class') AS comment,
            (
                SELECT count(*) FROM information_schema.columns c
                WHERE c.table_schema = t.table_schema AND c.table_name = t.table_name
            ) AS column_count,
            (
                SELECT CAST(pc.reltuples AS bigint) FROM pg_class pc
                JOIN pg_namespace pn ON pn.oid = pc.relnamespace
                WHERE pn.nspname = t.table_schema AND pc.relname = t.table_name
            ) AS estimated_rows
        FROM information_schema.tables t
        WHERE t.table_schema NOT IN ('pg_catalog', 'information_schema')
          AND (CAST(:schema AS text) IS NULL OR t.table_schema = :schema)
        ORDER BY t.table_schema, t.table_name
    """

    DESCRIBE_SQL = """
        SELECT
            c.column_name AS column_name,
            c.data_type AS data_type,
            c.is_nullable = 'YES' AS is_nullable,
            c.column_default AS default_value,
            c.ordinal_position AS ordinal_position,
            col_description(CAST(format('%I.%I', c.table_schema, c.table_name) AS regclass), c.ordinal_position) AS comment,
            EXISTS (
                SELECT 1 FROM pg_index i
                JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
                WHERE i.indrelid = CAST(format('%I.%I', c.table_schema, c.table_name) AS regclass)
                  AND i.indisprimary
                  AND a.attname = c.column_name
            ) AS is_primary_key,
            fk.ref_schema AS ref_schema,
            fk.ref_table AS ref_table,
            fk.ref_column AS ref_column
        FROM information_schema.columns c
        LEFT JOIN (
            SELECT
                kcu.column_name,
                ccu.table_schema AS ref_schema,
                ccu.table_name AS ref_table,
                ccu.column_name AS ref_column
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
              ON ccu.constraint_name = tc.constraint_name AND ccu.constraint_schema = tc.table_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = :schema AND tc.table_name = :table
        ) fk ON fk.column_name = c.column_name
        WHERE c.table_schema = :schema AND c.table_name = :table
        ORDER BY c.ordinal_position
    """

    def connect_args(self, spec: ConnectionSpec) -> dict[str, Any]:
        args: dict[str, Any] = {"timeout": self.timeout}
        ssl = spec.get("ssl", "sslmode")
        if ssl in (True, "true", "require"):
            args["ssl"] = "require"
        return args

    def discover_params(self, spec: ConnectionSpec) -> dict[str, Any]:
        return {"schema": spec.get("schema")}


@register_driver("mysql", "mariadb")
class MySQLDriver(SQLAlchemyDriver):
    """MySQL：INFORMATION_SCHEMA（TABLE_ROWS 为估算值）"""

    name = "mysql"
    drivername = "mysql+aiomysql"
    default_port = 3306

    DISCOVER_SQL = """
        SELECT
            t.TABLE_SCHEMA AS schema_name,
            t.TABLE_NAME AS table_name,
            t.TABLE_TYPE AS table_type,
            t.TABLE_COMMENT AS comment,
            t.TABLE_ROWS AS estimated_rows,
            (
                SELECT COUNT(*) FROM INFORMATION_SCHEMA.COLUMNS c
                WHERE c.TABLE_SCHEMA = t.TABLE_SCHEMA AND c.TABLE_NAME = t.TABLE_NAME
            ) AS column_count
        FROM INFORMATION_SCHEMA.TABLES t
        WHERE t.TABLE_SCHEMA NOT IN ('mysql', 'information_schema', 'performance_schema', 'sys')
          AND (:database IS NULL OR t.TABLE_SCHEMA = :database)
        ORDER BY t.TABLE_SCHEMA, t.TABLE_NAME
    """

    DESCRIBE_SQL = """
        SELECT
            c.COLUMN_NAME AS column_name,
            c.COLUMN_TYPE AS data_type,
            c.IS_NULLABLE = 'YES' AS is_nullable,
            c.COLUMN_KEY = 'PRI' AS is_primary_key,
            c.COLUMN_DEFAULT AS default_value,
            c.COLUMN_COMMENT AS comment,
            c.ORDINAL_POSITION AS ordinal_position,
            k.REFERENCED_TABLE_SCHEMA AS ref_schema,
            k.REFERENCED_TABLE_NAME AS ref_table,
            k.REFERENCED_COLUMN_NAME AS ref_column
        FROM INFORMATION_SCHEMA.COLUMNS c
        LEFT JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE k
          ON k.TABLE_SCHEMA = c.TABLE_SCHEMA
         AND k.TABLE_NAME = c.TABLE_NAME
         AND k.COLUMN_NAME = c.COLUMN_NAME
         AND k.REFERENCED_TABLE_NAME IS NOT NULL
        WHERE c.TABLE_SCHEMA = :schema AND c.TABLE_NAME = :table
        ORDER BY c.ORDINAL_POSITION
    """

    def connect_args(self, spec: ConnectionSpec) -> dict[str, Any]:
        return {"connect_timeout": int(self.timeout)}

    def discover_params(self, spec: ConnectionSpec) -> dict[str, Any]:
        return {"database": spec.get("database", "databaseName")}


@register_driver("mssql", "sqlserver")
class SQLServerDriver(SQLAlchemyDriver):
    """SQL Server：sys.tables / sys.views + extended_properties + sys.partitions"""

    name = "mssql"
    drivername = "mssql+aioodbc"
    default_port = 1433

    DISCOVER_SQL = """
        SELECT
            s.name AS schema_name,
            o.name AS table_name,
            CASE o.type WHEN 'U' THEN 'BASE TABLE' ELSE 'VIEW' END AS table_type,
            CAST(ep.value AS NVARCHAR(4000)) AS comment,
            (SELECT COUNT(*) FROM sys.columns c WHERE c.object_id = o.object_id) AS column_count,
            (
                SELECT SUM(p.rows) FROM sys.partitions p
                WHERE p.object_id = o.object_id AND p.index_id IN (0, 1)
            ) AS estimated_rows
        FROM sys.objects o
        JOIN sys.schemas s ON s.schema_id = o.schema_id
        LEFT JOIN sys.extended_properties ep
          ON ep.major_id = o.object_id AND ep.minor_id = 0 AND ep.name = 'MS_Description'
        WHERE o.type IN ('U', 'V') AND o.is_ms_shipped = 0
        ORDER BY s.name, o.name
    """

    DESCRIBE_SQL = """
        SELECT
            c.name AS column_name,
            t.name AS data_type,
            c.is_nullable AS is_nullable,
            c.column_id AS ordinal_position,
            CAST(ep.value AS NVARCHAR(4000)) AS comment,
            OBJECT_DEFINITION(c.default_object_id) AS default_value,
            CASE WHEN EXISTS (
                SELECT 1 FROM sys.index_columns ic
                JOIN sys.indexes i ON i.object_id = ic.object_id AND i.index_id = ic.index_id
                WHERE i.is_primary_key = 1 AND ic.object_id = c.object_id AND ic.column_id = c.column_id
            ) THEN 1 ELSE 0 END AS is_primary_key,
            rs.name AS ref_schema,
            rt.name AS ref_table,
            rc.name AS ref_column
        FROM sys.columns c
        JOIN sys.types t ON t.user_type_id = c.user_type_id
        LEFT JOIN sys.extended_properties ep
          ON ep.major_id = c.object_id AND ep.minor_id = c.column_id AND ep.name = 'MS_Description'
        LEFT JOIN sys.foreign_key_columns fkc
          ON fkc.parent_object_id = c.object_id AND fkc.parent_column_id = c.column_id
        LEFT JOIN sys.tables rt ON rt.object_id = fkc.referenced_object_id
        LEFT JOIN sys.schemas rs ON rs.schema_id = rt.schema_id
        LEFT JOIN sys.columns rc
          ON rc.object_id = fkc.referenced_object_id AND rc.column_id = fkc.referenced_column_id
        WHERE c.object_id = OBJECT_ID(:qualified_name)
        ORDER BY c.column_id
    """

    def url_query(self, spec: ConnectionSpec) -> dict[str, str]:
        query = {
            "driver": spec.get("odbcDriver", default="ODBC Driver 18 for SQL Server"),
        }
        if spec.get("trustServerCertificate", default=True) in (True, "true", "yes"):
            query["TrustServerCertificate"] = "yes"
        return query

    def connect_args(self, spec: ConnectionSpec) -> dict[str, Any]:
        return {"timeout": int(self.timeout)}

    def describe_params(
        self, spec: ConnectionSpec, schema_name: str, table_name: str
    ) -> dict[str, Any]:
        def quote(name: str) -> str:
            return "[" + name.replace("]", "]]") + "]"

        return {"qualified_name": f"{quote(schema_name)}.{quote(table_name)}"}
