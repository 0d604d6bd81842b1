"""
数据库驱动测试

调度函数永不抛出异常：不支持的连接类型和驱动内部错误都转换为 success=False。
Databricks 驱动使用 httpx.MockTransport 模拟 SQL Statement API。
"""

import json

import httpx
import pytest

from portal.exceptions import DriverError
from portal.infra import drivers
from portal.infra.drivers.base import BaseDriver, ConnectionSpec
from portal.infra.drivers.bigquery import _load_key
from portal.infra.drivers.databricks import DatabricksDriver
from portal.infra.drivers.sql import MySQLDriver, PostgresDriver, SQLAlchemyDriver


@drivers.register_driver("exploding")
class ExplodingDriver(BaseDriver):
    """所有操作都抛出异常的驱动"""

    name = "exploding"

    async def discover(self, spec):
        raise RuntimeError("connection refused")

    async def describe_table(self, spec, schema_name, table_name):
        raise KeyError()

    async def test_connection(self, spec):
        raise RuntimeError("authentication failed")


class TestDispatch:
    """调度函数"""

    @pytest.mark.asyncio
    async def test_unsupported_type_discovery(self):
        result = await drivers.discover_tables("oracle", {}, {})
        assert result.success is False
        assert result.error == "Table discovery for 'oracle' is not supported yet"
        assert result.tables is None

    @pytest.mark.asyncio
    async def test_unsupported_type_describe_and_check(self):
        described = await drivers.describe_table("oracle", {}, {}, "s", "t")
        assert described.success is False
        assert described.error == "Column discovery for 'oracle' is not supported yet"

        checked = await drivers.check_connection(None, {}, {})
        assert checked.success is False
        assert checked.message == "Connection test failed"

    @pytest.mark.asyncio
    async def test_driver_exceptions_become_failures(self):
        result = await drivers.discover_tables("exploding", {}, {})
        assert result.success is False
        assert result.error == "connection refused"

        checked = await drivers.check_connection("EXPLODING", {}, {})
        assert checked.success is False
        assert checked.error == "authentication failed"

    @pytest.mark.asyncio
    async def test_empty_exception_message_uses_type_name(self):
        described = await drivers.describe_table("exploding", {}, {}, "s", "t")
        assert described.success is False
        assert described.error == "KeyError"

    @pytest.mark.asyncio
    async def test_missing_host_is_reported(self):
        result = await drivers.discover_tables("postgres", {"database": "shop"}, {})
        assert result.success is False
        assert "host" in result.error

    def test_registry_is_case_insensitive(self):
        assert drivers.driver_registry.get("PostgreSQL") is PostgresDriver
        assert drivers.driver_registry.get(" mariadb ") is MySQLDriver
        assert drivers.driver_registry.get("oracle") is None
        assert {"postgres", "mysql", "mssql", "bigquery", "databricks"} <= set(
            drivers.driver_registry.list()
        )


class TestSQLAlchemyDriver:
    """关系型数据库驱动（不连接数据库）"""

    def test_build_url_merges_config_and_credentials(self):
        spec = ConnectionSpec(
            connection_type="postgres",
            config={"host": "db.internal", "database": "shop", "username": "ro"},
            credentials={"password": "p@ss"},
        )
        url = PostgresDriver().build_url(spec)
        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "db.internal"
        assert url.port == 5432
        assert url.username == "ro"
        assert url.password == "p@ss"
        assert url.database == "shop"

    def test_credentials_take_precedence(self):
        spec = ConnectionSpec(
            connection_type="mysql",
            config={"host": "h", "username": "config-user", "port": "3307"},
            credentials={"username": "vault-user"},
        )
        url = MySQLDriver().build_url(spec)
        assert url.username == "vault-user"
        assert url.port == 3307

    def test_row_to_column(self):
        column = SQLAlchemyDriver._row_to_column({
            "column_name": "customer_id",
            "data_type": "integer",
            "is_nullable": 0,
            "is_primary_key": 0,
            "default_value": 0,
            "ref_schema": "public",
            "ref_table": "customers",
            "ref_column": "id",
            "ordinal_position": "2",
        })
        assert column.is_foreign_key is True
        assert column.referenced_table == "public.customers"
        assert column.referenced_column == "id"
        assert column.is_nullable is False
        assert column.default_value == "0"
        assert column.ordinal_position == 2


def _databricks(handler) -> DatabricksDriver:
    return DatabricksDriver(timeout=5.0, transport=httpx.MockTransport(handler))


def _succeeded(rows: list[list]) -> httpx.Response:
    return httpx.Response(
        200, json={"status": {"state": "SUCCEEDED"}, "result": {"data_array": rows}}
    )


DATABRICKS_SPEC = ConnectionSpec(
    connection_type="databricks",
    config={"serverHostname": "adb-123.azuredatabricks.net", "warehouseId": "wh1",
            "catalog": "main", "schema": "sales"},
    credentials={"accessToken": "dapi-token"},
)


class TestDatabricksDriver:
    """Databricks SQL Statement API"""

    @pytest.mark.asyncio
    async def test_discover(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "adb-123.azuredatabricks.net"
            assert request.url.path == "/api/2.0/sql/statements"
            assert request.headers["Authorization"] == "Bearer dapi-token"
            bodies.append(json.loads(request.content))
            return _succeeded([["sales", "orders", "false"], ["sales", "tmp_view", "true"]])

        tables = await _databricks(handler).discover(DATABRICKS_SPEC)

        assert bodies[0]["statement"] == "SHOW TABLES IN `main`.`sales`"
        assert bodies[0]["warehouse_id"] == "wh1"
        assert bodies[0]["catalog"] == "main"
        assert [(t.schema_name, t.table_name, t.table_type) for t in tables] == [
            ("sales", "orders", "TABLE"),
            ("sales", "tmp_view", "TEMPORARY"),
        ]

    @pytest.mark.asyncio
    async def test_describe_stops_at_metadata_section(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["statement"] == (
                "DESCRIBE TABLE `main`.`sales`.`orders`"
            )
            return _succeeded([
                ["id", "bigint", None],
                ["amount", "decimal(10,2)", "order total"],
                ["", "", ""],
                ["# Partition Information", "", ""],
                ["region", "string", None],
            ])

        columns = await _databricks(handler).describe_table(DATABRICKS_SPEC, "sales", "orders")

        assert [c.column_name for c in columns] == ["id", "amount"]
        assert columns[1].comment == "order total"
        assert columns[1].ordinal_position == 2

    @pytest.mark.asyncio
    async def test_failed_statement_raises_driver_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "status": {"state": "FAILED", "error": {"message": "TABLE_OR_VIEW_NOT_FOUND"}},
            })

        with pytest.raises(DriverError, match="TABLE_OR_VIEW_NOT_FOUND"):
            await _databricks(handler).test_connection(DATABRICKS_SPEC)

    @pytest.mark.asyncio
    async def test_warehouse_id_from_http_path(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content)["warehouse_id"])
            return _succeeded([[1]])

        spec = ConnectionSpec(
            connection_type="databricks",
            config={"serverHostname": "https://adb.test", "httpPath": "/sql/1.0/warehouses/abc123"},
            credentials={"accessToken": "t"},
        )
        message = await _databricks(handler).test_connection(spec)
        assert seen == ["abc123"]
        assert "Databricks" in message

    @pytest.mark.asyncio
    async def test_missing_token(self):
        spec = ConnectionSpec(connection_type="databricks", config={"serverHostname": "h"})
        with pytest.raises(ValueError, match="access token"):
            await _databricks(lambda r: _succeeded([])).discover(spec)


class TestBigQueryKey:

    def test_load_key_accepts_json_string_and_dict(self):
        assert _load_key('{"project_id": "p"}') == {"project_id": "p"}
        assert _load_key({"project_id": "p"}) == {"project_id": "p"}

    def test_missing_key(self):
        with pytest.raises(ValueError):
            _load_key(None)
