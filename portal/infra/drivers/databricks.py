"""
Databricks 驱动

通过 SQL Statement Execution API（HTTP）执行元数据查询，不依赖 JDBC/ODBC：
    POST {serverHostname}/api/2.0/sql/statements
    Authorization: Bearer {accessToken}
    {"warehouse_id": ..., "statement": "SHOW TABLES", "wait_timeout": "10s"}

配置字段：serverHostname、warehouseId（或 httpPath: /sql/1.0/warehouses/<id>）、catalog、schema
凭据字段：accessToken
"""

import logging
from typing import Any

import httpx

from portal.config import get_settings
from portal.exceptions import DriverError
from portal.infra.drivers.base import (
    BaseDriver,
    ConnectionSpec,
    DiscoveredColumn,
    DiscoveredTable,
)
from portal.infra.drivers.registry import register_driver

logger = logging.getLogger(__name__)

STATEMENTS_PATH = "/api/2.0/sql/statements"


def _quote(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


@register_driver("databricks")
class DatabricksDriver(BaseDriver):
    """Databricks SQL Warehouse"""

    name = "databricks"

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(timeout=timeout)
        self._transport = transport

    @staticmethod
    def _base_url(spec: ConnectionSpec) -> str:
        host = spec.get("serverHostname", "host")
        if not host:
            raise ValueError("Missing required connection field: serverHostname")
        host = str(host).rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        return host

    @staticmethod
    def _warehouse_id(spec: ConnectionSpec) -> str:
        warehouse_id = spec.get("warehouseId", "warehouse_id")
        if not warehouse_id:
            http_path = spec.get("httpPath") or ""
            warehouse_id = str(http_path).rstrip("/").rsplit("/", 1)[-1]
        if not warehouse_id:
            raise ValueError("Missing required connection field: warehouseId")
        return warehouse_id

    async def execute(self, spec: ConnectionSpec, statement: str) -> list[list[Any]]:
        """执行语句，返回 result.data_array"""
        token = spec.get("accessToken", "token")
        if not token:
            raise ValueError("Missing Databricks access token")

        body: dict[str, Any] = {
            "warehouse_id": self._warehouse_id(spec),
            "statement": statement,
            "wait_timeout": get_settings().databricks_wait_timeout,
        }
        catalog = spec.get("catalog")
        if catalog:
            body["catalog"] = catalog

        async with httpx.AsyncClient(
            base_url=self._base_url(spec),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(
                STATEMENTS_PATH,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            payload = response.json()

        status = payload.get("status") or {}
        state = status.get("state")
        if state != "SUCCEEDED":
            message = (status.get("error") or {}).get("message") or f"Statement state: {state}"
            raise DriverError(message)

        return (payload.get("result") or {}).get("data_array") or []

    async def discover(self, spec: ConnectionSpec) -> list[DiscoveredTable]:
        catalog = spec.get("catalog")
        schema = spec.get("schema")
        statement = "SHOW TABLES"
        if schema:
            target = f"{_quote(catalog)}.{_quote(schema)}" if catalog else _quote(schema)
            statement = f"SHOW TABLES IN {target}"

        rows = await self.execute(spec, statement)
        # SHOW TABLES 返回列：database, tableName, isTemporary
        tables = []
        for row in rows:
            if len(row) < 2:
                continue
            is_temporary = len(row) > 2 and str(row[2]).lower() == "true"
            tables.append(
                DiscoveredTable(
                    schema_name=row[0] or schema or "default",
                    table_name=row[1],
                    table_type="TEMPORARY" if is_temporary else "TABLE",
                )
            )
        return tables

    async def describe_table(
        self, spec: ConnectionSpec, schema_name: str, table_name: str
    ) -> list[DiscoveredColumn]:
        catalog = spec.get("catalog")
        parts = [catalog, schema_name, table_name] if catalog else [schema_name, table_name]
        rows = await self.execute(spec, f"DESCRIBE TABLE {'.'.join(_quote(p) for p in parts)}")

        columns = []
        # DESCRIBE 返回 col_name, data_type, comment；分区信息等附加段落以 # 开头
        for row in rows:
            if not row or not row[0] or str(row[0]).startswith("#"):
                break
            columns.append(
                DiscoveredColumn(
                    column_name=row[0],
                    data_type=row[1] if len(row) > 1 else None,
                    comment=row[2] if len(row) > 2 else None,
                    ordinal_position=len(columns) + 1,
                )
            )
        return columns

    async def test_connection(self, spec: ConnectionSpec) -> str:
        await self.execute(spec, "SELECT 1")
        return "Successfully connected to Databricks SQL warehouse"
