"""
BigQuery 驱动

使用 google-cloud-bigquery 官方客户端（同步 API，通过 asyncio.to_thread 调用，避免阻塞事件循环）。

配置字段：projectId（可从服务账号密钥中推断）、dataset（可选，只列出该数据集）
凭据字段：serviceAccountKey 或 gcpKeyFile（JSON 字符串或对象）
"""

import asyncio
import json
import logging
from typing import Any

from google.cloud import bigquery
from google.oauth2 import service_account

from portal.infra.drivers.base import (
    BaseDriver,
    ConnectionSpec,
    DiscoveredColumn,
    DiscoveredTable,
)
from portal.infra.drivers.registry import register_driver

logger = logging.getLogger(__name__)

# BigQuery 表类型映射到 information_schema 风格
TABLE_TYPES = {
    "TABLE": "BASE TABLE",
    "VIEW": "VIEW",
    "MATERIALIZED_VIEW": "MATERIALIZED VIEW",
    "EXTERNAL": "EXTERNAL",
    "SNAPSHOT": "SNAPSHOT",
}


def _load_key(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        return json.loads(raw)
    raise ValueError("Missing BigQuery service account key")


@register_driver("bigquery")
class BigQueryDriver(BaseDriver):
    """BigQuery：数据集 → 表 → 表元数据"""

    name = "bigquery"

    def create_client(self, spec: ConnectionSpec) -> bigquery.Client:
        key_info = _load_key(spec.get("serviceAccountKey", "gcpKeyFile", "keyFile"))
        credentials = service_account.Credentials.from_service_account_info(key_info)
        project = spec.get("projectId", "project_id") or key_info.get("project_id")
        return bigquery.Client(project=project, credentials=credentials)

    def _discover_sync(self, spec: ConnectionSpec) -> list[DiscoveredTable]:
        client = self.create_client(spec)
        try:
            dataset_id = spec.get("dataset", "datasetId")
            if dataset_id:
                dataset_ids = [dataset_id]
            else:
                dataset_ids = [d.dataset_id for d in client.list_datasets(timeout=self.timeout)]

            tables: list[DiscoveredTable] = []
            for ds in dataset_ids:
                for item in client.list_tables(ds, timeout=self.timeout):
                    # list_tables 只返回概要信息，字段数和行数需要获取完整表元数据
                    table = client.get_table(item.reference, timeout=self.timeout)
                    tables.append(
                        DiscoveredTable(
                            schema_name=ds,
                            table_name=table.table_id,
                            table_type=TABLE_TYPES.get(table.table_type, table.table_type),
                            comment=table.description,
                            column_count=len(table.schema or []),
                            estimated_rows=table.num_rows,
                        )
                    )
            return tables
        finally:
            client.close()

    def _describe_sync(
        self, spec: ConnectionSpec, schema_name: str, table_name: str
    ) -> list[DiscoveredColumn]:
        client = self.create_client(spec)
        try:
            table = client.get_table(f"{client.project}.{schema_name}.{table_name}", timeout=self.timeout)
            return [
                DiscoveredColumn(
                    column_name=field.name,
                    data_type=field.field_type,
                    is_nullable=field.mode != "REQUIRED",
                    comment=field.description,
                    ordinal_position=position,
                )
                for position, field in enumerate(table.schema or [], start=1)
            ]
        finally:
            client.close()

    def _test_sync(self, spec: ConnectionSpec) -> str:
        client = self.create_client(spec)
        try:
            client.query("SELECT 1").result(timeout=self.timeout)
            return f"Successfully connected to BigQuery project {client.project}"
        finally:
            client.close()

    async def discover(self, spec: ConnectionSpec) -> list[DiscoveredTable]:
        return await asyncio.to_thread(self._discover_sync, spec)

    async def describe_table(
        self, spec: ConnectionSpec, schema_name: str, table_name: str
    ) -> list[DiscoveredColumn]:
        return await asyncio.to_thread(self._describe_sync, spec, schema_name, table_name)

    async def test_connection(self, spec: ConnectionSpec) -> str:
        return await asyncio.to_thread(self._test_sync, spec)
