"""
外部数据库驱动

每种引擎一个驱动，统一输出 DiscoveredTable / DiscoveredColumn：
- sql.py        : Postgres / MySQL / SQL Server（SQLAlchemy 异步引擎）
- bigquery.py   : BigQuery（google-cloud-bigquery）
- databricks.py : Databricks（SQL Statement API over httpx）
- registry.py   : 驱动注册表和调度函数

使用示例：
    from portal.infra import drivers

    result = await drivers.discover_tables("postgresql", config, credentials)
    columns = await drivers.describe_table("mysql", config, credentials, "shop", "orders")
"""

from portal.infra.drivers import bigquery, databricks, sql  # noqa: F401
from portal.infra.drivers.base import (
    ConnectionTestResult,
    DescribeResult,
    DiscoveredColumn,
    DiscoveredTable,
    DiscoveryResult,
)
from portal.infra.drivers.registry import (
    check_connection,
    describe_table,
    discover_tables,
    driver_registry,
    register_driver,
)

__all__ = [
    "ConnectionTestResult",
    "DescribeResult",
    "DiscoveredColumn",
    "DiscoveredTable",
    "DiscoveryResult",
    "check_connection",
    "describe_table",
    "discover_tables",
    "driver_registry",
    "register_driver",
]
