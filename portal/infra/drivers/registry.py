"""
数据库驱动注册表与调度

使用方式：
1. 通过装饰器注册（名称不区分大小写，可注册多个别名）：
   @register_driver("postgres", "postgresql")
   class PostgresDriver(BaseDriver): ...

2. 通过调度函数调用（永不抛出异常）：
   result = await discover_tables("postgres", config, credentials)
   if not result.success:
       print(result.error)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from portal.config import get_settings
from portal.infra.drivers.base import (
    BaseDriver,
    ConnectionSpec,
    ConnectionTestResult,
    DescribeResult,
    DiscoveryResult,
)

logger = logging.getLogger(__name__)


class DriverRegistry:
    """按连接类型（小写）索引驱动类"""

    def __init__(self) -> None:
        self._drivers: dict[str, type[BaseDriver]] = {}

    def register(self, name: str, driver_cls: type[BaseDriver]) -> None:
        self._drivers[name.lower()] = driver_cls

    def get(self, name: str | None) -> type[BaseDriver] | None:
        if not name:
            return None
        return self._drivers.get(name.strip().lower())

    def list(self) -> list[str]:
        return sorted(self._drivers)


# 全局单例
driver_registry = DriverRegistry()


def register_driver(*names: str) -> Callable[[type[BaseDriver]], type[BaseDriver]]:
    """驱动注册装饰器"""
    def wrapper(cls: type[BaseDriver]) -> type[BaseDriver]:
        for name in names:
            driver_registry.register(name, cls)
        return cls

    return wrapper


def _create_driver(connection_type: str | None) -> BaseDriver | None:
    driver_cls = driver_registry.get(connection_type)
    if driver_cls is None:
        return None
    return driver_cls(timeout=get_settings().discovery_timeout)


def _spec(
    connection_type: str,
    config: dict[str, Any] | None,
    credentials: dict[str, Any] | None,
) -> ConnectionSpec:
    return ConnectionSpec(
        connection_type=connection_type.strip().lower(),
        config=dict(config or {}),
        credentials=dict(credentials or {}),
    )


def _error_message(e: Exception) -> str:
    return str(e) or type(e).__name__


async def discover_tables(
    connection_type: str | None,
    config: dict[str, Any] | None,
    credentials: dict[str, Any] | None,
) -> DiscoveryResult:
    """
    发现数据源中的表

    不支持的连接类型和所有连接/查询错误都转换为 success=False 的结果。
    """
    driver = _create_driver(connection_type)
    if driver is None:
        logger.warning(f"不支持的连接类型: {connection_type}")
        return DiscoveryResult(
            success=False,
            error=f"Table discovery for '{connection_type}' is not supported yet",
        )

    try:
        tables = await driver.discover(_spec(connection_type, config, credentials))
    except Exception as e:
        logger.warning(f"表发现失败 ({driver.name}): {type(e).__name__}: {e}")
        return DiscoveryResult(success=False, error=_error_message(e))

    logger.info(f"表发现完成 ({driver.name}): 共 {len(tables)} 张表")
    return DiscoveryResult(success=True, tables=tables)


async def describe_table(
    connection_type: str | None,
    config: dict[str, Any] | None,
    credentials: dict[str, Any] | None,
    schema_name: str,
    table_name: str,
) -> DescribeResult:
    """获取指定表的字段，失败时返回 success=False"""
    driver = _create_driver(connection_type)
    if driver is None:
        return DescribeResult(
            success=False,
            error=f"Column discovery for '{connection_type}' is not supported yet",
        )

    try:
        columns = await driver.describe_table(
            _spec(connection_type, config, credentials), schema_name, table_name
        )
    except Exception as e:
        logger.warning(
            f"字段发现失败 ({driver.name}) {schema_name}.{table_name}: {type(e).__name__}: {e}"
        )
        return DescribeResult(success=False, error=_error_message(e))

    return DescribeResult(success=True, columns=columns)


async def check_connection(
    connection_type: str | None,
    config: dict[str, Any] | None,
    credentials: dict[str, Any] | None,
) -> ConnectionTestResult:
    """测试连接，失败时返回 success=False"""
    driver = _create_driver(connection_type)
    if driver is None:
        return ConnectionTestResult(
            success=False,
            message="Connection test failed",
            error=f"Connection testing for '{connection_type}' is not supported yet",
        )

    try:
        message = await driver.test_connection(_spec(connection_type, config, credentials))
    except Exception as e:
        logger.warning(f"连接测试失败 ({driver.name}): {type(e).__name__}: {e}")
        return ConnectionTestResult(
            success=False,
            message="Connection test failed",
            error=_error_message(e),
        )

    return ConnectionTestResult(success=True, message=message)
