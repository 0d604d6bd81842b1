"""
数据库驱动基础类型

所有驱动把各自引擎的元数据规整为统一结构，导入流程和关系推断只依赖这些结构，
与具体数据库引擎无关。
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class DiscoveredTable:
    """发现的表（统一结构）"""
    schema_name: str
    table_name: str
    table_type: str | None = None
    comment: str | None = None
    column_count: int | None = None
    estimated_rows: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DiscoveredColumn:
    """发现的字段（统一结构）"""
    column_name: str
    data_type: str | None = None
    is_nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    referenced_table: str | None = None
    referenced_column: str | None = None
    default_value: str | None = None
    comment: str | None = None
    ordinal_position: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DiscoveryResult:
    """发现结果：驱动从不向调用方抛出异常，失败时 success=False"""
    success: bool
    tables: list[DiscoveredTable] | None = None
    error: str | None = None


@dataclass
class DescribeResult:
    success: bool
    columns: list[DiscoveredColumn] | None = None
    error: str | None = None


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    error: str | None = None


@dataclass
class ConnectionSpec:
    """一次连接所需的配置和凭据"""
    connection_type: str
    config: dict[str, Any] = field(default_factory=dict)
    credentials: dict[str, Any] = field(default_factory=dict)

    def get(self, *keys: str, default: Any = None) -> Any:
        """依次从凭据和配置中查找第一个非空值"""
        for key in keys:
            for source in (self.credentials, self.config):
                value = source.get(key)
                if value not in (None, ""):
                    return value
        return default


class BaseDriver(ABC):
    """
    数据库驱动基类

    每次调用建立新连接，返回前无论成功失败都会关闭连接。
    子类方法可以直接抛出异常，由 registry 中的调度函数统一转换为失败结果。
    """

    name: str = "base"

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    @abstractmethod
    async def discover(self, spec: ConnectionSpec) -> list[DiscoveredTable]:
        """列出数据源中的表"""

    @abstractmethod
    async def describe_table(
        self, spec: ConnectionSpec, schema_name: str, table_name: str
    ) -> list[DiscoveredColumn]:
        """列出指定表的字段"""

    @abstractmethod
    async def test_connection(self, spec: ConnectionSpec) -> str:
        """测试连接，成功返回描述信息"""
