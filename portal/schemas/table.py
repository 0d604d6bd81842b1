"""
表和字段 Schemas

发现结果（DiscoveredTableItem / DiscoveredColumnItem）附带 isImported 标记，
前端据此预先勾选已导入的表和字段。
"""

from datetime import datetime
from typing import Any

from pydantic import Field

from portal.schemas.common import CamelModel


class DiscoveredTableItem(CamelModel):
    """发现的表"""
    schema_name: str
    table_name: str
    table_type: str | None = None
    comment: str | None = None
    column_count: int | None = None
    estimated_rows: int | None = None
    is_imported: bool = False


class DiscoveredColumnItem(CamelModel):
    """发现的字段"""
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
    is_imported: bool = False


class DiscoveryResponse(CamelModel):
    """发现表的结果：失败时 success=False 并带 error"""
    success: bool
    tables: list[DiscoveredTableItem] | None = None
    error: str | None = None


class AvailableColumnsRequest(CamelModel):
    schema_name: str
    table_name: str


class AvailableColumnsResponse(CamelModel):
    success: bool
    columns: list[DiscoveredColumnItem] | None = None
    error: str | None = None


class TableSelection(CamelModel):
    """
    待导入的表

    columns 为空时导入全部字段；为字段名列表时只导入指定字段。
    column_details 用于无法连接数据源时直接提供字段元数据。
    """
    schema_name: str = Field(..., min_length=1)
    table_name: str = Field(..., min_length=1)
    table_type: str | None = None
    comment: str | None = None
    estimated_rows: int | None = None
    columns: list[str] | None = None
    column_details: list[DiscoveredColumnItem] | None = None


class TableImportRequest(CamelModel):
    tables: list[TableSelection] = Field(..., min_length=1)


class ColumnResponse(CamelModel):
    id: str
    table_id: str
    column_name: str
    data_type: str | None
    is_nullable: bool
    is_primary_key: bool
    is_foreign_key: bool
    referenced_table: str | None
    referenced_column: str | None
    default_value: str | None
    comment: str | None
    ai_description: str | None
    sample_values: list | None
    ordinal_position: int | None
    is_imported: bool = True


class TableResponse(CamelModel):
    id: str
    environment_id: str
    schema_name: str
    table_name: str
    table_type: str | None
    description: str | None
    row_count: int | None
    analysis_status: str
    analysis_result: dict[str, Any] | None
    analyzed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    is_imported: bool = True
    columns: list[ColumnResponse] = Field(default_factory=list)


class TableImportResponse(CamelModel):
    imported: list[str]
    created: int
    updated: int
    tables: list[TableResponse]


class TableUpdate(CamelModel):
    description: str | None = None
    table_type: str | None = None


class ColumnUpdate(CamelModel):
    comment: str | None = None
    ai_description: str | None = None
    is_primary_key: bool | None = None
    is_foreign_key: bool | None = None
    referenced_table: str | None = None
    referenced_column: str | None = None
    sample_values: list | None = None
