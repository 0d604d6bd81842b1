"""
表导入服务

流程：
1. 通过驱动发现数据源中的表，并标记哪些已经导入（isImported）
2. 用户选择表（可选择部分字段），提交导入
3. 表按 (environment_id, schema_name, table_name) upsert，字段按 (table_id, column_name) upsert
4. 删除表时在同一事务中删除关系、字段、表，并重置连接配置的关系推断摘要

重复导入只更新已有记录，每个自然键始终只有一行。
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.exceptions import NotFoundError
from portal.infra.drivers import DescribeResult, DiscoveredColumn, DiscoveryResult
from portal.models import (
    DataAgentEnvironment,
    DataAgentRelation,
    DataAgentTable,
    DataAgentTableColumn,
)
from portal.models.mixins import new_id
from portal.schemas.table import (
    AvailableColumnsResponse,
    ColumnResponse,
    ColumnUpdate,
    DiscoveredColumnItem,
    DiscoveredTableItem,
    DiscoveryResponse,
    TableImportResponse,
    TableResponse,
    TableSelection,
    TableUpdate,
)

logger = logging.getLogger(__name__)

# 获取字段元数据的回调：(schema_name, table_name) -> DescribeResult
DescribeFn = Callable[[str, str], Awaitable[DescribeResult]]

COLUMN_METADATA_FIELDS = (
    "data_type",
    "is_nullable",
    "is_primary_key",
    "is_foreign_key",
    "referenced_table",
    "referenced_column",
    "default_value",
    "comment",
    "ordinal_position",
)


# ==================== 查询 ====================

async def get_table(db: AsyncSession, table_id: str) -> DataAgentTable:
    table = await db.get(DataAgentTable, table_id)
    if table is None:
        raise NotFoundError("TABLE_NOT_FOUND", "Table not found")
    return table


async def list_table_columns(db: AsyncSession, table_id: str) -> list[DataAgentTableColumn]:
    result = await db.execute(
        select(DataAgentTableColumn)
        .where(DataAgentTableColumn.table_id == table_id)
        .order_by(DataAgentTableColumn.ordinal_position, DataAgentTableColumn.column_name)
    )
    return list(result.scalars().all())


async def build_table_response(db: AsyncSession, table: DataAgentTable) -> TableResponse:
    columns = await list_table_columns(db, table.id)
    response = TableResponse.model_validate(table)
    response.columns = [ColumnResponse.model_validate(c) for c in columns]
    return response


async def list_tables(db: AsyncSession, environment_id: str) -> list[TableResponse]:
    """列出连接配置下已导入的表（包含字段）"""
    result = await db.execute(
        select(DataAgentTable)
        .where(DataAgentTable.environment_id == environment_id)
        .order_by(DataAgentTable.schema_name, DataAgentTable.table_name)
    )
    return [await build_table_response(db, t) for t in result.scalars().all()]


async def _imported_keys(db: AsyncSession, environment_id: str) -> set[tuple[str, str]]:
    result = await db.execute(
        select(DataAgentTable.schema_name, DataAgentTable.table_name)
        .where(DataAgentTable.environment_id == environment_id)
    )
    return {(row.schema_name, row.table_name) for row in result}


async def _find_table(
    db: AsyncSession, environment_id: str, schema_name: str, table_name: str
) -> DataAgentTable | None:
    result = await db.execute(
        select(DataAgentTable).where(
            DataAgentTable.environment_id == environment_id,
            DataAgentTable.schema_name == schema_name,
            DataAgentTable.table_name == table_name,
        )
    )
    return result.scalar_one_or_none()


# ==================== 可导入的表和字段 ====================

async def list_available_tables(
    db: AsyncSession,
    environment: DataAgentEnvironment,
    discovery: DiscoveryResult,
) -> DiscoveryResponse:
    """把发现结果标记上 isImported"""
    if not discovery.success:
        return DiscoveryResponse(success=False, error=discovery.error)

    imported = await _imported_keys(db, environment.id)
    tables = [
        DiscoveredTableItem(
            **t.to_dict(),
            is_imported=(t.schema_name, t.table_name) in imported,
        )
        for t in discovery.tables or []
    ]
    return DiscoveryResponse(success=True, tables=tables)


async def list_available_columns(
    db: AsyncSession,
    environment: DataAgentEnvironment,
    schema_name: str,
    table_name: str,
    described: DescribeResult,
) -> AvailableColumnsResponse:
    """把字段发现结果标记上 isImported"""
    if not described.success:
        return AvailableColumnsResponse(success=False, error=described.error)

    imported_columns: set[str] = set()
    table = await _find_table(db, environment.id, schema_name, table_name)
    if table is not None:
        imported_columns = {c.column_name for c in await list_table_columns(db, table.id)}

    columns = [
        DiscoveredColumnItem(**c.to_dict(), is_imported=c.column_name in imported_columns)
        for c in described.columns or []
    ]
    return AvailableColumnsResponse(success=True, columns=columns)


# ==================== 导入 ====================

async def _resolve_columns(
    selection: TableSelection,
    describe: DescribeFn | None,
) -> list[DiscoveredColumn]:
    """
    确定要导入的字段元数据

    优先使用驱动返回的字段；驱动不可用时使用请求中提供的 columnDetails，
    仍然没有时只按字段名创建。
    """
    columns: list[DiscoveredColumn] = []
    if describe is not None:
        described = await describe(selection.schema_name, selection.table_name)
        if described.success:
            columns = list(described.columns or [])
        else:
            logger.warning(
                f"获取字段失败，使用请求中的字段信息: "
                f"{selection.schema_name}.{selection.table_name}: {described.error}"
            )

    if not columns and selection.column_details:
        columns = [
            DiscoveredColumn(**c.model_dump(exclude={"is_imported"}))
            for c in selection.column_details
        ]

    if selection.columns is not None:
        wanted = set(selection.columns)
        known = {c.column_name for c in columns}
        columns = [c for c in columns if c.column_name in wanted]
        columns.extend(
            DiscoveredColumn(column_name=name)
            for name in selection.columns
            if name not in known
        )

    return columns


async def _upsert_columns(
    db: AsyncSession,
    table: DataAgentTable,
    columns: list[DiscoveredColumn],
    is_new_table: bool,
) -> None:
    existing: dict[str, DataAgentTableColumn] = {}
    if not is_new_table:
        existing = {c.column_name: c for c in await list_table_columns(db, table.id)}

    for position, column in enumerate(columns, start=1):
        values: dict[str, Any] = {
            name: getattr(column, name) for name in COLUMN_METADATA_FIELDS
        }
        if values["ordinal_position"] is None:
            values["ordinal_position"] = position

        record = existing.get(column.column_name)
        if record is None:
            record = DataAgentTableColumn(
                id=new_id(),
                table_id=table.id,
                column_name=column.column_name,
                **values,
            )
            db.add(record)
            existing[column.column_name] = record
        else:
            for name, value in values.items():
                # 重新导入时不用空值覆盖已有的描述信息
                if value is None and name in ("comment", "default_value", "data_type"):
                    continue
                setattr(record, name, value)


async def import_tables(
    db: AsyncSession,
    environment: DataAgentEnvironment,
    selections: list[TableSelection],
    describe: DescribeFn | None = None,
) -> TableImportResponse:
    """
    导入选择的表

    Args:
        db: 数据库会话
        environment: 数据代理连接配置
        selections: 待导入的表
        describe: 获取字段元数据的回调，为 None 时只使用请求中的字段信息

    Returns:
        TableImportResponse: 导入的表名、新增/更新数量和导入后的表
    """
    created = 0
    updated = 0
    imported: list[str] = []
    tables: list[DataAgentTable] = []

    for selection in selections:
        columns = await _resolve_columns(selection, describe)

        table = await _find_table(
            db, environment.id, selection.schema_name, selection.table_name
        )
        is_new = table is None
        if table is None:
            table = DataAgentTable(
                id=new_id(),
                environment_id=environment.id,
                schema_name=selection.schema_name,
                table_name=selection.table_name,
            )
            db.add(table)
            created += 1
        else:
            updated += 1

        if selection.table_type is not None:
            table.table_type = selection.table_type
        if selection.comment is not None and not table.description:
            table.description = selection.comment
        if selection.estimated_rows is not None:
            table.row_count = selection.estimated_rows

        await _upsert_columns(db, table, columns, is_new)
        imported.append(f"{selection.schema_name}.{selection.table_name}")
        tables.append(table)

    await db.commit()

    logger.info(
        f"连接配置 {environment.id} 导入 {len(imported)} 张表: 新增 {created}, 更新 {updated}"
    )

    responses = []
    for table in tables:
        await db.refresh(table)
        responses.append(await build_table_response(db, table))

    return TableImportResponse(
        imported=imported,
        created=created,
        updated=updated,
        tables=responses,
    )


# ==================== 编辑与删除 ====================

async def update_table(db: AsyncSession, table_id: str, data: TableUpdate) -> TableResponse:
    table = await get_table(db, table_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(table, field, value)
    await db.commit()
    await db.refresh(table)
    return await build_table_response(db, table)


async def update_column(db: AsyncSession, column_id: str, data: ColumnUpdate) -> ColumnResponse:
    column = await db.get(DataAgentTableColumn, column_id)
    if column is None:
        raise NotFoundError("COLUMN_NOT_FOUND", "Column not found")

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(column, field, value)
    await db.commit()
    await db.refresh(column)
    return ColumnResponse.model_validate(column)


async def delete_table(db: AsyncSession, table_id: str) -> None:
    """
    删除已导入的表

    同一事务中依次删除：引用该表的关系、字段、表本身，
    然后清空连接配置的关系推断摘要（摘要中可能包含该表）。
    """
    table = await get_table(db, table_id)
    environment_id = table.environment_id

    await db.execute(
        delete(DataAgentRelation).where(
            or_(
                DataAgentRelation.source_table_id == table.id,
                DataAgentRelation.target_table_id == table.id,
            )
        )
    )
    await db.execute(
        delete(DataAgentTableColumn).where(DataAgentTableColumn.table_id == table.id)
    )
    await db.delete(table)

    environment = await db.get(DataAgentEnvironment, environment_id)
    if environment is not None:
        environment.relationship_analysis = None
        environment.analyzed_at = None

    await db.commit()
    logger.info(f"删除表 {table.schema_name}.{table.table_name} (environment={environment_id})")


async def delete_environment_tables(db: AsyncSession, environment_id: str) -> None:
    """删除连接配置下的全部关系、字段和表（不提交事务）"""
    table_ids = select(DataAgentTable.id).where(DataAgentTable.environment_id == environment_id)
    await db.execute(
        delete(DataAgentRelation).where(DataAgentRelation.environment_id == environment_id)
    )
    await db.execute(
        delete(DataAgentTableColumn).where(DataAgentTableColumn.table_id.in_(table_ids))
    )
    await db.execute(
        delete(DataAgentTable).where(DataAgentTable.environment_id == environment_id)
    )
