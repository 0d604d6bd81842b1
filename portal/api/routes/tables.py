"""
已导入的表和字段接口

    /admin/data-agents/tables/{id}            表详情、编辑、删除
    /admin/data-agents/tables/{id}/analyze    AI 分析表结构
    /admin/data-agents/columns/{id}           编辑字段
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_admin_user, get_db_session
from portal.schemas.table import ColumnResponse, ColumnUpdate, TableResponse, TableUpdate
from portal.services import table_analysis, table_import

router = APIRouter(
    prefix="/admin/data-agents",
    tags=["data-agents"],
    dependencies=[Depends(get_admin_user)],
)


@router.get("/tables/{table_id}", response_model=TableResponse)
async def get_table(
    table_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> TableResponse:
    table = await table_import.get_table(db, table_id)
    return await table_import.build_table_response(db, table)


@router.patch("/tables/{table_id}", response_model=TableResponse)
async def update_table(
    table_id: str,
    data: TableUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> TableResponse:
    return await table_import.update_table(db, table_id, data)


@router.delete("/tables/{table_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_table(
    table_id: str,
    db: AsyncSession = Depends(get_db_session),
):
    """删除表及其字段和相关关系，并重置关系推断摘要"""
    await table_import.delete_table(db, table_id)


@router.post("/tables/{table_id}/analyze", response_model=TableResponse)
async def analyze_table(
    table_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> TableResponse:
    """使用 LLM 分析表结构，失败时 analysisStatus=FAILED"""
    return await table_analysis.analyze_table(db, table_id)


@router.patch("/columns/{column_id}", response_model=ColumnResponse)
async def update_column(
    column_id: str,
    data: ColumnUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> ColumnResponse:
    return await table_import.update_column(db, column_id, data)
