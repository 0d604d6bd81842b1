"""
表结构 AI 分析

状态流转：PENDING / COMPLETED / FAILED → ANALYZING → COMPLETED 或 FAILED

在请求内同步执行。成功时保存表摘要，并把每个字段的说明写入 ai_description；
失败时保存错误信息，不抛出异常。
"""

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from portal.exceptions import LLMError
from portal.infra.llm import chat_completion, parse_json_response
from portal.models.data_agent import (
    ANALYSIS_ANALYZING,
    ANALYSIS_COMPLETED,
    ANALYSIS_FAILED,
)
from portal.schemas.table import TableResponse
from portal.services.table_import import build_table_response, get_table, list_table_columns

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """你是数据分析专家，根据表结构说明这张表的业务含义。
只输出 JSON 对象，格式：
{"summary": "表的用途（一到两句话）", "columns": {"字段名": "字段含义（一句话）"}}"""


async def analyze_table(
    db: AsyncSession,
    table_id: str,
    completion: Callable[..., Awaitable[str]] = chat_completion,
) -> TableResponse:
    """使用 LLM 分析表结构，返回更新后的表"""
    table = await get_table(db, table_id)
    columns = await list_table_columns(db, table.id)

    table.analysis_status = ANALYSIS_ANALYZING
    await db.commit()

    schema = {
        "table": f"{table.schema_name}.{table.table_name}",
        "type": table.table_type,
        "rowCount": table.row_count,
        "description": table.description,
        "columns": [
            {
                "name": c.column_name,
                "type": c.data_type,
                "nullable": c.is_nullable,
                "primaryKey": c.is_primary_key,
                "foreignKey": c.is_foreign_key,
                "comment": c.comment,
                "sampleValues": c.sample_values,
            }
            for c in columns
        ],
    }

    try:
        content = await completion(
            prompt="表结构如下：\n" + json.dumps(schema, ensure_ascii=False, indent=2),
            system_prompt=SYSTEM_PROMPT,
            temperature=0.2,
            json_mode=True,
        )
        result = parse_json_response(content)
        if not isinstance(result, dict):
            raise LLMError("LLM response is not an object")
    except LLMError as e:
        logger.warning(f"表分析失败 {table.schema_name}.{table.table_name}: {e}")
        table.analysis_status = ANALYSIS_FAILED
        table.analysis_result = {"error": str(e)}
        table.analyzed_at = datetime.now(timezone.utc)
        await db.commit()
        await db.refresh(table)
        return await build_table_response(db, table)

    descriptions = result.get("columns") or {}
    if isinstance(descriptions, dict):
        for column in columns:
            description = descriptions.get(column.column_name)
            if description:
                column.ai_description = str(description)

    table.analysis_status = ANALYSIS_COMPLETED
    table.analysis_result = result
    table.analyzed_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(table)

    logger.info(f"表分析完成: {table.schema_name}.{table.table_name}")
    return await build_table_response(db, table)
