"""
表关联关系推断与验证

关系推断只在用户显式触发时运行，结果写入 data_agent_relations：
- 已验证（is_verified=True）的关系永远不会被推断结果修改
- 未验证的已有关系刷新类型、置信度和描述
- 新关系以 is_verified=False 创建

任何人工编辑（创建、修改）都会把关系标记为已验证；confidence 只是推断时的参考分数。

推断器：
- heuristic: 基于外键声明和命名规则的确定性推断（默认）
- llm: 把表结构交给 LLM 推断
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import get_settings
from portal.exceptions import (
    BadRequestError,
    ConflictError,
    LLMError,
    NotFoundError,
    RelationshipAnalysisError,
)
from portal.infra.llm import chat_completion, parse_json_response
from portal.models import (
    DataAgentEnvironment,
    DataAgentRelation,
    DataAgentTable,
    DataAgentTableColumn,
)
from portal.models.data_agent import RELATIONSHIP_TYPES
from portal.schemas.relationship import (
    RelationshipAnalysisResponse,
    RelationshipCreate,
    RelationshipResponse,
    RelationshipUpdate,
)

logger = logging.getLogger(__name__)

# 同名主键规则中不参与匹配的通用字段名
GENERIC_COLUMNS = frozenset({
    "id",
    "uuid",
    "name",
    "code",
    "type",
    "status",
    "created_at",
    "updated_at",
    "deleted_at",
    "createdat",
    "updatedat",
})


@dataclass
class TableSchema:
    """推断器的输入：一张已导入的表及其字段"""
    table: DataAgentTable
    columns: list[DataAgentTableColumn] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.table.table_name

    @property
    def qualified_name(self) -> str:
        return f"{self.table.schema_name}.{self.table.table_name}"

    @property
    def primary_keys(self) -> list[DataAgentTableColumn]:
        return [c for c in self.columns if c.is_primary_key]

    def column(self, name: str) -> DataAgentTableColumn | None:
        for c in self.columns:
            if c.column_name == name:
                return c
        lowered = name.lower()
        for c in self.columns:
            if c.column_name.lower() == lowered:
                return c
        return None


@dataclass
class RelationshipCandidate:
    """推断出的候选关系，表名可以是 table 或 schema.table"""
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    relationship_type: str = "many_to_one"
    confidence: float = 0.0
    description: str | None = None
    example: str | None = None


def relationship_type_for(source: TableSchema, column: DataAgentTableColumn) -> str:
    """源字段本身是（非复合）主键时为一对一，否则为多对一"""
    if column.is_primary_key and len(source.primary_keys) == 1:
        return "one_to_one"
    return "many_to_one"


# ==================== 推断器 ====================

class BaseRelationshipAnalyzer(ABC):
    """关系推断器基类"""

    name: str = "base"

    @abstractmethod
    async def analyze(self, tables: list[TableSchema]) -> list[RelationshipCandidate]:
        """返回候选关系列表"""


class HeuristicRelationshipAnalyzer(BaseRelationshipAnalyzer):
    """
    基于规则的关系推断

    规则（按置信度从高到低）：
    1. 声明的外键：1.0
    2. <table>_id / <table>Id 命名且指向目标表主键：0.8
    3. 与目标表单一主键同名的非通用字段：0.6
    """

    name = "heuristic"

    def __init__(self, min_confidence: float | None = None):
        if min_confidence is None:
            min_confidence = get_settings().relationship_min_confidence
        self.min_confidence = min_confidence

    @staticmethod
    def _find_table(tables: list[TableSchema], reference: str) -> TableSchema | None:
        reference = reference.strip().strip('"`[]')
        for t in tables:
            if t.qualified_name == reference:
                return t
        bare = reference.rsplit(".", 1)[-1].lower()
        for t in tables:
            if t.name.lower() == bare:
                return t
        return None

    @staticmethod
    def _naming_base(column_name: str) -> str | None:
        lowered = column_name.lower()
        if lowered.endswith("_id") and len(lowered) > 3:
            return lowered[:-3]
        if column_name.endswith("Id") and len(column_name) > 2:
            return column_name[:-2].lower()
        return None

    @staticmethod
    def _matches_table(base: str, table_name: str) -> bool:
        name = table_name.lower()
        candidates = {base, f"{base}s", f"{base}es"}
        if base.endswith("y"):
            candidates.add(f"{base[:-1]}ies")
        return name in candidates

    def _candidate(
        self,
        source: TableSchema,
        column: DataAgentTableColumn,
        target: TableSchema,
        target_column: str,
        confidence: float,
        description: str,
    ) -> RelationshipCandidate:
        return RelationshipCandidate(
            source_table=source.qualified_name,
            source_column=column.column_name,
            target_table=target.qualified_name,
            target_column=target_column,
            relationship_type=relationship_type_for(source, column),
            confidence=confidence,
            description=description,
        )

    def _analyze_column(
        self,
        tables: list[TableSchema],
        source: TableSchema,
        column: DataAgentTableColumn,
    ) -> RelationshipCandidate | None:
        # 规则 1：声明的外键
        if column.is_foreign_key and column.referenced_table:
            target = self._find_table(tables, column.referenced_table)
            if target is not None:
                target_column = column.referenced_column
                if not target_column and len(target.primary_keys) == 1:
                    target_column = target.primary_keys[0].column_name
                if target_column and target.column(target_column) is not None:
                    return self._candidate(
                        source, column, target, target.column(target_column).column_name, 1.0,
                        f"Declared foreign key {source.name}.{column.column_name} -> "
                        f"{target.name}.{target_column}",
                    )

        # 规则 2：<table>_id 命名
        base = self._naming_base(column.column_name)
        if base:
            for target in tables:
                if target is source or not self._matches_table(base, target.name):
                    continue
                pks = target.primary_keys
                if len(pks) == 1:
                    return self._candidate(
                        source, column, target, pks[0].column_name, 0.8,
                        f"Column {column.column_name} follows the <table>_id naming of {target.name}",
                    )

        # 规则 3：与目标表主键同名
        lowered = column.column_name.lower()
        if lowered in GENERIC_COLUMNS:
            return None
        if column.is_primary_key and len(source.primary_keys) == 1:
            # 自身的主键，避免两张表互相指向
            return None
        for target in tables:
            if target is source:
                continue
            pks = target.primary_keys
            if len(pks) == 1 and pks[0].column_name.lower() == lowered:
                return self._candidate(
                    source, column, target, pks[0].column_name, 0.6,
                    f"Column {column.column_name} matches the primary key of {target.name}",
                )
        return None

    async def analyze(self, tables: list[TableSchema]) -> list[RelationshipCandidate]:
        candidates = []
        for source in tables:
            for column in source.columns:
                candidate = self._analyze_column(tables, source, column)
                if candidate and candidate.confidence >= self.min_confidence:
                    candidates.append(candidate)
        return candidates


SYSTEM_PROMPT = """你是数据库建模专家，根据表结构推断表之间的关联关系。
只输出 JSON 对象 {"relationships": [...]}，不要输出其他内容。数组元素格式：
{"sourceTable": "schema.table", "sourceColumn": "...", "targetTable": "schema.table",
 "targetColumn": "...", "relationshipType": "many_to_one",
 "confidence": 0.0-1.0, "description": "...", "example": "..."}
relationshipType 只能是 one_to_one / one_to_many / many_to_one / many_to_many。"""


def normalize_relationship_type(value: Any) -> str:
    """ONE_TO_MANY、one-to-many 统一为 one_to_many；无法识别时按 many_to_one 处理"""
    text = str(value or "").strip().lower().replace("-", "_")
    return text if text in RELATIONSHIP_TYPES else "many_to_one"


def _as_text(value: Any) -> str | None:
    # 模型偶尔在文本字段里返回对象或数字
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


class LLMRelationshipAnalyzer(BaseRelationshipAnalyzer):
    """使用 LLM 推断关系"""

    name = "llm"

    def __init__(
        self,
        completion: Callable[..., Awaitable[str]] = chat_completion,
        min_confidence: float | None = None,
    ):
        self.completion = completion
        if min_confidence is None:
            min_confidence = get_settings().relationship_min_confidence
        self.min_confidence = min_confidence

    @staticmethod
    def build_prompt(tables: list[TableSchema]) -> str:
        schema = []
        for t in tables:
            schema.append({
                "table": t.qualified_name,
                "description": t.table.description,
                "columns": [
                    {
                        "name": c.column_name,
                        "type": c.data_type,
                        "primaryKey": c.is_primary_key,
                        "foreignKey": c.is_foreign_key,
                        "references": (
                            f"{c.referenced_table}.{c.referenced_column}"
                            if c.referenced_table else None
                        ),
                        "comment": c.comment,
                    }
                    for c in t.columns
                ],
            })
        return "表结构如下：\n" + json.dumps(schema, ensure_ascii=False, indent=2)

    async def analyze(self, tables: list[TableSchema]) -> list[RelationshipCandidate]:
        try:
            content = await self.completion(
                prompt=self.build_prompt(tables),
                system_prompt=SYSTEM_PROMPT,
                temperature=0.1,
                json_mode=True,
            )
            data = parse_json_response(content)
        except LLMError as e:
            raise RelationshipAnalysisError(str(e)) from e

        if isinstance(data, dict):
            data = data.get("relationships")
        if not isinstance(data, list):
            raise RelationshipAnalysisError("LLM response is not a list of relationships")

        candidates = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                candidate = RelationshipCandidate(
                    source_table=str(item["sourceTable"]),
                    source_column=str(item["sourceColumn"]),
                    target_table=str(item["targetTable"]),
                    target_column=str(item["targetColumn"]),
                    relationship_type=normalize_relationship_type(item.get("relationshipType")),
                    confidence=float(item.get("confidence", 0.5)),
                    description=_as_text(item.get("description")),
                    example=_as_text(item.get("example")),
                )
            except (KeyError, TypeError, ValueError):
                logger.debug(f"忽略格式错误的候选关系: {item}")
                continue
            if candidate.confidence >= self.min_confidence:
                candidates.append(candidate)
        return candidates


ANALYZERS: dict[str, type[BaseRelationshipAnalyzer]] = {
    HeuristicRelationshipAnalyzer.name: HeuristicRelationshipAnalyzer,
    LLMRelationshipAnalyzer.name: LLMRelationshipAnalyzer,
}


def get_analyzer(name: str | None = None) -> BaseRelationshipAnalyzer:
    """按名称创建推断器，默认使用配置中的 relationship_analyzer"""
    name = (name or get_settings().relationship_analyzer).lower()
    analyzer_cls = ANALYZERS.get(name)
    if analyzer_cls is None:
        raise BadRequestError("UNKNOWN_ANALYZER", f"Unknown relationship analyzer: {name}")
    return analyzer_cls()


# ==================== 数据访问 ====================

async def _get_environment(db: AsyncSession, environment_id: str) -> DataAgentEnvironment:
    environment = await db.get(DataAgentEnvironment, environment_id)
    if environment is None:
        raise NotFoundError("DATA_AGENT_ENVIRONMENT_NOT_FOUND", "Data agent environment not found")
    return environment


async def load_table_schemas(db: AsyncSession, environment_id: str) -> list[TableSchema]:
    tables_result = await db.execute(
        select(DataAgentTable)
        .where(DataAgentTable.environment_id == environment_id)
        .order_by(DataAgentTable.schema_name, DataAgentTable.table_name)
    )
    tables = list(tables_result.scalars().all())
    if not tables:
        return []

    columns_result = await db.execute(
        select(DataAgentTableColumn)
        .where(DataAgentTableColumn.table_id.in_([t.id for t in tables]))
        .order_by(DataAgentTableColumn.ordinal_position, DataAgentTableColumn.column_name)
    )
    by_table: dict[str, list[DataAgentTableColumn]] = {t.id: [] for t in tables}
    for column in columns_result.scalars().all():
        by_table[column.table_id].append(column)

    return [TableSchema(table=t, columns=by_table[t.id]) for t in tables]


async def _table_names(db: AsyncSession, table_ids: set[str]) -> dict[str, str]:
    if not table_ids:
        return {}
    result = await db.execute(
        select(DataAgentTable.id, DataAgentTable.table_name)
        .where(DataAgentTable.id.in_(table_ids))
    )
    return {row.id: row.table_name for row in result}


def _to_response(relation: DataAgentRelation, names: dict[str, str]) -> RelationshipResponse:
    response = RelationshipResponse.model_validate(relation)
    response.source_table_name = names.get(relation.source_table_id)
    response.target_table_name = names.get(relation.target_table_id)
    return response


async def _respond(db: AsyncSession, relation: DataAgentRelation) -> RelationshipResponse:
    names = await _table_names(db, {relation.source_table_id, relation.target_table_id})
    return _to_response(relation, names)


async def get_relationship(db: AsyncSession, relationship_id: str) -> DataAgentRelation:
    relation = await db.get(DataAgentRelation, relationship_id)
    if relation is None:
        raise NotFoundError("RELATIONSHIP_NOT_FOUND", "Relationship not found")
    return relation


async def list_relationships(db: AsyncSession, environment_id: str) -> list[RelationshipResponse]:
    """列出连接配置下的关系（附带源表和目标表名）"""
    result = await db.execute(
        select(DataAgentRelation)
        .where(DataAgentRelation.environment_id == environment_id)
        .order_by(DataAgentRelation.created_at)
    )
    relations = list(result.scalars().all())
    table_ids = {r.source_table_id for r in relations} | {r.target_table_id for r in relations}
    names = await _table_names(db, table_ids)
    return [_to_response(r, names) for r in relations]


async def _find_relation(
    db: AsyncSession,
    source_table_id: str,
    source_column: str,
    target_table_id: str,
    target_column: str,
) -> DataAgentRelation | None:
    result = await db.execute(
        select(DataAgentRelation).where(
            DataAgentRelation.source_table_id == source_table_id,
            DataAgentRelation.source_column == source_column,
            DataAgentRelation.target_table_id == target_table_id,
            DataAgentRelation.target_column == target_column,
        )
    )
    return result.scalar_one_or_none()


# ==================== 推断 ====================

def _resolve_candidate(
    candidate: RelationshipCandidate,
    tables: list[TableSchema],
) -> tuple[TableSchema, str, TableSchema, str] | None:
    """把候选关系中的表名、字段名解析为已导入的表和字段，无法解析时返回 None"""
    source = HeuristicRelationshipAnalyzer._find_table(tables, candidate.source_table)
    target = HeuristicRelationshipAnalyzer._find_table(tables, candidate.target_table)
    if source is None or target is None:
        return None

    source_column = source.column(candidate.source_column)
    target_column = target.column(candidate.target_column)
    if source_column is None or target_column is None:
        return None
    if source is target and source_column is target_column:
        return None
    return source, source_column.column_name, target, target_column.column_name


async def analyze_relationships(
    db: AsyncSession,
    environment_id: str,
    analyzer: BaseRelationshipAnalyzer | None = None,
) -> RelationshipAnalysisResponse:
    """
    推断连接配置下已导入表之间的关系

    Raises:
        NotFoundError: 连接配置不存在
        BadRequestError: 已导入的表少于 2 张
        RelationshipAnalysisError: 推断器返回无效结果
    """
    environment = await _get_environment(db, environment_id)
    tables = await load_table_schemas(db, environment.id)
    if len(tables) < 2:
        raise BadRequestError(
            "NOT_ENOUGH_TABLES", "Need at least 2 tables to analyze relationships"
        )

    analyzer = analyzer or get_analyzer()
    candidates = await analyzer.analyze(tables)

    created = 0
    updated = 0
    skipped_verified = 0
    rejected = 0
    seen: set[tuple[str, str, str, str]] = set()

    for candidate in candidates:
        resolved = _resolve_candidate(candidate, tables)
        if resolved is None:
            rejected += 1
            logger.debug(
                f"丢弃无法解析的候选关系: {candidate.source_table}.{candidate.source_column} -> "
                f"{candidate.target_table}.{candidate.target_column}"
            )
            continue

        source, source_column, target, target_column = resolved
        key = (source.table.id, source_column, target.table.id, target_column)
        if key in seen:
            continue
        seen.add(key)

        relationship_type = normalize_relationship_type(candidate.relationship_type)
        confidence = min(max(candidate.confidence, 0.0), 1.0)

        existing = await _find_relation(db, *key)
        if existing is not None and existing.is_verified:
            skipped_verified += 1
            continue

        if existing is not None:
            existing.relationship_type = relationship_type
            existing.confidence = confidence
            if candidate.description is not None:
                existing.description = candidate.description
            if candidate.example is not None:
                existing.example = candidate.example
            updated += 1
        else:
            db.add(
                DataAgentRelation(
                    environment_id=environment.id,
                    source_table_id=source.table.id,
                    source_column=source_column,
                    target_table_id=target.table.id,
                    target_column=target_column,
                    relationship_type=relationship_type,
                    confidence=confidence,
                    is_verified=False,
                    description=candidate.description,
                    example=candidate.example,
                )
            )
            created += 1

    now = datetime.now(timezone.utc)
    environment.relationship_analysis = {
        "analyzer": analyzer.name,
        "tableCount": len(tables),
        "proposed": len(candidates),
        "created": created,
        "updated": updated,
        "skippedVerified": skipped_verified,
        "rejected": rejected,
        "analyzedAt": now.isoformat(),
    }
    environment.analyzed_at = now
    await db.commit()

    logger.info(
        f"关系推断完成 (environment={environment.id}, analyzer={analyzer.name}): "
        f"候选 {len(candidates)}, 新增 {created}, 更新 {updated}, "
        f"跳过已验证 {skipped_verified}, 丢弃 {rejected}"
    )

    return RelationshipAnalysisResponse(
        success=True,
        analyzer=analyzer.name,
        table_count=len(tables),
        proposed=len(candidates),
        created=created,
        updated=updated,
        skipped_verified=skipped_verified,
        rejected=rejected,
        relationships=await list_relationships(db, environment.id),
    )


# ==================== 人工编辑 ====================

async def _validate_endpoint(
    db: AsyncSession,
    environment_id: str,
    table_id: str,
    column_name: str,
) -> str:
    """校验表属于该连接配置且字段已导入，返回规范化的字段名"""
    table = await db.get(DataAgentTable, table_id)
    if table is None or table.environment_id != environment_id:
        raise NotFoundError("TABLE_NOT_FOUND", "Table not found")

    schema = TableSchema(table=table, columns=await _columns(db, table.id))
    column = schema.column(column_name)
    if column is None:
        raise NotFoundError(
            "COLUMN_NOT_FOUND", f"Column {column_name} not found in table {table.table_name}"
        )
    return column.column_name


async def _columns(db: AsyncSession, table_id: str) -> list[DataAgentTableColumn]:
    result = await db.execute(
        select(DataAgentTableColumn).where(DataAgentTableColumn.table_id == table_id)
    )
    return list(result.scalars().all())


async def create_relationship(
    db: AsyncSession,
    environment_id: str,
    data: RelationshipCreate,
) -> RelationshipResponse:
    """人工创建关系：已验证，置信度 1.0"""
    environment = await _get_environment(db, environment_id)
    source_column = await _validate_endpoint(
        db, environment.id, data.source_table_id, data.source_column
    )
    target_column = await _validate_endpoint(
        db, environment.id, data.target_table_id, data.target_column
    )

    if await _find_relation(
        db, data.source_table_id, source_column, data.target_table_id, target_column
    ):
        raise ConflictError("RELATIONSHIP_EXISTS", "Relationship already exists")

    relation = DataAgentRelation(
        environment_id=environment.id,
        source_table_id=data.source_table_id,
        source_column=source_column,
        target_table_id=data.target_table_id,
        target_column=target_column,
        relationship_type=data.relationship_type,
        confidence=1.0,
        is_verified=True,
        description=data.description,
        example=data.example,
    )
    db.add(relation)
    await db.commit()
    await db.refresh(relation)
    return await _respond(db, relation)


async def update_relationship(
    db: AsyncSession,
    relationship_id: str,
    data: RelationshipUpdate,
) -> RelationshipResponse:
    """编辑关系，编辑后一律标记为已验证"""
    relation = await get_relationship(db, relationship_id)
    changes: dict[str, Any] = {
        key: value
        for key, value in data.model_dump(exclude_unset=True).items()
        if value is not None or key in ("description", "example")
    }

    if "source_column" in changes:
        changes["source_column"] = await _validate_endpoint(
            db, relation.environment_id, relation.source_table_id, changes["source_column"]
        )
    if "target_column" in changes:
        changes["target_column"] = await _validate_endpoint(
            db, relation.environment_id, relation.target_table_id, changes["target_column"]
        )

    if "source_column" in changes or "target_column" in changes:
        duplicate = await _find_relation(
            db,
            relation.source_table_id,
            changes.get("source_column", relation.source_column),
            relation.target_table_id,
            changes.get("target_column", relation.target_column),
        )
        if duplicate is not None and duplicate.id != relation.id:
            raise ConflictError("RELATIONSHIP_EXISTS", "Relationship already exists")

    for field_name, value in changes.items():
        setattr(relation, field_name, value)
    relation.is_verified = True

    await db.commit()
    await db.refresh(relation)
    return await _respond(db, relation)


async def set_verified(
    db: AsyncSession,
    relationship_id: str,
    is_verified: bool,
) -> RelationshipResponse:
    """手动切换验证状态，不修改置信度"""
    relation = await get_relationship(db, relationship_id)
    relation.is_verified = is_verified
    await db.commit()
    await db.refresh(relation)
    return await _respond(db, relation)


async def delete_relationship(db: AsyncSession, relationship_id: str) -> None:
    relation = await get_relationship(db, relationship_id)
    await db.delete(relation)
    await db.commit()
