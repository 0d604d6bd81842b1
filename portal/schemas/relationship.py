"""
表关联关系 Schemas
"""

from datetime import datetime
from typing import Literal

from pydantic import Field

from portal.schemas.common import CamelModel

RelationshipType = Literal["one_to_one", "one_to_many", "many_to_one", "many_to_many"]


class RelationshipCreate(CamelModel):
    """人工创建关系，创建即视为已验证"""
    source_table_id: str
    target_table_id: str
    source_column: str = Field(..., min_length=1)
    target_column: str = Field(..., min_length=1)
    relationship_type: RelationshipType = "many_to_one"
    description: str | None = None
    example: str | None = None


class RelationshipUpdate(CamelModel):
    """编辑关系：任何编辑都会把 isVerified 置为 True"""
    source_column: str | None = Field(None, min_length=1)
    target_column: str | None = Field(None, min_length=1)
    relationship_type: RelationshipType | None = None
    description: str | None = None
    example: str | None = None


class RelationshipVerify(CamelModel):
    is_verified: bool


class RelationshipResponse(CamelModel):
    id: str
    environment_id: str
    source_table_id: str
    target_table_id: str
    source_table_name: str | None = None
    target_table_name: str | None = None
    source_column: str
    target_column: str
    relationship_type: str
    confidence: float
    is_verified: bool
    description: str | None
    example: str | None
    created_at: datetime
    updated_at: datetime


class RelationshipAnalysisResponse(CamelModel):
    """关系推断结果"""
    success: bool
    analyzer: str
    table_count: int
    proposed: int
    created: int
    updated: int
    skipped_verified: int
    rejected: int
    relationships: list[RelationshipResponse]
