"""
表关联关系编辑接口

任何编辑都会把关系标记为已验证；/verify 用于手动切换验证状态。
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_admin_user, get_db_session
from portal.schemas.relationship import RelationshipResponse, RelationshipUpdate, RelationshipVerify
from portal.services import relationships as relationship_service

router = APIRouter(
    prefix="/admin/data-agents/relationships",
    tags=["data-agents"],
    dependencies=[Depends(get_admin_user)],
)


@router.patch("/{relationship_id}", response_model=RelationshipResponse)
async def update_relationship(
    relationship_id: str,
    data: RelationshipUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> RelationshipResponse:
    return await relationship_service.update_relationship(db, relationship_id, data)


@router.post("/{relationship_id}/verify", response_model=RelationshipResponse)
async def verify_relationship(
    relationship_id: str,
    data: RelationshipVerify,
    db: AsyncSession = Depends(get_db_session),
) -> RelationshipResponse:
    return await relationship_service.set_verified(db, relationship_id, data.is_verified)


@router.delete("/{relationship_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_relationship(
    relationship_id: str,
    db: AsyncSession = Depends(get_db_session),
):
    await relationship_service.delete_relationship(db, relationship_id)
