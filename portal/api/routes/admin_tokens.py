"""
管理员 Token 接口

签发、查看、撤销、删除管理员 Token。
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import AdminIdentity, get_admin_user, get_db_session
from portal.schemas.admin_token import (
    AdminTokenCreate,
    AdminTokenCreateResponse,
    AdminTokenListResponse,
    AdminTokenResponse,
)
from portal.services import admin_tokens as service

router = APIRouter(
    prefix="/admin/tokens",
    tags=["admin"],
    dependencies=[Depends(get_admin_user)],
)


@router.post("", response_model=AdminTokenCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_admin_token(
    data: AdminTokenCreate,
    admin: AdminIdentity = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db_session),
):
    """签发 Token，响应中的明文只出现这一次"""
    token, raw_token = await service.issue_admin_token(
        db,
        name=data.name,
        user_id=data.user_id or admin.user_id,
        expires_at=data.expires_at,
        description=data.description,
    )
    payload = AdminTokenResponse.model_validate(token).model_dump()
    return AdminTokenCreateResponse(**payload, token=raw_token)


@router.get("", response_model=AdminTokenListResponse)
async def list_admin_tokens(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    show_revoked: bool = Query(False, alias="showRevoked"),
    db: AsyncSession = Depends(get_db_session),
):
    tokens, total = await service.list_admin_tokens(
        db, skip=skip, limit=limit, include_revoked=show_revoked
    )
    return AdminTokenListResponse(
        items=[AdminTokenResponse.model_validate(t) for t in tokens],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{token_id}", response_model=AdminTokenResponse)
async def get_admin_token(token_id: str, db: AsyncSession = Depends(get_db_session)):
    return await service.get_admin_token(db, token_id)


@router.post("/{token_id}/revoke", response_model=AdminTokenResponse)
async def revoke_admin_token(token_id: str, db: AsyncSession = Depends(get_db_session)):
    """撤销后立即失效，记录保留"""
    return await service.revoke_admin_token(db, token_id)


@router.delete("/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_admin_token(token_id: str, db: AsyncSession = Depends(get_db_session)):
    await service.delete_admin_token(db, token_id)
