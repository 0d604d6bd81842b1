"""
接口定义管理接口

参数和请求/响应体在入口处解析为结构化 JSON，非法 JSON 字符串返回 422。
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_admin_user, get_db_session
from portal.api.routes.applications import get_application_or_404
from portal.models import Endpoint
from portal.schemas.endpoint import EndpointCreate, EndpointResponse, EndpointUpdate

router = APIRouter(
    prefix="/admin/applications/{application_id}/endpoints",
    tags=["endpoints"],
    dependencies=[Depends(get_admin_user)],
)


async def _get_endpoint(db: AsyncSession, application_id: str, endpoint_id: str) -> Endpoint:
    endpoint = await db.get(Endpoint, endpoint_id)
    if not endpoint or endpoint.application_id != application_id:
        raise HTTPException(
            status_code=404,
            detail={"code": "ENDPOINT_NOT_FOUND", "detail": "Endpoint not found"},
        )
    return endpoint


@router.get("", response_model=list[EndpointResponse])
async def list_endpoints(
    application_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> list[EndpointResponse]:
    application = await get_application_or_404(db, application_id)
    result = await db.execute(
        select(Endpoint)
        .where(Endpoint.application_id == application.id)
        .order_by(Endpoint.path, Endpoint.method)
    )
    return [EndpointResponse.model_validate(e) for e in result.scalars().all()]


@router.post("", response_model=EndpointResponse, status_code=status.HTTP_201_CREATED)
async def create_endpoint(
    application_id: str,
    data: EndpointCreate,
    db: AsyncSession = Depends(get_db_session),
) -> EndpointResponse:
    application = await get_application_or_404(db, application_id)
    endpoint = Endpoint(application_id=application.id, **data.model_dump())
    db.add(endpoint)
    await db.commit()
    await db.refresh(endpoint)
    return EndpointResponse.model_validate(endpoint)


@router.patch("/{endpoint_id}", response_model=EndpointResponse)
async def update_endpoint(
    application_id: str,
    endpoint_id: str,
    data: EndpointUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> EndpointResponse:
    endpoint = await _get_endpoint(db, application_id, endpoint_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field in ("name", "method", "path"):
            continue
        setattr(endpoint, field, value)

    await db.commit()
    await db.refresh(endpoint)
    return EndpointResponse.model_validate(endpoint)


@router.delete("/{endpoint_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_endpoint(
    application_id: str,
    endpoint_id: str,
    db: AsyncSession = Depends(get_db_session),
):
    endpoint = await _get_endpoint(db, application_id, endpoint_id)
    await db.delete(endpoint)
    await db.commit()
