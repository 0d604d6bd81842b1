"""
健康检查接口

用于 Kubernetes 等容器编排系统进行存活探测和就绪探测，不需要认证。
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import VaultClient, get_db_session, get_vault_client

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def healthcheck() -> dict:
    """存活探测：返回 {"status": "ok"} 表示进程正常"""
    return {"status": "ok"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_db_session),
    vault: VaultClient = Depends(get_vault_client),
):
    """
    就绪探测

    checks.database 失败时返回 503；Vault 未配置时为 "disabled"，
    连接失败只标记为 "error"（敏感字段会降级保存，服务仍可用）。
    """
    checks: dict[str, str] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error(f"数据库就绪检查失败: {type(e).__name__}")
        checks["database"] = "error"

    if not vault.has_provider():
        checks["vault"] = "disabled"
    else:
        checks["vault"] = "ok" if await vault.test_connection() else "error"

    ready = checks["database"] == "ok"
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "unavailable", "checks": checks},
    )
