"""
FastAPI 应用入口

    uvicorn portal.main:app --reload

错误响应统一为 {"detail": ..., "code": ...}：
- HTTPException 的 detail 为字典时取其中的 code / detail
- 请求校验失败为 422 VALIDATION_ERROR
- 业务异常按 _DOMAIN_ERRORS 映射状态码
- 其余异常为 500 INTERNAL_ERROR
"""

from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal.api.routes import api_router
from portal.config import get_settings
from portal.db.session import engine, init_models
from portal.exceptions import (
    BadRequestError,
    ConflictError,
    CredentialsRetrievalError,
    DriverError,
    LLMError,
    NotFoundError,
    PortalError,
    RelationshipAnalysisError,
    VaultError,
    VaultUnavailableError,
)
from portal.infra.logging import get_logger, setup_logging
from portal.middleware import RequestTraceMiddleware

setup_logging()
logger = get_logger(__name__)

settings = get_settings()


def _coded(exc: PortalError) -> tuple[str, str]:
    return exc.code, exc.detail


# 异常类型 -> (状态码, 取 (code, detail) 的函数)；按顺序匹配，子类写在父类前面
_DOMAIN_ERRORS: list[tuple[type[PortalError], int, Callable[[PortalError], tuple[str, str]]]] = [
    (NotFoundError, 404, _coded),
    (ConflictError, 409, _coded),
    (BadRequestError, 400, _coded),
    (VaultUnavailableError, 503, lambda _: ("VAULT_UNAVAILABLE", "No vault provider configured")),
    (VaultError, 502, lambda _: ("VAULT_ERROR", "Vault request failed")),
    (
        CredentialsRetrievalError,
        500,
        lambda _: ("CREDENTIALS_ERROR", "Failed to retrieve connection credentials"),
    ),
    (RelationshipAnalysisError, 502, lambda e: ("RELATIONSHIP_ANALYSIS_ERROR", str(e))),
    (LLMError, 502, lambda e: ("LLM_ERROR", str(e))),
    (DriverError, 502, lambda e: ("DRIVER_ERROR", str(e))),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Portal Admin 启动，环境: {settings.environment}")

    if settings.is_dev:
        await init_models()
        logger.info("已按模型定义建表（dev/test）")
    else:
        logger.info("数据库结构由 Alembic 管理，跳过建表")

    if settings.vault_provider == "none":
        logger.warning("未配置 Vault：环境安全设置的敏感字段将降级存入数据库，API Key 与数据代理凭据不可用")

    yield

    await engine.dispose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# 后注册的中间件在外层
app.add_middleware(RequestTraceMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


def _error(status_code: int, code: str, detail, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "code": code},
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException):
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code") or "UNKNOWN_ERROR"
        detail = exc.detail.get("detail") or exc.detail.get("message") or exc.detail
    else:
        code, detail = "UNKNOWN_ERROR", exc.detail
    return _error(exc.status_code, code, detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    return _error(422, "VALIDATION_ERROR", jsonable_encoder(exc.errors()))


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    for error_type, status_code, describe in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            code, detail = describe(exc)
            if status_code >= 500:
                logger.error(
                    f"{request.method} {request.url.path} 失败: {code}",
                    extra={"error_type": type(exc).__name__},
                )
            return _error(status_code, code, detail)

    logger.exception(f"未映射的业务异常: {type(exc).__name__}")
    return _error(500, "INTERNAL_ERROR", "Internal server error")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"未处理的异常: {request.method} {request.url.path}")
    return _error(500, "INTERNAL_ERROR", "Internal server error")
