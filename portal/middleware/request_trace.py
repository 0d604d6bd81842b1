"""
请求追踪中间件

- 沿用调用方传入的 X-Request-ID，没有时生成新的
- 响应头返回 X-Request-ID 和 X-Response-Time
- 访问日志：5xx 记 ERROR，4xx 记 WARNING，探活请求的 2xx 不记录
"""

import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from portal.infra.logging import RequestTimer, get_logger, set_request_id

logger = get_logger(__name__)

HEALTH_PATHS = frozenset({"/health", "/ready"})


def _log_access(request: Request, status_code: int, duration_ms: float, error: str | None = None) -> None:
    path = request.url.path
    context = {
        "method": request.method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    if error:
        context["error"] = error
    message = f"{request.method} {path} -> {status_code} ({duration_ms:.0f}ms)"

    if status_code >= 500:
        logger.error(message, extra=context)
    elif status_code >= 400:
        logger.warning(message, extra=context)
    elif path not in HEALTH_PATHS:
        logger.info(message, extra=context)


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """为每个请求绑定 request_id 并记录访问日志"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        set_request_id(request_id)
        timer = RequestTimer()

        try:
            response = await call_next(request)
        except Exception as e:
            _log_access(request, 500, timer.elapsed_ms, error=type(e).__name__)
            raise

        duration_ms = timer.elapsed_ms
        _log_access(request, response.status_code, duration_ms)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.0f}ms"
        return response
