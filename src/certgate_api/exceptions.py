"""应用异常处理注册。

所有失败在这里统一渲染为 `{statusCode, message, stack?, extra?}`，
组件层只负责抛出带状态码的 GatewayError。
"""

import json
import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from certgate_api.core.config import get_settings
from certgate_api.core.errors import GatewayError
from certgate_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger(__name__)

_DEFAULT_HTTP_MESSAGES = {
    status.HTTP_400_BAD_REQUEST: "Bad request",
    status.HTTP_401_UNAUTHORIZED: "Unauthorized",
    status.HTTP_403_FORBIDDEN: "Forbidden",
    status.HTTP_404_NOT_FOUND: "Not found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "Method not allowed",
    status.HTTP_409_CONFLICT: "Conflict",
}


def _format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()


def _log_failure(request: Request, status_code: int, exc: BaseException) -> None:
    """按 `<状态码> <堆栈>` 记录失败，可选压缩为单行。"""
    stack = _format_stack(exc)
    if get_settings().log_single_line:
        stack = " -> ".join(line.strip() for line in stack.splitlines() if line.strip())
    level = logging.ERROR if status_code >= 500 else logging.WARNING
    logger.log(level, "%s %s %s %s", status_code, request.method, request.url.path, stack)


def _render(status_code: int, message: str, exc: BaseException, extra: object = None) -> JSONResponse:
    stack = _format_stack(exc) if get_settings().include_error_stack else None
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(error_payload(status_code, message, stack=stack, extra=extra)),
    )


async def gateway_error_handler(request: Request, exc: GatewayError):
    """渲染组件层抛出的业务错误。"""
    _log_failure(request, exc.status_code, exc)
    return _render(exc.status_code, exc.message, exc, exc.extra)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """处理路由未命中、方法不允许等协议异常。"""
    _log_failure(request, exc.status_code, exc)
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else None
    return _render(exc.status_code, message or _DEFAULT_HTTP_MESSAGES.get(exc.status_code, "Request failed"), exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """请求参数校验失败按 400 InvalidInput 返回。"""
    normalized_errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    _log_failure(request, status.HTTP_400_BAD_REQUEST, exc)
    return _render(
        status.HTTP_400_BAD_REQUEST,
        f"Invalid input, {json.dumps(normalized_errors, default=str)}",
        exc,
        normalized_errors,
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，非调试模式不暴露内部信息。"""
    _log_failure(request, status.HTTP_500_INTERNAL_SERVER_ERROR, exc)
    message = str(exc) if get_settings().app_debug and str(exc) else DEFAULT_ERROR_MESSAGE
    return _render(status.HTTP_500_INTERNAL_SERVER_ERROR, message, exc)


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(GatewayError)(gateway_error_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
