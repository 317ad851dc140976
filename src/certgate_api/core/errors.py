"""业务错误类型。

所有组件内部失败统一抛出 GatewayError 子类，由 exceptions 模块集中渲染为
`{statusCode, message, stack?, extra?}` 响应体。
"""

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """错误分类。"""

    INVALID_INPUT = "invalid_input"  # 缺少或非法的请求字段。
    UNAUTHENTICATED = "unauthenticated"  # 连接上没有可提取的客户端证书。
    FORBIDDEN = "forbidden"  # 证书未链到受信根且不是注册请求。
    NOT_FOUND = "not_found"  # 用户或 info 命名空间不存在。
    CONFLICT = "conflict"  # 用户 ID / 别名重复，或并发写入冲突。
    INTERNAL = "internal"  # 补丁校验失败或存储异常。


class GatewayError(Exception):
    """携带状态码的业务错误基类。"""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, *, extra: Any = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(GatewayError):
    kind = ErrorKind.INVALID_INPUT
    status_code = 400


class UnauthenticatedError(GatewayError):
    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401


class ForbiddenError(GatewayError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class NotFoundError(GatewayError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ConflictError(GatewayError):
    kind = ErrorKind.CONFLICT
    status_code = 409


class InternalError(GatewayError):
    kind = ErrorKind.INTERNAL
    status_code = 500
