"""统一响应结构工具。"""

from typing import Any

from certgate_api.services.user_directory import UserRecord

DEFAULT_ERROR_MESSAGE = "internal server error"


def error_payload(
    status_code: int,
    message: str,
    *,
    stack: str | None = None,
    extra: Any = None,
) -> dict[str, Any]:
    """构造错误响应体：`{statusCode, message, stack?, extra?}`。"""
    payload: dict[str, Any] = {
        "statusCode": status_code,
        "message": message,
    }
    if stack:
        payload["stack"] = stack
    if extra is not None:
        payload["extra"] = extra
    return payload


def user_payload(record: UserRecord) -> dict[str, Any]:
    """用户记录对外结构。"""
    return {
        "id": record.id,
        "cert": record.cert,
        "aliases": list(record.aliases),
        "info": record.info,
    }


def lookup_payload(record: UserRecord) -> dict[str, Any]:
    """公开查询结构，不包含证书与 info。"""
    return {
        "id": record.id,
        "aliases": list(record.aliases),
    }
