"""用户身份与 info 接口。

所有接口都要求连接上携带客户端证书；证书未链到受信根时仅允许 `POST /users` 注册。
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Path, Query, status

from certgate_api.core.errors import InvalidInputError, NotFoundError
from certgate_api.dependencies import RequestContext, get_patch_mode, get_request_context, get_user_directory
from certgate_api.schemas.common import ErrorResponse
from certgate_api.schemas.responses import UserData, UserLookupData
from certgate_api.schemas.user import UserCreateRequest, UserPatchRequest
from certgate_api.services.info_patch import PatchMode, apply_info_patch
from certgate_api.services.user_directory import UserDirectory, prune_info
from certgate_api.utils.response import lookup_payload, user_payload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])

_AUTH_ERRORS = {401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}}


def _split_key_paths(keys: str | None) -> list[str] | None:
    """`keys` 查询参数为空格分隔的点分路径。"""
    if keys is None:
        return None
    paths = [item for item in keys.split() if item]
    return paths or None


def _collect_aliases(
    path_alias: str | None,
    query_aliases: str | None,
    payload: UserCreateRequest | None,
) -> list[str] | None:
    """合并路径、查询参数（逗号分隔）与请求体中的别名。"""
    collected: list[str] = []
    if path_alias is not None:
        collected.append(path_alias)
    if query_aliases is not None:
        collected.extend(query_aliases.split(","))
    if payload is not None and payload.aliases is not None:
        if isinstance(payload.aliases, str):
            collected.append(payload.aliases)
        else:
            collected.extend(payload.aliases)
    return collected or None


def _create(ctx: RequestContext, directory: UserDirectory, aliases: list[str] | None) -> dict[str, Any]:
    logger.info(
        "received request to create user user_id=%s aliases=%s enrollment=%s",
        ctx.user_id,
        aliases,
        ctx.via_enrollment,
    )
    return user_payload(directory.create(ctx.cert_b64, aliases))


@router.get(
    "/info",
    summary="查询当前用户 info",
    description="返回完整 info，或按 `keys`（空格分隔的点分路径）裁剪后的 info，不存在的路径直接省略。",
    status_code=status.HTTP_200_OK,
    response_model=dict[str, Any],
    responses={**_AUTH_ERRORS, 404: {"model": ErrorResponse}},
)
def read_info(
    keys: str | None = Query(default=None, description="空格分隔的点分路径。", examples=["profile.name settings"]),
    ctx: RequestContext = Depends(get_request_context),
    directory: UserDirectory = Depends(get_user_directory),
):
    """查询当前证书用户的 info。"""
    logger.info("received request for info user_id=%s", ctx.user_id)
    return directory.get_info(ctx.user_id, _split_key_paths(keys))


@router.get(
    "/info/{namespace}",
    summary="查询当前用户 info 命名空间",
    description="返回 `{namespace: ...}`，`keys` 中的路径相对于命名空间。",
    status_code=status.HTTP_200_OK,
    response_model=dict[str, Any],
    responses={**_AUTH_ERRORS, 404: {"model": ErrorResponse}},
)
def read_info_namespace(
    namespace: str = Path(..., pattern=r"^[A-Za-z0-9_-]+$", description="info 顶层命名空间。"),
    keys: str | None = Query(default=None, description="空格分隔、相对命名空间的点分路径。"),
    ctx: RequestContext = Depends(get_request_context),
    directory: UserDirectory = Depends(get_user_directory),
):
    """查询当前证书用户 info 中的单个命名空间。"""
    logger.info("received request for info namespace=%s user_id=%s", namespace, ctx.user_id)
    scoped = directory.get_info(ctx.user_id, [namespace])
    if namespace not in scoped:
        raise NotFoundError(f"Namespace '{namespace}' not found")

    key_paths = _split_key_paths(keys)
    if key_paths is None:
        return scoped
    return prune_info(scoped, [f"{namespace}.{key_path}" for key_path in key_paths])


@router.post(
    "",
    summary="注册当前证书用户",
    description="以 mTLS 握手中的客户端证书创建用户，证书重复注册返回 409。",
    status_code=status.HTTP_200_OK,
    response_model=UserData,
    responses={**_AUTH_ERRORS, 400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_user(
    aliases: str | None = Query(default=None, description="逗号分隔的别名。"),
    payload: UserCreateRequest | None = Body(default=None),
    ctx: RequestContext = Depends(get_request_context),
    directory: UserDirectory = Depends(get_user_directory),
):
    """创建用户，别名可来自查询参数或请求体。"""
    return _create(ctx, directory, _collect_aliases(None, aliases, payload))


@router.post(
    "/{alias}",
    summary="以指定别名注册当前证书用户",
    description="与 `POST /users` 相同，额外以路径中的别名注册；该路由要求证书已链到受信根。",
    status_code=status.HTTP_200_OK,
    response_model=UserData,
    responses={**_AUTH_ERRORS, 400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_user_with_alias(
    alias: str = Path(..., min_length=1, max_length=128, description="新用户别名。"),
    aliases: str | None = Query(default=None, description="逗号分隔的其他别名。"),
    payload: UserCreateRequest | None = Body(default=None),
    ctx: RequestContext = Depends(get_request_context),
    directory: UserDirectory = Depends(get_user_directory),
):
    """以路径别名创建用户。"""
    return _create(ctx, directory, _collect_aliases(alias, aliases, payload))


@router.patch(
    "",
    summary="更新当前用户 info 与别名",
    description=(
        "Content-Type 为 application/json-patch+json 时 `info` 为 RFC6902 操作数组；"
        "为 application/merge-patch+json 时 `info` 为只包含变化键的对象，null 表示删除。"
        "`aliases` 为 `{alias: bool}`，别名冲突会在 info 写入前返回 409。成功返回 `{}`。"
    ),
    status_code=status.HTTP_200_OK,
    response_model=dict[str, Any],
    responses={
        **_AUTH_ERRORS,
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def patch_user(
    payload: UserPatchRequest,
    ctx: RequestContext = Depends(get_request_context),
    mode: PatchMode = Depends(get_patch_mode),
    directory: UserDirectory = Depends(get_user_directory),
):
    """对当前证书用户执行补丁。"""
    if payload.info is None and payload.aliases is None:
        raise InvalidInputError("Missing patch information")

    logger.info("received request to perform a %s on user_id=%s", mode, ctx.user_id)
    directory.get(ctx.user_id)
    if payload.aliases is not None:
        # 别名冲突需在 info 写入前暴露。
        directory.check_alias_changes(ctx.user_id, payload.aliases)

    if payload.info is not None:
        body = payload.info
        # 并发冲突重试时基于最新文档重新计算补丁。
        directory.patch_info(ctx.user_id, lambda current: apply_info_patch(mode, current, body).document)
    if payload.aliases is not None:
        directory.update_aliases(ctx.user_id, payload.aliases)

    logger.info("successfully patched user_id=%s", ctx.user_id)
    return {}


@router.get(
    "/{identifier:path}",
    summary="按标识查询用户",
    description="标识可以是用户 ID、别名或 base64/PEM 证书，依次按此优先级解析。",
    status_code=status.HTTP_200_OK,
    response_model=UserLookupData,
    responses={**_AUTH_ERRORS, 404: {"model": ErrorResponse}},
)
def lookup_user(
    identifier: str,
    ctx: RequestContext = Depends(get_request_context),
    directory: UserDirectory = Depends(get_user_directory),
):
    """解析用户标识并返回公开信息。"""
    logger.info("lookup requested by user_id=%s", ctx.user_id)
    return lookup_payload(directory.resolve(identifier))
