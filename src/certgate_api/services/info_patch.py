"""info 文档补丁引擎。

两种补丁方式由 Content-Type 决定：
1. application/json-patch+json：请求体即 RFC6902 操作序列。
2. application/merge-patch+json：近似 RFC7386，请求体只包含变化的键，null 表示删除。
   先把请求体叠加到当前文档上（保留 null），再与当前文档求差得到 RFC6902 操作，
   最后把指向请求体中 null 成员的操作改写为 remove。

无论哪种方式，操作序列都会先对当前文档做一次校验性试应用，再正式应用。
合并补丁是从同一文档求差得到的，校验阶段失败说明逻辑有缺陷，按 500 返回。
"""

import copy
from dataclasses import dataclass
from enum import StrEnum
import json
import logging
from typing import Any

import jsonpatch
from jsonpatch import InvalidJsonPatch, JsonPatchException
from jsonpointer import JsonPointer, JsonPointerException

from certgate_api.core.errors import InternalError, InvalidInputError

logger = logging.getLogger(__name__)

Operation = dict[str, Any]


class PatchMode(StrEnum):
    """补丁方式，取值即对应的媒体类型。"""

    JSON_PATCH = "application/json-patch+json"
    MERGE_PATCH = "application/merge-patch+json"


@dataclass(frozen=True)
class PatchOutcome:
    """补丁计算结果。"""

    mode: PatchMode
    operations: list[Operation]
    document: dict[str, Any]


def patch_mode_from_content_type(content_type: str | None) -> PatchMode:
    """按 Content-Type 选择补丁方式，忽略 charset 等参数。"""
    if not content_type or not content_type.strip():
        raise InvalidInputError("Missing content-type header specifying patch type")
    media_type = content_type.split(";", 1)[0].strip().lower()
    try:
        return PatchMode(media_type)
    except ValueError as exc:
        raise InvalidInputError("Content-type header value is invalid") from exc


def _escape_token(key: str) -> str:
    return key.replace("~", "~0").replace("/", "~1")


def _null_pointers(body: dict[str, Any], prefix: str = "") -> set[str]:
    """收集请求体中值为 null 的成员路径（不进入数组）。"""
    pointers: set[str] = set()
    for key, value in body.items():
        pointer = f"{prefix}/{_escape_token(str(key))}"
        if value is None:
            pointers.add(pointer)
        elif isinstance(value, dict):
            pointers |= _null_pointers(value, pointer)
    return pointers


def _overlay(target: Any, patch: Any) -> Any:
    """把合并补丁叠加到目标上，已存在成员的 null 保留下来供求差识别。"""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    if not isinstance(target, dict):
        # 新建的对象节点里 null 成员没有可删除的目标，直接省略。
        return {key: _overlay(None, value) for key, value in patch.items() if value is not None}

    merged = copy.deepcopy(target)
    for key, value in patch.items():
        merged[key] = None if value is None else _overlay(target.get(key), value)
    return merged


def _present_in_objects(document: dict[str, Any], pointer: str) -> bool:
    """路径是否沿对象节点存在于文档中（值为 null 也算存在）。"""
    node: Any = document
    for part in JsonPointer(pointer).parts:
        if not isinstance(node, dict) or part not in node:
            return False
        node = node[part]
    return True


def merge_patch_operations(current: dict[str, Any], body: dict[str, Any]) -> list[Operation]:
    """由合并补丁推导等价的 RFC6902 操作序列。"""
    merged = _overlay(current, body)
    deleted = _null_pointers(body)

    operations: list[Operation] = []
    removed: set[str] = set()
    for operation in jsonpatch.make_patch(current, merged).patch:
        path = operation.get("path")
        if path in deleted and operation.get("op") in {"add", "replace"} and operation.get("value") is None:
            # replace-with-null 改写为 remove；add-null 表示删除一个本就不存在的键，直接忽略。
            if operation["op"] == "replace":
                operations.append({"op": "remove", "path": path})
                removed.add(path)
            continue
        if operation.get("op") == "remove":
            removed.add(path)
        operations.append(dict(operation))

    # 当前值本就是 null 时求差得不到操作，补上删除。
    for path in sorted(deleted - removed):
        if _present_in_objects(current, path):
            operations.append({"op": "remove", "path": path})
    return operations


def build_operations(mode: PatchMode, current: dict[str, Any], body: Any) -> list[Operation]:
    """把请求体转换为待校验的 RFC6902 操作序列。"""
    if mode == PatchMode.JSON_PATCH:
        if not isinstance(body, list) or not body or not all(isinstance(item, dict) for item in body):
            raise InvalidInputError("JSON patch must be a non-empty array of operations")
        try:
            jsonpatch.JsonPatch(body)
        except (InvalidJsonPatch, JsonPointerException) as exc:
            raise InvalidInputError(f"Invalid JSON patch: {exc}", extra={"patch": body}) from exc
        return [dict(item) for item in body]

    if not isinstance(body, dict) or not body:
        raise InvalidInputError("Merge patch must be a non-empty object")
    return merge_patch_operations(current, body)


def validate_operations(operations: list[Operation], current: dict[str, Any]) -> None:
    """对当前文档副本试应用，确认每个路径都可用。"""
    try:
        jsonpatch.JsonPatch(operations).apply(current, in_place=False)
    except InvalidJsonPatch as exc:
        raise InvalidInputError(f"Invalid JSON patch: {exc}", extra={"patch": operations}) from exc
    except (JsonPatchException, JsonPointerException, KeyError, IndexError, TypeError) as exc:
        logger.error("patch validation failed reason=%s", exc)
        raise InternalError(
            "Failed to validate the patch. "
            f"Patch set: {json.dumps(operations, default=str)} "
            f"User's info object: {json.dumps(current, default=str)}",
            extra={"patch": operations, "info": current, "reason": str(exc)},
        ) from exc


def apply_info_patch(mode: PatchMode, current: dict[str, Any], body: Any) -> PatchOutcome:
    """计算、校验并应用补丁，返回新文档；持久化由调用方负责。"""
    operations = build_operations(mode, current, body)
    validate_operations(operations, current)

    document = jsonpatch.apply_patch(current, operations, in_place=False)
    if not isinstance(document, dict):
        raise InvalidInputError("Patched info must be an object")
    return PatchOutcome(mode=mode, operations=operations, document=document)
