"""用户目录服务。

职责:
1. 按 ID → 别名 → 证书派生 ID 的固定优先级解析用户。
2. 创建用户并保证用户 ID 与别名全目录唯一。
3. 读取、整体替换与并发安全地补丁更新 info 文档。

存储细节由子类实现（SQLAlchemy / 内存），业务规则只写在本基类中。
唯一性以存储层约束为准，预检查仅用于返回更友好的错误信息。
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
import copy
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any

from certgate_api.core.errors import ConflictError, InvalidInputError, NotFoundError
from certgate_api.core.identity import derive_user_id, is_pem, pem_to_der, user_id_from_certificate

logger = logging.getLogger(__name__)

ALIAS_MAX_LENGTH = 128


@dataclass
class UserRecord:
    """目录中的用户记录快照。"""

    id: str
    cert: str
    aliases: list[str] = field(default_factory=list)
    info: dict[str, Any] = field(default_factory=dict)
    version: int = 1


class DuplicateKeyError(Exception):
    """存储层唯一约束冲突。"""

    def __init__(self, key: str, values: Iterable[str] = ()) -> None:
        self.key = key
        self.values = list(values)
        super().__init__(f"duplicate {key}: {', '.join(self.values)}")


class ResolveStrategy(StrEnum):
    """用户标识解析策略，按声明顺序尝试。"""

    ID = "id"
    ALIAS = "alias"
    CERTIFICATE = "certificate"


@dataclass(frozen=True)
class Resolution:
    """单个解析策略的结果。"""

    strategy: ResolveStrategy
    record: UserRecord | None

    @property
    def found(self) -> bool:
        return self.record is not None


def normalize_aliases(aliases: str | Iterable[str] | None) -> list[str]:
    """规范化别名输入：单个字符串视为单元素集合，去重并保持顺序。"""
    if aliases is None:
        return []
    if isinstance(aliases, str):
        aliases = [aliases]

    normalized: list[str] = []
    for alias in aliases:
        if not isinstance(alias, str) or not alias.strip():
            raise InvalidInputError("Aliases must be non-empty strings")
        candidate = alias.strip()
        if len(candidate) > ALIAS_MAX_LENGTH:
            raise InvalidInputError(f"Alias '{candidate[:32]}...' exceeds {ALIAS_MAX_LENGTH} characters")
        if candidate not in normalized:
            normalized.append(candidate)
    return normalized


def prune_info(info: Mapping[str, Any], key_paths: Iterable[str]) -> dict[str, Any]:
    """按点分路径裁剪 info 文档，不存在的路径直接忽略。

    路径只穿越对象节点；数组视为叶子值整体返回。
    """
    pruned: dict[str, Any] = {}
    for key_path in key_paths:
        parts = [part for part in key_path.split(".") if part]
        if not parts:
            continue

        node: Any = info
        for part in parts:
            if not isinstance(node, Mapping) or part not in node:
                break
            node = node[part]
        else:
            target = pruned
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = copy.deepcopy(node)
    return pruned


class UserDirectory(ABC):
    """用户目录抽象，封装全部唯一性与并发规则。"""

    def __init__(self, *, patch_max_attempts: int = 3) -> None:
        self.patch_max_attempts = max(1, patch_max_attempts)

    # ---- 存储原语 ----

    @abstractmethod
    def _fetch_by_id(self, user_id: str) -> UserRecord | None:
        """按用户 ID 读取记录。"""

    @abstractmethod
    def _fetch_by_alias(self, alias: str) -> UserRecord | None:
        """按别名读取记录。"""

    @abstractmethod
    def _alias_owners(self, aliases: list[str]) -> dict[str, str]:
        """返回已被占用的别名及其所属用户 ID。"""

    @abstractmethod
    def _insert(self, record: UserRecord) -> UserRecord:
        """原子插入用户与别名，唯一约束冲突时抛出 DuplicateKeyError。"""

    @abstractmethod
    def _write_info(self, user_id: str, info: dict[str, Any], *, expected_version: int | None) -> UserRecord | None:
        """写入 info 并递增版本。

        expected_version 不为空时仅在版本一致时写入；未写入返回 None。
        """

    @abstractmethod
    def _apply_alias_changes(self, user_id: str, *, add: list[str], remove: list[str]) -> None:
        """原子增删别名，唯一约束冲突时抛出 DuplicateKeyError。"""

    # ---- 解析 ----

    def _try_id(self, identifier: str) -> Resolution:
        return Resolution(ResolveStrategy.ID, self._fetch_by_id(identifier))

    def _try_alias(self, identifier: str) -> Resolution:
        return Resolution(ResolveStrategy.ALIAS, self._fetch_by_alias(identifier))

    def _try_certificate(self, identifier: str) -> Resolution:
        try:
            if is_pem(identifier):
                user_id = derive_user_id(pem_to_der(identifier))
            else:
                user_id = user_id_from_certificate(identifier)
        except InvalidInputError:
            return Resolution(ResolveStrategy.CERTIFICATE, None)
        return Resolution(ResolveStrategy.CERTIFICATE, self._fetch_by_id(user_id))

    def resolve(self, identifier: str) -> UserRecord:
        """按 ID → 别名 → 证书的优先级解析用户，同一字符串的歧义按优先级消解。"""
        if not isinstance(identifier, str) or not identifier.strip():
            raise InvalidInputError("Identifier must be a non-empty string")
        identifier = identifier.strip()

        for attempt in (self._try_id, self._try_alias, self._try_certificate):
            resolution = attempt(identifier)
            if resolution.found:
                logger.debug("resolved identifier via %s user_id=%s", resolution.strategy, resolution.record.id)
                return resolution.record
        raise NotFoundError(f"User '{identifier}' not found")

    def get(self, user_id: str) -> UserRecord:
        """按用户 ID 读取，不存在时抛出 404。"""
        if not isinstance(user_id, str) or not user_id:
            raise InvalidInputError("UserID must be a non-empty string")
        record = self._fetch_by_id(user_id)
        if record is None:
            raise NotFoundError(f"User '{user_id}' not found")
        return record

    # ---- 创建 ----

    def _ensure_aliases_available(self, aliases: list[str], *, owner_id: str | None = None) -> None:
        if not aliases:
            return
        taken = sorted(alias for alias, holder in self._alias_owners(aliases).items() if holder != owner_id)
        if taken:
            raise ConflictError(f"Alias already in use: {', '.join(taken)}", extra={"aliases": taken})

    def _conflict_from(self, exc: DuplicateKeyError) -> ConflictError:
        if exc.key == "alias":
            return ConflictError(f"Alias already in use: {', '.join(exc.values)}", extra={"aliases": exc.values})
        return ConflictError("User with given ID already exists")

    def create(self, cert_b64: str, aliases: str | Iterable[str] | None = None) -> UserRecord:
        """创建用户，ID 由证书派生且创建后不可变。"""
        if not isinstance(cert_b64, str) or not cert_b64:
            raise InvalidInputError("Public certificate must be a non-empty string")
        requested = normalize_aliases(aliases)
        user_id = user_id_from_certificate(cert_b64)

        if self._fetch_by_id(user_id) is not None:
            raise ConflictError("User with given ID already exists")
        self._ensure_aliases_available(requested)

        try:
            record = self._insert(UserRecord(id=user_id, cert=cert_b64, aliases=requested, info={}, version=1))
        except DuplicateKeyError as exc:
            # 预检查与插入之间的并发创建，以存储约束结果为准。
            raise self._conflict_from(exc) from exc

        logger.info("created user user_id=%s aliases=%s", user_id, requested)
        return record

    # ---- info 读写 ----

    def get_info(self, user_id: str, key_paths: Iterable[str] | None = None) -> dict[str, Any]:
        """返回完整 info，或按点分路径裁剪后的 info。"""
        record = self.get(user_id)
        if key_paths is None:
            return copy.deepcopy(record.info)
        return prune_info(record.info, key_paths)

    def replace_info(self, user_id: str, new_info: dict[str, Any]) -> UserRecord:
        """整体覆盖 info。"""
        if not isinstance(new_info, dict):
            raise InvalidInputError("Info must be an object")
        record = self._write_info(user_id, new_info, expected_version=None)
        if record is None:
            raise NotFoundError(f"User '{user_id}' not found")
        return record

    def patch_info(self, user_id: str, compute: Callable[[dict[str, Any]], dict[str, Any]]) -> UserRecord:
        """读取-计算-条件写入 info，版本冲突时基于最新文档重算重试。"""
        for attempt in range(1, self.patch_max_attempts + 1):
            current = self.get(user_id)
            new_info = compute(copy.deepcopy(current.info))
            if not isinstance(new_info, dict):
                raise InvalidInputError("Info must be an object")

            stored = self._write_info(user_id, new_info, expected_version=current.version)
            if stored is not None:
                return stored
            logger.warning(
                "concurrent info update detected user_id=%s version=%s attempt=%s",
                user_id,
                current.version,
                attempt,
            )

        raise ConflictError(
            "User info was modified concurrently, please retry",
            extra={"attempts": self.patch_max_attempts},
        )

    # ---- 别名维护 ----

    def _plan_alias_changes(self, user_id: str, changes: Mapping[str, Any]) -> tuple[UserRecord, list[str], list[str]]:
        if not isinstance(changes, Mapping) or not changes:
            raise InvalidInputError("Aliases patch must be a non-empty object")
        if any(not isinstance(keep, bool) for keep in changes.values()):
            raise InvalidInputError("Aliases patch values must be booleans")

        keep = normalize_aliases([alias for alias, flag in changes.items() if flag])
        drop = normalize_aliases([alias for alias, flag in changes.items() if not flag])

        current = self.get(user_id)
        add = [alias for alias in keep if alias not in current.aliases]
        remove = [alias for alias in drop if alias in current.aliases]
        self._ensure_aliases_available(add, owner_id=user_id)
        return current, add, remove

    def check_alias_changes(self, user_id: str, changes: Mapping[str, Any]) -> None:
        """预检别名增删是否可执行，不写入。

        与其他写操作组合时先调用，避免别名冲突时其余修改已经落库。
        """
        self._plan_alias_changes(user_id, changes)

    def update_aliases(self, user_id: str, changes: Mapping[str, Any]) -> UserRecord:
        """按 `{alias: bool}` 增删别名：true 保留/新增，false 删除。"""
        current, add, remove = self._plan_alias_changes(user_id, changes)
        if not add and not remove:
            return current

        try:
            self._apply_alias_changes(user_id, add=add, remove=remove)
        except DuplicateKeyError as exc:
            raise self._conflict_from(exc) from exc

        logger.info("updated aliases user_id=%s added=%s removed=%s", user_id, add, remove)
        return self.get(user_id)
