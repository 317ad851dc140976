"""内存版用户目录，用于测试与本地演示。"""

import copy
from threading import Lock
from typing import Any

from certgate_api.services.user_directory import DuplicateKeyError, UserDirectory, UserRecord


class InMemoryUserDirectory(UserDirectory):
    """以用户 ID 为键的内存目录，写操作在单把锁内完成。"""

    def __init__(self, *, patch_max_attempts: int = 3) -> None:
        super().__init__(patch_max_attempts=patch_max_attempts)
        self._users: dict[str, UserRecord] = {}
        self._aliases: dict[str, str] = {}
        self._lock = Lock()

    def _snapshot(self, record: UserRecord) -> UserRecord:
        return UserRecord(
            id=record.id,
            cert=record.cert,
            aliases=sorted(alias for alias, owner in self._aliases.items() if owner == record.id),
            info=copy.deepcopy(record.info),
            version=record.version,
        )

    def _fetch_by_id(self, user_id: str) -> UserRecord | None:
        with self._lock:
            record = self._users.get(user_id)
            return self._snapshot(record) if record else None

    def _fetch_by_alias(self, alias: str) -> UserRecord | None:
        with self._lock:
            user_id = self._aliases.get(alias)
            record = self._users.get(user_id) if user_id else None
            return self._snapshot(record) if record else None

    def _alias_owners(self, aliases: list[str]) -> dict[str, str]:
        with self._lock:
            return {alias: self._aliases[alias] for alias in aliases if alias in self._aliases}

    def _insert(self, record: UserRecord) -> UserRecord:
        with self._lock:
            if record.id in self._users:
                raise DuplicateKeyError("id", [record.id])
            taken = sorted(alias for alias in record.aliases if alias in self._aliases)
            if taken:
                raise DuplicateKeyError("alias", taken)
            self._users[record.id] = UserRecord(
                id=record.id,
                cert=record.cert,
                info=copy.deepcopy(record.info),
                version=record.version,
            )
            for alias in record.aliases:
                self._aliases[alias] = record.id
            return self._snapshot(self._users[record.id])

    def _write_info(self, user_id: str, info: dict[str, Any], *, expected_version: int | None) -> UserRecord | None:
        with self._lock:
            record = self._users.get(user_id)
            if record is None:
                return None
            if expected_version is not None and record.version != expected_version:
                return None
            record.info = copy.deepcopy(info)
            record.version += 1
            return self._snapshot(record)

    def _apply_alias_changes(self, user_id: str, *, add: list[str], remove: list[str]) -> None:
        with self._lock:
            taken = sorted(alias for alias in add if self._aliases.get(alias, user_id) != user_id)
            if taken:
                raise DuplicateKeyError("alias", taken)
            for alias in remove:
                if self._aliases.get(alias) == user_id:
                    del self._aliases[alias]
            for alias in add:
                self._aliases[alias] = user_id
