"""基于 SQLAlchemy 的用户目录实现。"""

import copy
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certgate_api.models.user import User, UserAlias
from certgate_api.services.user_directory import DuplicateKeyError, UserDirectory, UserRecord


class SqlAlchemyUserDirectory(UserDirectory):
    """users / user_aliases 两张表上的目录实现，每个写操作单独提交。"""

    def __init__(self, db: Session, *, patch_max_attempts: int = 3) -> None:
        super().__init__(patch_max_attempts=patch_max_attempts)
        self.db = db

    def _aliases_of(self, user_id: str) -> list[str]:
        stmt = select(UserAlias.alias).where(UserAlias.user_id == user_id).order_by(UserAlias.alias)
        return list(self.db.execute(stmt).scalars().all())

    def _to_record(self, user: User) -> UserRecord:
        return UserRecord(
            id=user.id,
            cert=user.cert,
            aliases=self._aliases_of(user.id),
            info=copy.deepcopy(user.info or {}),
            version=user.version,
        )

    def _fetch_by_id(self, user_id: str) -> UserRecord | None:
        # 条件更新绕过了会话缓存，读取时强制刷新已加载对象。
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        user = self.db.execute(stmt).scalar_one_or_none()
        if user is None:
            return None
        return self._to_record(user)

    def _fetch_by_alias(self, alias: str) -> UserRecord | None:
        user_id = self.db.execute(select(UserAlias.user_id).where(UserAlias.alias == alias)).scalar_one_or_none()
        if user_id is None:
            return None
        return self._fetch_by_id(user_id)

    def _alias_owners(self, aliases: list[str]) -> dict[str, str]:
        if not aliases:
            return {}
        rows = self.db.execute(select(UserAlias.alias, UserAlias.user_id).where(UserAlias.alias.in_(aliases))).all()
        return {alias: user_id for alias, user_id in rows}

    def _insert(self, record: UserRecord) -> UserRecord:
        self.db.add(User(id=record.id, cert=record.cert, info=dict(record.info), version=record.version))
        for alias in record.aliases:
            self.db.add(UserAlias(alias=alias, user_id=record.id))
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if self._fetch_by_id(record.id) is not None:
                raise DuplicateKeyError("id", [record.id]) from exc
            raise DuplicateKeyError("alias", sorted(self._alias_owners(record.aliases)) or record.aliases) from exc

        return self.get(record.id)

    def _write_info(self, user_id: str, info: dict[str, Any], *, expected_version: int | None) -> UserRecord | None:
        stmt = update(User).where(User.id == user_id)
        if expected_version is not None:
            stmt = stmt.where(User.version == expected_version)
        stmt = stmt.values(info=info, version=User.version + 1).execution_options(synchronize_session=False)

        result = self.db.execute(stmt)
        if result.rowcount != 1:
            self.db.rollback()
            return None
        self.db.commit()
        return self._fetch_by_id(user_id)

    def _apply_alias_changes(self, user_id: str, *, add: list[str], remove: list[str]) -> None:
        if remove:
            self.db.execute(
                delete(UserAlias)
                .where(UserAlias.user_id == user_id)
                .where(UserAlias.alias.in_(remove))
                .execution_options(synchronize_session=False)
            )
        for alias in add:
            self.db.add(UserAlias(alias=alias, user_id=user_id))
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            taken = sorted(alias for alias, holder in self._alias_owners(add).items() if holder != user_id)
            raise DuplicateKeyError("alias", taken or add) from exc
