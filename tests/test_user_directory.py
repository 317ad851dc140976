import base64
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from certgate_api.core.errors import ConflictError, InvalidInputError, NotFoundError
from certgate_api.core.identity import derive_user_id
from certgate_api.models.base import Base
from certgate_api.services.memory_directory import InMemoryUserDirectory
from certgate_api.services.sql_directory import SqlAlchemyUserDirectory
from certgate_api.services.user_directory import UserDirectory, normalize_aliases, prune_info

ALICE_DER = b"\x30\x82\x01\x0aalice-client-certificate"
BOB_DER = b"\x30\x82\x01\x0abob-client-certificate"


def _b64(der: bytes) -> str:
    return base64.b64encode(der).decode("ascii")


def _pem(der: bytes) -> str:
    body = base64.encodebytes(der).decode("ascii")
    return f"-----BEGIN CERTIFICATE-----\n{body}-----END CERTIFICATE-----\n"


@pytest.fixture(params=["memory", "sqlalchemy"])
def directory(request) -> Generator[UserDirectory, None, None]:
    if request.param == "memory":
        yield InMemoryUserDirectory()
        return

    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(bind=engine)
    local_session = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    db = local_session()
    try:
        yield SqlAlchemyUserDirectory(db)
    finally:
        db.close()
        engine.dispose()


def test_create_derives_id_from_certificate(directory):
    record = directory.create(_b64(ALICE_DER), "alice")

    assert record.id == derive_user_id(ALICE_DER)
    assert record.cert == _b64(ALICE_DER)
    assert record.aliases == ["alice"]
    assert record.info == {}
    assert record.version == 1


def test_create_same_certificate_twice_conflicts(directory):
    directory.create(_b64(ALICE_DER))

    with pytest.raises(ConflictError, match="User with given ID already exists"):
        directory.create(_b64(ALICE_DER))


def test_create_with_taken_alias_conflicts(directory):
    directory.create(_b64(ALICE_DER), ["shared", "alice"])

    with pytest.raises(ConflictError) as exc_info:
        directory.create(_b64(BOB_DER), ["bob", "shared"])

    assert exc_info.value.status_code == 409
    assert exc_info.value.extra == {"aliases": ["shared"]}
    # 失败的创建不能留下半条记录。
    with pytest.raises(NotFoundError):
        directory.get(derive_user_id(BOB_DER))


def test_store_constraint_decides_alias_race(directory, monkeypatch):
    directory.create(_b64(ALICE_DER), "shared")
    # 模拟预检查之后另一请求抢先占用别名。
    monkeypatch.setattr(directory, "_ensure_aliases_available", lambda aliases, owner_id=None: None)

    with pytest.raises(ConflictError, match="Alias already in use: shared"):
        directory.create(_b64(BOB_DER), "shared")
    assert directory.resolve("shared").id == derive_user_id(ALICE_DER)


@pytest.mark.parametrize("cert", ["", None])
def test_create_requires_certificate(directory, cert):
    with pytest.raises(InvalidInputError, match="Public certificate must be a non-empty string"):
        directory.create(cert)


def test_create_rejects_empty_alias_entries(directory):
    with pytest.raises(InvalidInputError, match="Aliases must be non-empty strings"):
        directory.create(_b64(ALICE_DER), ["alice", " "])


def test_resolve_by_id_alias_and_certificate(directory):
    created = directory.create(_b64(ALICE_DER), "alice")

    assert directory.resolve(created.id).id == created.id
    assert directory.resolve("alice").id == created.id
    assert directory.resolve(_b64(ALICE_DER)).id == created.id
    assert directory.resolve(_pem(ALICE_DER)).id == created.id


def test_resolve_prefers_id_over_alias(directory):
    alice = directory.create(_b64(ALICE_DER))
    # bob 的别名恰好等于 alice 的 ID。
    directory.create(_b64(BOB_DER), alice.id)

    assert directory.resolve(alice.id).id == alice.id


def test_resolve_unknown_identifier(directory):
    with pytest.raises(NotFoundError, match="User 'nobody' not found"):
        directory.resolve("nobody")
    with pytest.raises(InvalidInputError, match="Identifier must be a non-empty string"):
        directory.resolve("  ")


def test_get_info_prunes_key_paths(directory):
    user = directory.create(_b64(ALICE_DER))
    directory.replace_info(
        user.id,
        {"profile": {"name": "alice", "tags": ["a", "b"]}, "settings": {"theme": "dark"}, "count": 1},
    )

    assert directory.get_info(user.id) == {
        "profile": {"name": "alice", "tags": ["a", "b"]},
        "settings": {"theme": "dark"},
        "count": 1,
    }
    assert directory.get_info(user.id, ["profile.name", "settings", "missing.key", "count.deeper"]) == {
        "profile": {"name": "alice"},
        "settings": {"theme": "dark"},
    }


def test_replace_info_unknown_user(directory):
    with pytest.raises(NotFoundError):
        directory.replace_info("0" * 64, {})


def test_patch_info_bumps_version(directory):
    user = directory.create(_b64(ALICE_DER))

    stored = directory.patch_info(user.id, lambda current: {**current, "a": 1})

    assert stored.info == {"a": 1}
    assert stored.version == user.version + 1


def test_patch_info_recomputes_on_concurrent_write(directory):
    user = directory.create(_b64(ALICE_DER))
    seen: list[dict] = []

    def compute(current):
        seen.append(current)
        if len(seen) == 1:
            directory.replace_info(user.id, {"other": True})
        return {**current, "mine": True}

    stored = directory.patch_info(user.id, compute)

    assert seen == [{}, {"other": True}]
    assert stored.info == {"other": True, "mine": True}


def test_patch_info_gives_up_after_max_attempts(directory):
    user = directory.create(_b64(ALICE_DER))
    directory.patch_max_attempts = 2

    def always_stale(current):
        directory.replace_info(user.id, {"n": len(current)})
        return {"lost": True}

    with pytest.raises(ConflictError, match="modified concurrently") as exc_info:
        directory.patch_info(user.id, always_stale)
    assert exc_info.value.extra == {"attempts": 2}
    assert "lost" not in directory.get_info(user.id)


def test_update_aliases_adds_and_removes(directory):
    user = directory.create(_b64(ALICE_DER), ["old", "keep"])

    updated = directory.update_aliases(user.id, {"new": True, "old": False, "keep": True, "absent": False})

    assert sorted(updated.aliases) == ["keep", "new"]
    with pytest.raises(NotFoundError):
        directory.resolve("old")


def test_update_aliases_conflicts_with_other_user(directory):
    directory.create(_b64(ALICE_DER), "alice")
    bob = directory.create(_b64(BOB_DER))

    with pytest.raises(ConflictError, match="Alias already in use: alice"):
        directory.update_aliases(bob.id, {"alice": True})


@pytest.mark.parametrize("changes", [{}, {"x": "yes"}, ["x"]])
def test_update_aliases_rejects_malformed_changes(directory, changes):
    user = directory.create(_b64(ALICE_DER))
    with pytest.raises(InvalidInputError):
        directory.update_aliases(user.id, changes)


def test_normalize_aliases_accepts_single_string_and_dedupes():
    assert normalize_aliases("alice") == ["alice"]
    assert normalize_aliases(["a", "b", "a"]) == ["a", "b"]
    assert normalize_aliases(None) == []
    with pytest.raises(InvalidInputError):
        normalize_aliases(["x" * 129])


def test_prune_info_treats_lists_as_leaves():
    info = {"a": [{"b": 1}], "c": {"d": {"e": 2}}}

    assert prune_info(info, ["a.0.b", "c.d.e", ""]) == {"c": {"d": {"e": 2}}}
    assert prune_info(info, ["a"]) == {"a": [{"b": 1}]}


def test_check_alias_changes_does_not_write(directory):
    directory.create(_b64(ALICE_DER), "alice")
    bob = directory.create(_b64(BOB_DER))

    directory.check_alias_changes(bob.id, {"bobby": True})
    assert directory.get(bob.id).aliases == []

    with pytest.raises(ConflictError, match="Alias already in use: alice"):
        directory.check_alias_changes(bob.id, {"alice": True})
