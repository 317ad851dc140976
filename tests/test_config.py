from certgate_api.core.config import Settings, get_settings
from certgate_api.db.session import build_engine


def test_unknown_zone_falls_back_to_prod():
    assert Settings(zone="moon").zone == "prod"
    assert Settings(zone=" Test ").zone == "test"


def test_api_prefix_is_normalized():
    assert Settings(api_prefix="api/v1/").api_prefix == "/api/v1"
    assert Settings(api_prefix="/").api_prefix == ""


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("CERTGATE_PATCH_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("CERTGATE_LOG_LEVEL", "debug")
    monkeypatch.setenv("CERTGATE_TRUST_PROXY_HEADERS", "false")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.patch_max_attempts == 5
        assert settings.log_level == "DEBUG"
        assert settings.trust_proxy_headers is False
    finally:
        get_settings.cache_clear()


def test_build_engine_supports_local_sqlite():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    try:
        assert engine.dialect.name == "sqlite"
    finally:
        engine.dispose()
