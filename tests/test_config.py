from __future__ import annotations

from ucdp.config import Settings, load_settings


def test_defaults(monkeypatch):
    for name in ("UCDP_BIND", "UCDP_EVENTS_MAX_BATCH", "UCDP_CORS_ORIGINS", "UCDP_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    s = load_settings()
    assert s.registry_connector == "memory"
    assert s.events_max_batch == 100
    assert s.cors_origins == ("*",)
    assert s.api_key is None
    assert (s.host, s.port) == ("0.0.0.0", 8080)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("UCDP_BIND", "127.0.0.1:9090")
    monkeypatch.setenv("UCDP_REGISTRY_CONNECTOR", "SQLite")
    monkeypatch.setenv("UCDP_EVENTS_MAX_BATCH", "10")
    monkeypatch.setenv("UCDP_PARTNERS_CACHE_TTL_SECONDS", "0")
    monkeypatch.setenv("UCDP_CORS_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("UCDP_API_KEY", "secret")
    monkeypatch.setenv("UCDP_LOG_LEVEL", "debug")

    s = load_settings()
    assert (s.host, s.port) == ("127.0.0.1", 9090)
    assert s.registry_connector == "sqlite"
    assert s.events_max_batch == 10
    assert s.partners_cache_ttl_seconds == 0.0
    assert s.cors_origins == ("https://a.example", "https://b.example")
    assert s.api_key == "secret"
    assert s.log_level == "DEBUG"


def test_malformed_numbers_fall_back(monkeypatch):
    monkeypatch.setenv("UCDP_EVENTS_MAX_BATCH", "lots")
    monkeypatch.setenv("UCDP_LOCK_SHARDS", "-3")
    s = load_settings()
    assert s.events_max_batch == 100
    assert s.lock_shards == 1


def test_bad_port_falls_back():
    assert Settings(bind="localhost:http").port == 8080
