from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from ucdp.config import Settings
from ucdp.gateway.stream import MemoryStreamProducer, StreamDispatcher
from ucdp.main import create_app
from ucdp.registry.service import RegistryService, build_registry


@pytest.fixture(autouse=True)
def _env_isolation(monkeypatch):
    for name in ("UCDP_API_KEY", "UCDP_REGISTRY_CONNECTOR", "UCDP_DB_PATH", "UCDP_STREAM_CONNECTOR"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(params=["memory", "sqlite"])
def settings(request, tmp_path) -> Settings:
    return Settings(
        registry_connector=request.param,
        db_path=str(tmp_path / "registry.db"),
        lock_shards=8,
        partners_cache_ttl_seconds=30.0,
        stream_connector="memory",
    )


@pytest.fixture
def service(settings) -> RegistryService:
    return build_registry(settings)


@pytest.fixture
def producer() -> MemoryStreamProducer:
    return MemoryStreamProducer()


@pytest.fixture
def app(settings, service, producer):
    return create_app(settings, registry=service, dispatcher=StreamDispatcher(producer))


@pytest.fixture
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c
