"""
Test Health Check Endpoints

1. Shallow health check - liveness, backends in use, queue counters
2. Deep health check - storage, persistence and enrichment queue status
"""
import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.core.exceptions import PersistenceError
from app.engine.compression_engine import CompressionEngine
from app.main import app
from app.services import container as container_module
from app.services.container import build_container

from conftest import FailingStorageGateway, FlakyRepository, ScriptedAIService, StaticExtractor


class BrokenTotalsRepository(FlakyRepository):
    async def get_size_totals(self, owner_id=None):
        raise PersistenceError("connection refused")


def memory_container(repository=None):
    config = Settings(storage_backend="memory", persistence_backend="memory")
    return build_container(
        config,
        storage=FailingStorageGateway(),
        repository=repository or FlakyRepository(),
        ai_service=ScriptedAIService(),
        engine=CompressionEngine(level=9, image_extractor=StaticExtractor(None)),
    )


@pytest.fixture
def client():
    container_module._container = memory_container()
    with TestClient(app) as test_client:
        yield test_client
    container_module.reset_container()


class TestShallowHealth:

    def test_reports_backends_and_queue(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "ok"
        assert data["storage_backend"] == "memory"
        assert data["persistence_backend"] == "memory"
        assert data["enrichment_queue"]["jobs_submitted"] == 0
        assert data["enrichment_queue"]["workers"] == 4


class TestDeepHealth:

    def test_all_components_healthy(self, client):
        response = client.get("/api/v1/health/deep")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert set(data["components"]) == {"api", "storage", "persistence", "enrichment_queue"}
        assert data["components"]["enrichment_queue"]["status"] == "healthy"
        assert "capacity" in data["enrichment_queue"]

    def test_persistence_failure_is_unhealthy(self):
        container_module._container = memory_container(repository=BrokenTotalsRepository())
        with TestClient(app) as client:
            data = client.get("/api/v1/health/deep").json()
        container_module.reset_container()

        assert data["status"] == "unhealthy"
        assert data["components"]["persistence"]["status"] == "unavailable"
        assert "connection refused" in data["components"]["persistence"]["message"]


class TestRoot:

    def test_root(self, client):
        data = client.get("/").json()
        assert data["service"]
        assert data["version"]

    def test_v1_root(self, client):
        assert client.get("/api/v1/").json() == {"api": "v1", "status": "active"}
