"""Root and health endpoints."""

from types import SimpleNamespace

import pytest

from lanchonete import main


class FakeRedis:
    def __init__(self, healthy: bool):
        self.healthy = healthy

    def ping(self):
        if not self.healthy:
            raise ConnectionError("Connection refused")
        return True

    def close(self):
        pass


@pytest.fixture
def redis_up(monkeypatch):
    def install(healthy: bool):
        fake = SimpleNamespace(Redis=SimpleNamespace(from_url=lambda *a, **k: FakeRedis(healthy)))
        monkeypatch.setattr(main, "redis", fake)
    return install


async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["health"] == "/health"


async def test_health_operational(client, redis_up):
    redis_up(True)
    response = await client.get("/health")
    data = response.json()
    assert data["status"] == "operational"
    assert data["database"] == "healthy"
    assert data["notification_channel"] == "healthy"
    assert data["environment"] == "development"


async def test_health_degraded_without_redis(client, redis_up):
    redis_up(False)
    response = await client.get("/health")
    data = response.json()
    assert response.status_code == 200
    assert data["status"] == "degraded"
    assert data["database"] == "healthy"
    assert data["redis"].startswith("unhealthy")


async def test_request_id_header(client):
    response = await client.get("/", headers={"X-Request-ID": "abc-123"})
    assert response.headers["x-request-id"] == "abc-123"

    response = await client.get("/")
    assert response.headers["x-request-id"]
