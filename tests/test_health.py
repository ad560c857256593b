import pytest
from httpx import ASGITransport, AsyncClient

from pupu.core.identity import AuthUser
from pupu.core.security import current_user
from pupu.main import app


@pytest.mark.asyncio
async def test_health_endpoint_returns_ok() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["keystore"] == "sqlite"
    assert data["providers"] == {"openai": False, "gemini": False, "elevenlabs": False, "search": False, "xai": False}
    assert response.headers["X-Trace-Id"]


@pytest.mark.asyncio
async def test_store_health_requires_user() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health/store")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_store_health_for_user() -> None:
    app.dependency_overrides[current_user] = lambda: AuthUser(id="user-1", email="me@example.com")
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health/store")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 200
    assert response.json()["message"] == "Key store connection successful for user: me@example.com"
