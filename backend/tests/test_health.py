"""Integration tests for the backend health endpoint."""
import pytest
from httpx import ASGITransport, AsyncClient

from certapi.core.config import Settings
from certapi.deps import build_rate_limit_gate
from certapi.main import app
from certapi.security import get_rate_limit_gate


@pytest.mark.anyio("asyncio")
async def test_health_endpoint_returns_ok(tmp_path) -> None:
    gate = build_rate_limit_gate(Settings(issuer_store_path=str(tmp_path / "i.jsonl"), redis_url=None))
    app.dependency_overrides[get_rate_limit_gate] = lambda: gate
    transport = ASGITransport(app=app, raise_app_exceptions=True)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")
    finally:
        app.dependency_overrides.pop(get_rate_limit_gate, None)
        gate.limiter.dispatcher.close()

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert "X-RateLimit-Limit" not in response.headers
