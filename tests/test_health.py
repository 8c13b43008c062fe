import pytest
from httpx import ASGITransport, AsyncClient

from backend.main import app


@pytest.mark.asyncio
async def test_health_check() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_review_routes_registered() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/openapi.json")
    paths = response.json()["paths"]
    assert response.json()["info"]["title"] == "Phrase SRS"
    for path in (
        "/api/session/start",
        "/api/session/rate",
        "/api/settings/{member_id}",
        "/api/struggles/{member_id}",
        "/api/struggles/{event_id}/resolve",
        "/api/cards/{card_id}/bury",
        "/api/stats/{member_id}",
    ):
        assert path in paths
