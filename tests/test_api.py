"""Tests for the HTTP API."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm.exc import StaleDataError

import backend.srs.session as review_service
from backend.database import async_session, init_db
from backend.main import app
from backend.models.member import Member
from backend.models.phrase import Phrase
from backend.srs.session import create_card


async def seed(new_cards: int = 1) -> tuple[int, list[int]]:
    await init_db()
    async with async_session() as db:
        member = Member(name="API Member")
        db.add(member)
        await db.flush()
        card_ids = []
        for _ in range(new_cards):
            phrase = Phrase(prompt=f"api {uuid.uuid4().hex}", canonical_answer="hola")
            db.add(phrase)
            await db.flush()
            card_ids.append((await create_card(db, member.id, phrase.id)).id)
        await db.commit()
        return member.id, card_ids


def client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_session_start_lists_previews() -> None:
    member_id, card_ids = await seed(new_cards=2)
    async with client() as api:
        response = await api.post("/api/session/start", params={"member_id": member_id})
    assert response.status_code == 200
    body = response.json()
    assert body["total_cards"] == 2
    assert body["new_cards"] == 2
    assert [c["card_id"] for c in body["cards"]] == card_ids
    previews = body["cards"][0]["previews"]
    assert [p["rating"] for p in previews] == ["again", "hard", "good", "easy"]
    assert previews[0]["interval_label"] == "1m"
    assert previews[2]["interval_label"] == "10m"


@pytest.mark.asyncio
async def test_rate_card() -> None:
    _, (card_id,) = await seed()
    async with client() as api:
        response = await api.post(
            "/api/session/rate",
            json={"card_id": card_id, "rating": "good", "response_time_ms": 2500},
        )
    assert response.status_code == 200
    body = response.json()
    assert body["card"]["state"] == "learning"
    assert body["card"]["reviews"] == 1
    assert body["interval_label"] == "10m"
    assert body["review_log_id"] >= 1
    assert body["struggle_event"] is None


@pytest.mark.asyncio
async def test_rate_rejects_unknown_rating() -> None:
    _, (card_id,) = await seed()
    async with client() as api:
        response = await api.post("/api/session/rate", json={"card_id": card_id, "rating": "great"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_rate_missing_card() -> None:
    await init_db()
    async with client() as api:
        response = await api.post("/api/session/rate", json={"card_id": 999_999, "rating": "good"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_settings_endpoints() -> None:
    member_id, _ = await seed(new_cards=0)
    async with client() as api:
        response = await api.get(f"/api/settings/{member_id}")
        assert response.status_code == 200
        assert response.json()["target_retention"] == 0.9
        assert response.json()["learning_steps"] == ["1m", "10m"]

        response = await api.put(f"/api/settings/{member_id}", json={"new_per_day": 5, "timezone": "Europe/Paris"})
        assert response.status_code == 200
        assert response.json()["new_per_day"] == 5
        assert response.json()["timezone"] == "Europe/Paris"

        response = await api.put(f"/api/settings/{member_id}", json={"reviews_per_day": 500})
        assert response.status_code == 422

        response = await api.put(f"/api/settings/{member_id}", json={"relearning_steps": ["10 minutes"]})
        assert response.status_code == 422

        response = await api.get(f"/api/settings/{member_id}")
        assert response.json()["new_per_day"] == 5
        assert response.json()["reviews_per_day"] == 100


@pytest.mark.asyncio
async def test_struggle_flow() -> None:
    member_id, (card_id,) = await seed()
    async with client() as api:
        for _ in range(5):
            response = await api.post("/api/session/rate", json={"card_id": card_id, "rating": "again"})
            assert response.status_code == 200
        event = response.json()["struggle_event"]
        assert event["trigger"] == "consecutive_5"
        assert response.json()["card"]["assist_level"] == 1

        response = await api.get(f"/api/struggles/{member_id}", params={"open_only": True})
        assert [e["id"] for e in response.json()] == [event["id"]]

        response = await api.post(f"/api/struggles/{event['id']}/resolve", json={"resolver_id": member_id})
        assert response.status_code == 200
        assert response.json()["resolved_by"] == member_id

        response = await api.post(f"/api/struggles/{event['id']}/resolve", json={"resolver_id": member_id})
        assert response.status_code == 409

        response = await api.post("/api/struggles/999999/resolve", json={"resolver_id": member_id})
        assert response.status_code == 404

        response = await api.get(f"/api/struggles/{member_id}", params={"open_only": True})
        assert response.json() == []


@pytest.mark.asyncio
async def test_card_actions() -> None:
    _, (card_id,) = await seed()
    async with client() as api:
        response = await api.post(f"/api/cards/{card_id}/bury")
        assert response.json()["status"] == "buried"

        response = await api.post(f"/api/cards/{card_id}/restore")
        assert response.json()["status"] == "active"

        response = await api.post(f"/api/cards/{card_id}/flag", json={"reason": "wrong accent"})
        assert response.json()["flag_reason"] == "wrong accent"

        response = await api.post(f"/api/cards/{card_id}/note", json={"note": "formal only"})
        assert response.json()["note"] == "formal only"

        response = await api.post(f"/api/cards/{card_id}/remove")
        assert response.json()["status"] == "removed"

        response = await api.post(f"/api/cards/{card_id}/suspend")
        assert response.status_code == 409

        response = await api.post("/api/session/rate", json={"card_id": card_id, "rating": "good"})
        assert response.status_code == 409

        response = await api.get(f"/api/cards/{card_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "removed"

        response = await api.post("/api/cards/999999/bury")
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_member_stats() -> None:
    member_id, (card_id, _) = await seed(new_cards=2)
    async with client() as api:
        await api.post("/api/session/rate", json={"card_id": card_id, "rating": "easy"})
        response = await api.get(f"/api/stats/{member_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["total_cards"] == 2
    assert body["review"] == 1
    assert body["new"] == 1
    assert body["total_reviews"] == 1
    assert body["streak_days"] == 1


@pytest.mark.asyncio
async def test_rate_conflict_returns_409(monkeypatch: pytest.MonkeyPatch) -> None:
    _, (card_id,) = await seed()

    async def always_stale(*args, **kwargs):
        raise StaleDataError("card row changed")

    monkeypatch.setattr(review_service, "_rate_once", always_stale)
    async with client() as api:
        response = await api.post("/api/session/rate", json={"card_id": card_id, "rating": "good"})
    assert response.status_code == 409
    assert "reload" in response.json()["detail"]
