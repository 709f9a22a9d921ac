"""Tests for the HTTP surface, backed by the in-memory store."""

import pytest
from fastapi.testclient import TestClient

from classworld.config import ServerConfig, get_server_config
from classworld.main import app, get_store, get_signals
from classworld.memory_store import MemoryWorldStore
from classworld.signals import MemoryClassroomSignals


WORLD = "/api/classrooms/c1/students/u1/world"


@pytest.fixture
def api_store():
    return MemoryWorldStore()


@pytest.fixture
def client(api_store):
    memory_signals = MemoryClassroomSignals()
    app.dependency_overrides[get_store] = lambda: api_store
    app.dependency_overrides[get_signals] = lambda: memory_signals
    app.dependency_overrides[get_server_config] = lambda: ServerConfig(cron_secret="s3cret")
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================================
# Health and snapshot
# ============================================================================


class TestWorldRoutes:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_config_summary_masks_secret(self, client):
        response = client.get("/api/config")

        assert response.status_code == 200
        summary = response.json()
        assert summary["server"]["has_cron_secret"] is True
        assert "s3cret" not in response.text
        assert summary["world"]["xp_per_level"] == 100

    def test_snapshot_creates_world(self, client, api_store):
        response = client.get(WORLD)

        assert response.status_code == 200
        world = response.json()["world"]
        assert world["xp"] == 0
        assert world["level"] == 0
        assert world["unlocks"] == [0]
        assert len(api_store.states) == 1

    def test_grant_xp_and_cap(self, client):
        first = client.post(f"{WORLD}/xp", json={"source": "daily_login"})
        second = client.post(f"{WORLD}/xp", json={"source": "daily_login"})

        assert first.status_code == 200
        assert first.json()["granted"] is True
        assert first.json()["xp_awarded"] == 10
        assert second.json()["granted"] is False

    def test_unknown_source_is_bad_request(self, client):
        response = client.post(f"{WORLD}/xp", json={"source": "free_xp"})
        assert response.status_code == 400

    def test_grant_achievements(self, client):
        body = {"items": [{"achievement_id": "streak_3", "reward_key": "cycle:0"}]}

        first = client.post(f"{WORLD}/achievements", json=body)
        second = client.post(f"{WORLD}/achievements", json=body)

        assert first.json()["total_xp_awarded"] == 10
        assert second.json()["total_xp_awarded"] == 0

    def test_unknown_achievement_is_bad_request(self, client):
        body = {"items": [{"achievement_id": "bogus", "reward_key": "x"}]}
        assert client.post(f"{WORLD}/achievements", json=body).status_code == 400

    def test_select_image(self, client):
        assert client.post(f"{WORLD}/image", json={"image_index": 1}).status_code == 400
        assert client.post(f"{WORLD}/image", json={"image_index": 42}).status_code == 400

        response = client.post(f"{WORLD}/image", json={"image_index": 0})
        assert response.status_code == 200
        assert response.json()["selected_image"] == 0

    def test_set_overlay(self, client):
        response = client.post(WORLD, json={"action": "set_overlay", "enabled": False})
        assert response.status_code == 200
        assert response.json()["world"]["overlay_enabled"] is False

    def test_set_overlay_requires_flag(self, client):
        assert client.post(WORLD, json={"action": "set_overlay"}).status_code == 400

    def test_unknown_action(self, client):
        assert client.post(WORLD, json={"action": "dance"}).status_code == 400

    def test_claim_without_event(self, client):
        response = client.post(WORLD, json={"action": "claim_daily"})
        assert response.status_code == 200
        assert response.json()["xp_awarded"] == 0
        assert response.json()["event"] is None


# ============================================================================
# Cron
# ============================================================================


class TestCronTick:

    def test_requires_bearer_secret(self, client):
        assert client.post("/api/cron/world-tick").status_code == 401
        wrong = client.post("/api/cron/world-tick", headers={"Authorization": "Bearer nope"})
        assert wrong.status_code == 401

    def test_missing_secret_is_server_error(self, client):
        app.dependency_overrides[get_server_config] = lambda: ServerConfig(cron_secret="")
        response = client.post("/api/cron/world-tick", headers={"Authorization": "Bearer "})
        assert response.status_code == 500

    def test_tick_runs_with_secret(self, client):
        client.get(WORLD)

        response = client.post("/api/cron/world-tick", headers={"Authorization": "Bearer s3cret"})

        assert response.status_code == 200
        assert set(response.json()) == {"daily_spawned", "expired", "weekly_evaluated"}
