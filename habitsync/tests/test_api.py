"""
Tests for the FastAPI application.

Tests cover:
1. Authentication headers
2. Error mapping (400/404/429)
3. Habit, completion, XP and sync endpoints end to end
4. Settings
"""
import pytest
from fastapi.testclient import TestClient

from habitsync.auth import API_KEY
from habitsync.database import get_db
from habitsync.main import app, get_clock, get_events, get_worker

USER_HEADERS = {"X-API-Key": API_KEY, "X-User-Id": "user-1"}


@pytest.fixture
def client(db_session, clock, event_bus, worker):
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_events] = lambda: event_bus
    app.dependency_overrides[get_worker] = lambda: worker
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def habit_id(client):
    response = client.post("/api/habits", json={"name": "Stretch"}, headers=USER_HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


class TestAuth:
    """Tests for API key and user id headers"""

    def test_health_check_is_public(self, client):
        """Should answer the health check without credentials"""
        assert client.get("/").json()["status"] == "active"

    def test_missing_api_key(self, client):
        """Should reject requests without an API key"""
        response = client.get("/api/habits", headers={"X-User-Id": "user-1"})
        assert response.status_code == 401

    def test_missing_user_id(self, client):
        """Should reject requests without a user id"""
        response = client.get("/api/habits", headers={"X-API-Key": API_KEY})
        assert response.status_code == 401


class TestHabitEndpoints:
    """Tests for /api/habits"""

    def test_create_syncs_in_background(self, client, remote):
        """Should create the habit and push it to the remote store after the response"""
        response = client.post("/api/habits", json={"name": "Journal"}, headers=USER_HEADERS)

        body = response.json()
        assert response.status_code == 201
        assert body["name"] == "Journal"
        assert body["sync_backlogged"] is False
        assert remote.calls == [("create", "habit", body["id"])]

    def test_invalid_name_is_400(self, client):
        """Should map a validation error to 400"""
        response = client.post("/api/habits", json={"name": "Bad <name>"}, headers=USER_HEADERS)
        assert response.status_code == 400

    def test_unknown_habit_is_404(self, client):
        """Should map a missing habit to 404"""
        assert client.get("/api/habits/missing", headers=USER_HEADERS).status_code == 404

    def test_list_and_update(self, client, habit_id):
        """Should list the habit with its updated description"""
        client.put(f"/api/habits/{habit_id}", json={"description": "Morning"}, headers=USER_HEADERS)

        habits = client.get("/api/habits", headers=USER_HEADERS).json()
        assert [h["description"] for h in habits] == ["Morning"]

    def test_description_cleared_with_null(self, client, habit_id):
        """Should clear the description when the client sends null"""
        client.put(f"/api/habits/{habit_id}", json={"description": "Morning"}, headers=USER_HEADERS)

        response = client.put(f"/api/habits/{habit_id}", json={"description": None}, headers=USER_HEADERS)

        assert response.json()["description"] is None
        assert response.json()["name"] == "Stretch"

    def test_delete(self, client, habit_id):
        """Should delete the habit and return 204"""
        response = client.delete(f"/api/habits/{habit_id}", headers=USER_HEADERS)
        assert response.status_code == 204
        assert client.get(f"/api/habits/{habit_id}", headers=USER_HEADERS).status_code == 404


class TestCompletionEndpoints:
    """Tests for completing habits and reading progress"""

    def test_complete_then_duplicate(self, client, habit_id):
        """Should award once and return the same record for a repeat completion"""
        first = client.post(f"/api/habits/{habit_id}/complete", json={"notes": "easy"}, headers=USER_HEADERS)
        second = client.post(f"/api/habits/{habit_id}/complete", headers=USER_HEADERS)

        assert first.status_code == 200
        assert first.json()["xp_awarded"] == 60
        assert first.json()["record"]["logical_date"] == "2024-06-12"
        assert second.json()["duplicate"] is True
        assert second.json()["record"]["id"] == first.json()["record"]["id"]

    def test_completion_synced_at_stamped_after_drain(self, client, habit_id):
        """Should stamp synced_at once the background drain pushed the completion"""
        client.post(f"/api/habits/{habit_id}/complete", headers=USER_HEADERS)

        completions = client.get(f"/api/habits/{habit_id}/completions", headers=USER_HEADERS).json()
        assert completions[0]["synced_at"] is not None

    def test_progress_and_delete_completion(self, client, habit_id):
        """Should report progress and recompute it after a completion is deleted"""
        record_id = client.post(
            f"/api/habits/{habit_id}/complete", headers=USER_HEADERS
        ).json()["record"]["id"]

        progress = client.get(f"/api/habits/{habit_id}/progress", headers=USER_HEADERS).json()
        assert progress["current_streak"] == 1
        assert progress["decay_tier"] == "healthy"

        snapshot = client.delete(f"/api/completions/{record_id}", headers=USER_HEADERS).json()
        assert snapshot["current_streak"] == 0

    def test_weather(self, client, habit_id):
        """Should report rainbow when every scheduled habit is done"""
        client.post(f"/api/habits/{habit_id}/complete", headers=USER_HEADERS)

        weather = client.get("/api/weather", headers=USER_HEADERS).json()
        assert weather["condition"] == "rainbow"
        assert weather["completion_rate"] == 1.0


class TestXpEndpoints:
    """Tests for /api/xp"""

    def test_daily_login_and_statistics(self, client):
        """Should pay the daily login once and show it in the breakdown"""
        client.post("/api/xp/daily-login", headers=USER_HEADERS)
        client.post("/api/xp/daily-login", headers=USER_HEADERS)

        stats = client.get("/api/xp", headers=USER_HEADERS).json()
        assert stats["total_xp"] == 5
        assert stats["breakdown"]["dailyLogin"] == 5

    def test_rewarded_ad_cap_is_429(self, client):
        """Should map the rewarded-ad cap to 429"""
        client.put("/api/settings", json={"max_rewarded_ads_per_day": 0}, headers=USER_HEADERS)

        response = client.post("/api/xp/rewarded-ad", json={"ad_id": "ad-1"}, headers=USER_HEADERS)
        assert response.status_code == 429

    def test_manual_amount_out_of_range_is_400(self, client):
        """Should reject manual awards above the limit with 400"""
        response = client.post(
            "/api/xp/manual", json={"amount": 20000, "description": "oops"}, headers=USER_HEADERS
        )
        assert response.status_code == 400


class TestSyncEndpoints:
    """Tests for /api/sync"""

    def test_status_after_background_drain(self, client, habit_id):
        """Should count the synced create in the status"""
        status = client.get("/api/sync/status", headers=USER_HEADERS).json()
        assert status["synced"] == 1
        assert status["pending"] == 0

    def test_failed_drain_shows_retryable(self, client, remote, transient_error):
        """Should list a transiently failed operation as retryable"""
        remote.fail_always = transient_error
        client.post("/api/habits", json={"name": "Journal"}, headers=USER_HEADERS)

        status = client.get("/api/sync/status", headers=USER_HEADERS).json()
        assert status["retryable"] == 1

        operations = client.get(
            "/api/sync/operations", params={"status_filter": "failed"}, headers=USER_HEADERS
        ).json()
        assert operations[0]["retry_count"] == 1

    def test_manual_drain(self, client, remote, clock, transient_error):
        """Should retry a failed operation when a drain is requested"""
        remote.fail_next(1, transient_error)
        client.post("/api/habits", json={"name": "Journal"}, headers=USER_HEADERS)
        clock.advance(minutes=1)

        result = client.post("/api/sync/drain", headers=USER_HEADERS).json()
        assert result["synced"] == 1

    def test_unknown_operation_is_404(self, client):
        """Should map a missing sync operation to 404"""
        assert client.get("/api/sync/operations/missing", headers=USER_HEADERS).status_code == 404


class TestSettingsEndpoints:
    """Tests for /api/settings"""

    def test_defaults(self, client):
        """Should create settings with defaults on first read"""
        settings = client.get("/api/settings", headers=USER_HEADERS).json()
        assert settings["grace_period_minutes"] == 180
        assert settings["timezone"] == "UTC"
        assert settings["sync_queue_capacity"] == 1000

    def test_update(self, client):
        """Should apply a partial settings update"""
        response = client.put(
            "/api/settings", json={"timezone": "Europe/Berlin", "max_habits": 10}, headers=USER_HEADERS
        )
        assert response.json()["timezone"] == "Europe/Berlin"
        assert response.json()["max_habits"] == 10

    def test_unknown_timezone_is_400(self, client):
        """Should reject an unknown IANA timezone with 400"""
        response = client.put("/api/settings", json={"timezone": "Nowhere/City"}, headers=USER_HEADERS)
        assert response.status_code == 400

    def test_out_of_range_grace_period_is_422(self, client):
        """Should reject a grace period outside the schema bounds with 422"""
        response = client.put("/api/settings", json={"grace_period_minutes": 1000}, headers=USER_HEADERS)
        assert response.status_code == 422
