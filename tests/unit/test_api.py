"""
Unit tests for the learning analytics HTTP API.

The app is built around a pre-wired in-memory engine; the lifespan is not
entered, so no database is touched.
"""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from src.api.main import create_app

PREFIX = "/learning-analytics"


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine=engine, check_database=False))


def _post_outcome(client, content_id="q-1", **overrides):
    payload = {
        "learner_id": "learner-1",
        "content_id": content_id,
        "correctness": True,
        "response_time_ms": 4000,
        "timestamp": "2026-03-02T09:00:00+00:00",
        "topic": "routing",
    }
    payload.update(overrides)
    return client.post(f"{PREFIX}/outcomes", json=payload)


class TestHealth:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "learning-analytics"

    def test_health_reports_engine(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["components"] == {"database": "not_checked", "engine": "running"}
        assert body["engine"]["active_flow_sessions"] == 0

    def test_missing_engine_is_unavailable(self):
        client = TestClient(create_app(check_database=False))

        assert client.get("/health").json()["status"] == "unhealthy"
        assert client.get(f"{PREFIX}/user-profile", params={"learner_id": "learner-1"}).status_code == 503


class TestOutcomes:
    def test_record_and_read_back(self, client):
        response = _post_outcome(client)

        assert response.status_code == 200
        assert response.json()["repetition_count"] == 1
        assert response.json()["version"] == 1

        item = client.get(f"{PREFIX}/items/learner-1/q-1")
        assert item.status_code == 200
        assert item.json()["next_due_at"] == "2026-03-03T09:00:00+00:00"

    def test_repost_is_idempotent(self, client):
        first = _post_outcome(client).json()
        second = _post_outcome(client).json()

        assert first == second

    def test_invalid_score_is_bad_request(self, client):
        assert _post_outcome(client, correctness=1.5).status_code == 400

    def test_unknown_item_is_not_found(self, client):
        assert client.get(f"{PREFIX}/items/learner-1/missing").status_code == 404


class TestQueues:
    def test_due_reviews(self, client, engine):
        engine.record_outcome(
            "learner-1", "q-1", "quiz_question", True, 4000, datetime.now(UTC) - timedelta(days=3)
        )

        body = client.get(f"{PREFIX}/spaced-repetition", params={"learner_id": "learner-1", "limit": 5}).json()

        assert [r["content_id"] for r in body["reviews"]] == ["q-1"]
        assert body["summary"]["total_items_to_review"] == 1

    def test_non_positive_limit_is_bad_request(self, client):
        response = client.get(f"{PREFIX}/spaced-repetition", params={"learner_id": "learner-1", "limit": 0})

        assert response.status_code == 400

    def test_forgetting_curve(self, client, engine):
        engine.record_outcome("learner-1", "q-1", "quiz_question", True, 4000, datetime.now(UTC))

        body = client.get(f"{PREFIX}/forgetting-curve", params={"learner_id": "learner-1"}).json()

        assert body["summary"]["total_items"] == 1
        assert body["risks"][0]["content_id"] == "q-1"


class TestProfiles:
    def test_placeholder_profile(self, client):
        body = client.get(f"{PREFIX}/user-profile", params={"learner_id": "learner-1"}).json()

        assert body["version"] == 0
        assert body["stage"] == "insufficient_data"

    def test_synchronous_rebuild(self, client):
        _post_outcome(client)

        body = client.post(f"{PREFIX}/personal-analysis", json={"learner_id": "learner-1"}).json()

        assert body["version"] == 1
        assert body["record_count"] == 1

    def test_background_rebuild_is_queued(self, client, engine):
        _post_outcome(client)

        body = client.post(f"{PREFIX}/personal-analysis", json={"learner_id": "learner-1", "background": True}).json()

        assert body == {"learner_id": "learner-1", "queued": True}
        assert engine.refresher.wait_until_idle(timeout=5)


class TestDashboard:
    def test_dashboard_combines_profile_queue_and_metrics(self, client, engine):
        engine.record_outcome(
            "learner-1", "q-1", "quiz_question", True, 4000, datetime.now(UTC) - timedelta(days=3)
        )

        body = client.get(f"{PREFIX}/dashboard", params={"learner_id": "learner-1"}).json()

        assert body["learner_id"] == "learner-1"
        assert body["profile"]["version"] == 0
        assert body["learning_stage"]["stage"] == "analyzing"
        assert [r["content_id"] for r in body["due_reviews"]] == ["q-1"]
        assert body["forgetting_curve"]["summary"]["total_items"] == 1
        assert body["metrics"]["reviews_due"] == 1

    def test_dashboard_after_rebuild_shows_cognitive_load(self, client):
        _post_outcome(client)
        client.post(f"{PREFIX}/personal-analysis", json={"learner_id": "learner-1"})

        body = client.get(f"{PREFIX}/dashboard", params={"learner_id": "learner-1"}).json()

        assert body["profile"]["version"] == 1
        assert set(body["profile"]["cognitive_load"]) == {
            "optimal_session_minutes",
            "current_load_level",
            "load_tolerance",
            "fatigue_threshold_minutes",
        }

    def test_dashboard_bad_limit(self, client):
        response = client.get(f"{PREFIX}/dashboard", params={"learner_id": "learner-1", "limit": 0})

        assert response.status_code == 400


class TestFlowGuidance:
    def _guidance(self, client, **overrides):
        payload = {
            "session_id": "session-1",
            "learner_id": "learner-1",
            "accuracy": 1.0,
            "time_elapsed_minutes": 2,
            "recent_response_times": [3000],
        }
        payload.update(overrides)
        return client.post(f"{PREFIX}/flow-guidance", json=payload)

    def test_boredom_after_full_window(self, client):
        responses = [self._guidance(client).json() for _ in range(5)]

        assert responses[0]["zone"] == "insufficient_signal"
        assert responses[-1]["zone"] == "boredom"
        assert responses[-1]["recommended_delta"] == 1
        assert responses[-1]["suggested_difficulty"] == "advanced"

    def test_other_learner_is_bad_request(self, client):
        self._guidance(client)

        assert self._guidance(client, learner_id="learner-2").status_code == 400

    def test_unknown_difficulty_is_bad_request(self, client):
        assert self._guidance(client, current_difficulty="legendary").status_code == 400

    def test_end_session(self, client):
        self._guidance(client)

        assert client.delete(f"{PREFIX}/flow-guidance/session-1").json() == {"session_id": "session-1", "ended": True}
        assert client.delete(f"{PREFIX}/flow-guidance/session-1").status_code == 404
