"""Tests for the HTTP API."""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient

from flowtune.api.deps import get_difficulty_service
from flowtune.main import app
from flowtune.services.difficulty_service import DifficultyService


class FakeClock:
    def __init__(self, t=10000.0):
        self.t = t

    def __call__(self):
        return self.t


def telemetry_batch(n=15):
    return {
        "actions": [
            {"type": "property_purchase", "timestamp": 9000.0 + i, "decision_time_ms": 1500,
             "risk_level": 0.5, "is_optimal": True, "is_error": False,
             "immediate_value": 100, "output_value": 150, "input_cost": 100}
            for i in range(n)
        ],
        "session_metrics": {"session_duration": 3600, "idle_time": 60, "feature_usage_rate": 1.0},
    }


@pytest.fixture
def client():
    service = DifficultyService(clock=FakeClock())
    app.dependency_overrides[get_difficulty_service] = lambda: service
    # No context manager: the lifespan (database, background loops) stays off
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    """Tests for root endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestPlayerRoutes:
    """Tests for /players routes."""

    def test_unknown_player_difficulty_is_neutral(self, client):
        response = client.get("/api/v1/players/p1/difficulty")
        assert response.status_code == 200
        assert response.json()["ai_skill_level"] == 0.5

    def test_telemetry_triggers_adjustment(self, client):
        response = client.post("/api/v1/players/p1/telemetry", json=telemetry_batch())
        assert response.status_code == 200
        body = response.json()
        assert body["adjusted"] is True
        assert body["transition"]["player_id"] == "p1"
        assert body["difficulty"]["overall_difficulty"] > 0.5

        transitions = client.get("/api/v1/players/p1/transitions").json()
        assert len(transitions) == 1
        assert transitions[0]["id"] == body["transition"]["id"]

    def test_camel_case_telemetry_matches_snake_case(self, client):
        camel = {
            "actions": [
                {"type": "property_purchase", "timestamp": 9000.0 + i, "decisionTimeMs": 1500,
                 "riskLevel": 0.5, "isOptimal": True, "isError": False,
                 "immediateValue": 100, "outputValue": 150, "inputCost": 100}
                for i in range(15)
            ],
            "sessionMetrics": {"sessionDuration": 3600, "idleTime": 60, "featureUsageRate": 1.0},
        }
        from_camel = client.post("/api/v1/players/camel/telemetry", json=camel).json()
        from_snake = client.post("/api/v1/players/snake/telemetry", json=telemetry_batch()).json()
        assert from_camel["adjusted"] is True
        assert from_camel["difficulty"] == from_snake["difficulty"]

    def test_small_batch_is_a_no_op(self, client):
        response = client.post("/api/v1/players/p1/telemetry", json=telemetry_batch(n=2))
        assert response.status_code == 200
        assert response.json()["adjusted"] is False

    def test_invalid_action_is_rejected(self, client):
        response = client.post("/api/v1/players/p1/telemetry", json={"actions": [{"timestamp": 1}]})
        assert response.status_code == 422

    def test_record_game(self, client):
        response = client.post("/api/v1/players/p1/games",
                               json={"outcome_quality": 0.8, "score": 0.7, "game_duration": 1500})
        assert response.status_code == 201

    def test_prediction(self, client):
        response = client.get("/api/v1/players/p1/prediction", params={"horizon_s": 600})
        assert response.status_code == 200
        body = response.json()
        assert body["horizon_s"] == 600
        assert [a["name"] for a in body["alternatives"]] == ["conservative", "aggressive"]

    def test_session_lifecycle(self, client):
        started = client.post("/api/v1/players/p1/session")
        assert started.status_code == 200
        assert started.json()["active"] is True

        ended = client.delete("/api/v1/players/p1/session")
        assert ended.status_code == 200
        assert ended.json()["active"] is False

        assert client.delete("/api/v1/players/p1/session").status_code == 404


class TestFlowAndEngineRoutes:
    """Tests for /flow and /engine routes."""

    def test_flow_analysis_requires_data(self, client):
        assert client.get("/api/v1/flow/p1/analysis").status_code == 404

    def test_flow_analysis_and_history(self, client):
        client.post("/api/v1/players/p1/telemetry", json=telemetry_batch())
        analysis = client.get("/api/v1/flow/p1/analysis")
        assert analysis.status_code == 200
        assert "flow_phase" in analysis.json()["current"]

        history = client.get("/api/v1/flow/p1/history").json()
        assert len(history) == 1

    def test_engine_stats(self, client):
        client.post("/api/v1/players/p1/telemetry", json=telemetry_batch())
        stats = client.get("/api/v1/engine/stats").json()
        assert stats["total_transitions"] == 1
        assert stats["active_players"] == 1

    def test_service_missing_is_unavailable(self):
        app.dependency_overrides.clear()
        response = TestClient(app).get("/api/v1/engine/stats")
        assert response.status_code == 503
