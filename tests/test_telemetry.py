"""Tests for telemetry parsing and sources."""

import asyncio
import httpx
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flowtune.services.telemetry import (
    ActionTelemetry, HttpTelemetrySource, InMemoryTelemetrySource, InvalidTelemetryError,
    PlayerTelemetryLog, SessionMetrics,
)


class TestActionParsing:
    """Tests for ActionTelemetry.from_dict."""

    def test_camel_case_aliases(self):
        action = ActionTelemetry.from_dict({
            "type": "build", "timestamp": 1000, "decisionTime": 2500,
            "riskLevel": 0.3, "isOptimal": True, "outputValue": 40, "inputCost": 20,
        })
        assert action.decision_time_ms == 2500
        assert action.risk_level == 0.3
        assert action.is_optimal is True
        assert action.output_value == 40
        assert action.input_cost == 20

    def test_decision_time_ms_alias(self):
        action = ActionTelemetry.from_dict({"type": "move", "decisionTimeMs": 1500})
        assert action.decision_time_ms == 1500

    def test_millisecond_timestamps(self):
        action = ActionTelemetry.from_dict({"type": "build", "timestamp": 1_700_000_000_000})
        assert action.timestamp == pytest.approx(1_700_000_000)

    def test_garbage_optional_fields_become_none(self):
        action = ActionTelemetry.from_dict({"type": "build", "timestamp": 1, "riskLevel": "high",
                                            "isError": "maybe"})
        assert action.risk_level is None
        assert action.is_error is None

    def test_missing_type_is_rejected(self):
        with pytest.raises(InvalidTelemetryError):
            ActionTelemetry.from_dict({"timestamp": 1})

    def test_non_mapping_is_rejected(self):
        with pytest.raises(InvalidTelemetryError):
            ActionTelemetry.from_dict(["build"])

    def test_quality(self):
        assert ActionTelemetry(type="a", timestamp=0, is_error=True, is_optimal=True).quality == 0.0
        assert ActionTelemetry(type="a", timestamp=0, is_optimal=True).quality == 1.0
        assert ActionTelemetry(type="a", timestamp=0).quality == 0.5
        assert ActionTelemetry(type="a", timestamp=0, quality_score=0.8).quality == 0.8


class TestTelemetryLog:
    """Tests for PlayerTelemetryLog."""

    def test_actions_are_capped_fifo(self):
        log = PlayerTelemetryLog(player_id="p1", max_actions=100)
        log.add_actions({"type": "move", "timestamp": float(i)} for i in range(150))
        assert log.data_points == 100
        assert log.actions[0].timestamp == 50.0

    def test_batch_is_sorted_and_windowed(self):
        log = PlayerTelemetryLog(player_id="p1")
        log.add_actions([{"type": "move", "timestamp": t} for t in (3.0, 1.0, 2.0)])
        assert [a.timestamp for a in log.window(2)] == [2.0, 3.0]

    def test_invalid_batch_adds_nothing(self):
        log = PlayerTelemetryLog(player_id="p1")
        with pytest.raises(InvalidTelemetryError):
            log.add_actions([{"type": "move", "timestamp": 1.0}, {"timestamp": 2.0}])
        assert log.data_points == 0

    def test_session_metrics_defaults(self):
        session = SessionMetrics.from_dict({"sessionDuration": 600, "idleTime": -5})
        assert session.session_duration == 600
        assert session.idle_time == 0.0
        assert session.feature_usage_rate == 0.5


class TestTelemetrySources:
    """Tests for the pull-based telemetry sources."""

    def test_in_memory_source_drains(self):
        source = InMemoryTelemetrySource()
        source.push("p1", [{"type": "move", "timestamp": 5.0}, {"type": "move", "timestamp": 15.0}],
                    session_metrics={"session_duration": 60})
        actions = asyncio.run(source.fetch_actions("p1", since=10.0))
        assert [a["timestamp"] for a in actions] == [5.0, 15.0]
        assert asyncio.run(source.fetch_actions("p1")) == []
        assert asyncio.run(source.fetch_session_metrics("p1")) == {"session_duration": 60}

    def test_in_memory_source_keeps_untimed_actions(self):
        source = InMemoryTelemetrySource()
        source.push("p1", [{"type": "move", "is_error": True}])
        actions = asyncio.run(source.fetch_actions("p1", since=1000.0))
        assert actions == [{"type": "move", "is_error": True}]

        log = PlayerTelemetryLog(player_id="p1")
        log.add_actions(actions)
        assert log.data_points == 1
        assert log.actions[0].is_error is True

    def test_http_source(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["x-api-key"] == "secret"
            if request.url.path == "/players/p1/actions":
                assert request.url.params["since"] == "10.0"
                return httpx.Response(200, json={"actions": [{"type": "move", "timestamp": 11.0}]})
            if request.url.path == "/players/p1/session":
                return httpx.Response(200, json={"session_duration": 300})
            return httpx.Response(404)

        source = HttpTelemetrySource("http://telemetry.test", api_key="secret",
                                     transport=httpx.MockTransport(handler))

        async def scenario():
            actions = await source.fetch_actions("p1", since=10.0)
            session = await source.fetch_session_metrics("p1")
            missing = await source.fetch_session_metrics("p2")
            await source.close()
            return actions, session, missing

        actions, session, missing = asyncio.run(scenario())
        assert actions == [{"type": "move", "timestamp": 11.0}]
        assert session == {"session_duration": 300}
        assert missing is None

    def test_http_errors_are_not_fatal(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        source = HttpTelemetrySource("http://telemetry.test", transport=httpx.MockTransport(handler))

        async def scenario():
            actions = await source.fetch_actions("p1")
            session = await source.fetch_session_metrics("p1")
            await source.close()
            return actions, session

        assert asyncio.run(scenario()) == ([], None)
