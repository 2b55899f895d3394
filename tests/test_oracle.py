"""
pytest suite for the recommendation-oracle boundary: timeouts, retries,
response validation and rule-based fallbacks.
"""

import os
import sys
import time
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from careerpath.config import EngineConfig
from careerpath.errors import ExternalOracleError
from careerpath.graph_builder import build_career_graph
from careerpath.models import Deviation, ImpactAnalysis, Route
from careerpath.oracle import (
    OracleClient,
    OracleRequest,
    default_milestones,
    explain_or_template,
    suggest_milestones_or_default,
    template_explanation,
)


# =========================================================================
# Stubs
# =========================================================================

CONFIG = EngineConfig(oracle_timeout_s=0.1, oracle_max_retries=2, oracle_backoff_s=0.0)
REQUEST = OracleRequest(career_id="data_analyst", profile_summary={"age": 17})


class FlakyOracle:
    """Fails the first *failures* calls, then answers."""

    def __init__(self, failures=1):
        self.failures = failures
        self.calls = 0

    def suggest_milestones(self, request):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("transient")
        return [
            {"id": "stats", "estimated_duration": 4},
            {"id": "sql", "estimated_duration": 2, "prerequisites": ["stats"]},
        ]

    def explain_reroute(self, request):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("transient")
        return "ok"


class SleepyOracle:
    def suggest_milestones(self, request):
        time.sleep(0.5)
        return []

    def explain_reroute(self, request):
        time.sleep(0.5)
        return "late"


class BadShapeOracle:
    def suggest_milestones(self, request):
        return [{"id": "x", "estimated_duration": -3}]

    def explain_reroute(self, request):
        return "   "


# =========================================================================
# Test: Client
# =========================================================================


class TestOracleClient:
    """Timeout, retry and validation around oracle calls."""

    def test_retry_then_success(self):
        oracle = FlakyOracle(failures=1)
        client = OracleClient(oracle, CONFIG)
        specs = client.suggest_milestones(REQUEST)
        assert [s.id for s in specs] == ["stats", "sql"]
        assert oracle.calls == 2
        client.close()

    def test_retries_exhausted(self):
        oracle = FlakyOracle(failures=5)
        client = OracleClient(oracle, CONFIG)
        with pytest.raises(ExternalOracleError) as exc_info:
            client.explain_reroute(REQUEST)
        assert exc_info.value.operation == "explain_reroute"
        assert isinstance(exc_info.value.original, ConnectionError)
        assert oracle.calls == 2
        client.close()

    def test_timeout(self):
        client = OracleClient(SleepyOracle(), EngineConfig(oracle_timeout_s=0.05))
        with pytest.raises(ExternalOracleError):
            client.explain_reroute(REQUEST)
        client.close()

    def test_invalid_milestones(self):
        client = OracleClient(BadShapeOracle(), CONFIG)
        with pytest.raises(ExternalOracleError):
            client.suggest_milestones(REQUEST)
        client.close()

    def test_blank_explanation(self):
        client = OracleClient(BadShapeOracle(), CONFIG)
        with pytest.raises(ExternalOracleError):
            client.explain_reroute(REQUEST)
        client.close()


# =========================================================================
# Test: Fallbacks
# =========================================================================


class TestFallbacks:
    """Deterministic template output when the oracle is unavailable."""

    def test_no_client_uses_template(self):
        specs, source = suggest_milestones_or_default(None, REQUEST)
        assert source == "template"
        assert [s.id for s in specs] == [
            "foundations", "formal_training", "certification", "work_experience",
        ]

    def test_failing_client_uses_template(self):
        client = OracleClient(FlakyOracle(failures=10), CONFIG)
        _, source = suggest_milestones_or_default(client, REQUEST)
        text, text_source = explain_or_template(client, REQUEST, "fallback text")
        assert source == "template"
        assert (text, text_source) == ("fallback text", "template")
        client.close()

    def test_default_milestones_build_a_graph(self):
        graph = build_career_graph("data_analyst", default_milestones("data_analyst"))
        assert len(graph.routes) == 1
        assert graph.routes[0].total_duration == 45

    def test_template_explanation_mentions_deltas(self):
        deviation = Deviation(
            type="timeline_delay", severity="medium",
            description="College is running late.",
            detected_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        )
        original = Route(id="r1", career_id="c", nodes=("s", "a", "b", "d"))
        recommended = Route(id="r2", career_id="c", nodes=("s", "a", "c", "d"))
        impact = ImpactAnalysis(
            duration_delta=3.0, cost_delta="lower", difficulty_delta="same"
        )
        text = template_explanation(deviation, original, recommended, impact)
        assert "timeline delay" in text
        assert "a -> c" in text
        assert "adds 3.0 month(s)" in text
        assert "cost is lower" in text
