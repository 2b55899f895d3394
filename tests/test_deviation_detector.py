"""
pytest suite for deviation detection.

Scenarios run on the ``entrance_exam → college → cloud_cert →
junior_role`` route of ``sample_career.json`` (entrance_exam: 6 months,
critical exam; college: 24 months, not critical).
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from careerpath.config import EngineConfig
from careerpath.deviation_detector import detect_deviations, manual_deviation
from careerpath.graph_builder import build_career_graph
from careerpath.models import ProgressUpdate
from careerpath.progress_tracker import ProgressTracker


# =========================================================================
# Helpers & fixtures
# =========================================================================

SAMPLE_PATH = os.path.join(os.path.dirname(__file__), "sample_career.json")
T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _months(n):
    return timedelta(days=30.4375 * n)


@pytest.fixture()
def graph():
    with open(SAMPLE_PATH, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    return build_career_graph(data["career_id"], data["milestones"])


@pytest.fixture()
def tracker(graph):
    route = next(
        r for r in graph.routes
        if r.milestones == ("entrance_exam", "college", "cloud_cert", "junior_role")
    )
    t = ProgressTracker()
    t.start_tracking("p1", graph, route, at=T0)
    return t


def _set(tracker, node_id, status, at):
    return tracker.update_progress("p1", node_id, ProgressUpdate(status=status, at=at))


# =========================================================================
# Test: Timeline delay
# =========================================================================


class TestTimelineDelay:
    """In-progress milestones running past 1.5× their estimate."""

    def test_at_threshold_is_not_a_delay(self, tracker, graph):
        state = _set(tracker, "entrance_exam", "in_progress", T0)
        assert detect_deviations(state, None, graph, now=T0 + _months(9)) is None

    def test_past_threshold(self, tracker, graph):
        state = _set(tracker, "entrance_exam", "in_progress", T0)
        deviation = detect_deviations(state, None, graph, now=T0 + _months(10))
        assert deviation.type == "timeline_delay"
        assert deviation.severity == "medium"
        assert deviation.node_id == "entrance_exam"
        assert deviation.magnitude == pytest.approx(1.6667, abs=1e-4)
        assert deviation.detected_at == T0 + _months(10)

    def test_finished_late_is_not_a_delay(self, tracker, graph):
        _set(tracker, "entrance_exam", "in_progress", T0)
        state = _set(tracker, "entrance_exam", "completed", T0 + _months(12))
        assert detect_deviations(state, None, graph, now=T0 + _months(12)) is None

    def test_custom_ratio(self, tracker, graph):
        state = _set(tracker, "entrance_exam", "in_progress", T0)
        strict = EngineConfig(delay_ratio=1.0)
        deviation = detect_deviations(
            state, None, graph, now=T0 + _months(7), config=strict
        )
        assert deviation is not None and deviation.type == "timeline_delay"


# =========================================================================
# Test: Milestone failure
# =========================================================================


class TestMilestoneFailure:
    """Failed critical milestones outrank every other deviation."""

    def test_failed_exam(self, tracker, graph):
        _set(tracker, "entrance_exam", "in_progress", T0)
        state = _set(tracker, "entrance_exam", "failed", T0 + _months(6))
        deviation = detect_deviations(state, None, graph, now=T0 + _months(6))
        assert deviation.type == "milestone_failure"
        assert deviation.severity == "high"
        assert deviation.node_id == "entrance_exam"

    def test_failure_outranks_delay(self, tracker, graph):
        _set(tracker, "entrance_exam", "in_progress", T0)
        _set(tracker, "entrance_exam", "failed", T0 + _months(6))
        state = _set(tracker, "college", "in_progress", T0 + _months(6))
        assert state.current_node_id == "college"
        deviation = detect_deviations(
            state, None, graph, now=T0 + _months(60), interest_change=0.9
        )
        assert deviation.type == "milestone_failure"

    def test_non_critical_failure_ignored(self, tracker, graph):
        _set(tracker, "entrance_exam", "in_progress", T0)
        _set(tracker, "entrance_exam", "completed", T0 + _months(6))
        _set(tracker, "college", "in_progress", T0 + _months(6))
        state = _set(tracker, "college", "failed", T0 + _months(20))
        assert detect_deviations(state, None, graph, now=T0 + _months(20)) is None


# =========================================================================
# Test: Interest change & manual requests
# =========================================================================


class TestInterestAndManual:
    """Caller-supplied signals."""

    @pytest.mark.parametrize(
        "delta, expected",
        [
            (0.10, None),
            (0.15, None),
            (0.20, "low"),
            (0.35, "medium"),
            (-0.40, "medium"),
        ],
    )
    def test_interest_change_severity(self, tracker, graph, delta, expected):
        state = tracker.get_state("p1")
        deviation = detect_deviations(state, None, graph, now=T0, interest_change=delta)
        if expected is None:
            assert deviation is None
        else:
            assert deviation.type == "interest_change"
            assert deviation.severity == expected
            assert deviation.magnitude == delta

    def test_manual_request(self, tracker, graph):
        state = tracker.get_state("p1")
        deviation = detect_deviations(
            state, None, graph, now=T0, manual_reason="Moving abroad"
        )
        assert deviation.type == "manual_request"
        assert deviation.severity == "low"
        assert deviation.description == "Moving abroad."

    def test_manual_deviation_helper(self):
        deviation = manual_deviation("   ", T0)
        assert deviation.description == "Re-route requested."
        assert deviation.detected_at == T0

    def test_interest_outranks_manual(self, tracker, graph):
        state = tracker.get_state("p1")
        deviation = detect_deviations(
            state, None, graph, now=T0, interest_change=0.5, manual_reason="x"
        )
        assert deviation.type == "interest_change"


# =========================================================================
# Test: Purity
# =========================================================================


class TestPurity:
    """Detection never mutates the state it inspects."""

    def test_state_untouched(self, tracker, graph):
        state = _set(tracker, "entrance_exam", "in_progress", T0)
        before = state.model_copy(deep=True)
        detect_deviations(state, state.route, graph, now=T0 + _months(12))
        assert state == before

    def test_no_progress_no_deviation(self, tracker, graph):
        assert detect_deviations(tracker.get_state("p1"), None, graph, now=T0) is None
