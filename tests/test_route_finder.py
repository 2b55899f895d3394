"""
pytest suite for route enumeration, optimal-route search and comparison.

Uses the shipped ``sample_career.json`` whose five routes are, in
discovery order:

    A  bootcamp → cloud_cert → junior_role                   21 mo  25 500
    B  diploma_program → college → cloud_cert → junior_role  51 mo  18 500
    C  diploma_program → college → internship → junior_role  54 mo  18 000
    D  entrance_exam → college → cloud_cert → junior_role    45 mo  15 600
    E  entrance_exam → college → internship → junior_role    48 mo  15 100
"""

import json
import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from careerpath.config import EngineConfig
from careerpath.errors import NoValidRouteError
from careerpath.graph_builder import build_career_graph
from careerpath.models import DESTINATION_ID, START_ID, Route
from careerpath.route_finder import (
    GraphIndex,
    calculate_optimal_route,
    compare_routes,
    find_all_routes,
    make_route,
    route_metrics,
    validate_route,
)


# =========================================================================
# Fixtures
# =========================================================================

SAMPLE_PATH = os.path.join(os.path.dirname(__file__), "sample_career.json")

ROUTE_A = ("bootcamp", "cloud_cert", "junior_role")
ROUTE_B = ("diploma_program", "college", "cloud_cert", "junior_role")
ROUTE_C = ("diploma_program", "college", "internship", "junior_role")
ROUTE_D = ("entrance_exam", "college", "cloud_cert", "junior_role")
ROUTE_E = ("entrance_exam", "college", "internship", "junior_role")


@pytest.fixture()
def graph():
    with open(SAMPLE_PATH, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    return build_career_graph(data["career_id"], data["milestones"])


@pytest.fixture()
def gated_graph():
    """``d`` requires ``b`` earlier, but ``c → d`` is reachable without it."""
    milestones = [
        {"id": "a", "estimated_duration": 1},
        {"id": "b", "estimated_duration": 5, "prerequisites": ["a"]},
        {"id": "c", "estimated_duration": 1, "prerequisites": ["a", "b"]},
        {"id": "d", "estimated_duration": 1, "prerequisites": ["c"], "requires": ["b"]},
    ]
    return build_career_graph("gated", milestones)


def _path(*milestones):
    return (START_ID,) + tuple(milestones) + (DESTINATION_ID,)


# =========================================================================
# Test: Enumeration
# =========================================================================


class TestFindAllRoutes:
    """Depth-first enumeration, budgets and constraints."""

    def test_discovery_order(self, graph):
        routes = find_all_routes(graph)
        assert [r.milestones for r in routes] == [
            ROUTE_A, ROUTE_B, ROUTE_C, ROUTE_D, ROUTE_E,
        ]

    def test_every_route_validates(self, graph):
        for route in find_all_routes(graph):
            assert validate_route(route, graph)

    def test_duration_is_sum_of_edge_weights(self, graph):
        index = GraphIndex(graph)
        for route in find_all_routes(graph):
            expected = sum(
                index.edges[(u, v)].weight for u, v in zip(route.nodes, route.nodes[1:])
            )
            assert route.total_duration == pytest.approx(expected)

    def test_totals(self, graph):
        by_path = {r.milestones: r for r in find_all_routes(graph)}
        a = by_path[ROUTE_A]
        assert (a.total_duration, a.total_cost, a.cost_bucket, a.difficulty) == (
            21, 25500, "high", "medium",
        )
        d = by_path[ROUTE_D]
        assert (d.total_duration, d.total_cost, d.cost_bucket, d.difficulty) == (
            45, 15600, "medium", "hard",
        )

    def test_max_routes_caps_output(self, graph):
        routes = find_all_routes(graph, max_routes=2)
        assert [r.milestones for r in routes] == [ROUTE_A, ROUTE_B]

    def test_budget_returns_partial_results(self, graph, caplog):
        with caplog.at_level(logging.WARNING, logger="careerpath.route_finder"):
            routes = find_all_routes(graph, max_search_nodes=4)
        assert [r.milestones for r in routes] == [ROUTE_A]
        assert "budget" in caplog.text

    def test_tiny_budget_returns_empty_list(self, graph):
        assert find_all_routes(graph, max_search_nodes=1) == []

    def test_prefix_fixes_route_beginning(self, graph):
        routes = find_all_routes(graph, prefix=[START_ID, "entrance_exam"])
        assert [r.milestones for r in routes] == [ROUTE_D, ROUTE_E]

    def test_invalid_prefix_yields_nothing(self, graph):
        assert find_all_routes(graph, prefix=["college"]) == []
        assert find_all_routes(graph, prefix=[START_ID, "college"]) == []

    def test_exclude_removes_nodes(self, graph):
        routes = find_all_routes(graph, exclude={"cloud_cert"})
        assert [r.milestones for r in routes] == [ROUTE_C, ROUTE_E]

    def test_waypoints_must_be_visited(self, graph):
        routes = find_all_routes(graph, waypoints=["college"])
        assert [r.milestones for r in routes] == [ROUTE_B, ROUTE_C, ROUTE_D, ROUTE_E]

    def test_waypoints_keep_their_order(self, graph):
        routes = find_all_routes(graph, waypoints=["college", "internship"])
        assert [r.milestones for r in routes] == [ROUTE_C, ROUTE_E]
        assert find_all_routes(graph, waypoints=["college", "diploma_program"]) == []

    def test_excluded_waypoint_yields_nothing(self, graph):
        assert find_all_routes(graph, waypoints=["college"], exclude={"college"}) == []

    def test_totals_always_cover_whole_route(self, graph):
        routes = find_all_routes(graph, prefix=[START_ID, "entrance_exam"])
        assert routes[0].total_duration == 45
        assert routes[0] == graph.get_route(routes[0].id)

    def test_route_metrics_skips_excluded(self, graph):
        nodes = _path(*ROUTE_D)
        duration, cost, _ = route_metrics(GraphIndex(graph), nodes, {"entrance_exam"})
        assert (duration, cost) == (39, 15500)
        assert route_metrics(GraphIndex(graph), nodes)[:2] == (45, 15600)

    def test_edge_prerequisites_respected(self, gated_graph):
        routes = find_all_routes(gated_graph)
        assert [r.milestones for r in routes] == [("a", "b", "c", "d")]

    def test_satisfied_unlocks_gated_edge(self, gated_graph):
        routes = find_all_routes(gated_graph, satisfied={"b"}, exclude={"b"})
        assert [r.milestones for r in routes] == [("a", "c", "d")]

    def test_route_ids_are_stable(self, graph):
        first = [r.id for r in find_all_routes(graph)]
        second = [r.id for r in find_all_routes(graph)]
        assert first == second
        assert len(set(first)) == len(first)


# =========================================================================
# Test: Validation
# =========================================================================


class TestValidateRoute:
    """Boolean route validation; never raises."""

    def test_missing_edge(self, graph):
        route = Route(id="x", career_id=graph.career_id,
                      nodes=_path("bootcamp", "junior_role"))
        assert validate_route(route, graph) is False

    def test_wrong_endpoints(self, graph):
        route = Route(id="x", career_id=graph.career_id,
                      nodes=(START_ID, "bootcamp", "cloud_cert", "junior_role"))
        assert validate_route(route, graph) is False

    def test_too_short(self, graph):
        route = Route(id="x", career_id=graph.career_id, nodes=(START_ID,))
        assert validate_route(route, graph) is False

    def test_prerequisite_must_appear_earlier(self, gated_graph):
        route = make_route(GraphIndex(gated_graph), _path("a", "c", "d"))
        assert validate_route(route, gated_graph) is False
        assert validate_route(route, gated_graph, satisfied=["b"]) is True


# =========================================================================
# Test: Optimal route
# =========================================================================


class TestOptimalRoute:
    """DP over the topological order, one result per objective."""

    @pytest.mark.parametrize(
        "optimize_for, expected",
        [("time", ROUTE_A), ("cost", ROUTE_E), ("difficulty", ROUTE_A)],
    )
    def test_per_objective(self, graph, optimize_for, expected):
        route = calculate_optimal_route(graph, optimize_for)
        assert route.milestones == expected
        assert validate_route(route, graph)

    def test_idempotent(self, graph):
        assert calculate_optimal_route(graph, "cost") == calculate_optimal_route(graph, "cost")

    def test_matches_a_precomputed_route(self, graph):
        route = calculate_optimal_route(graph, "time")
        assert graph.get_route(route.id) == route

    def test_falls_back_when_dp_path_is_gated(self, gated_graph):
        route = calculate_optimal_route(gated_graph, "time")
        assert route.milestones == ("a", "b", "c", "d")
        assert route.total_duration == 8

    def test_no_valid_route(self, gated_graph):
        bare = gated_graph.model_copy(update={"edges": ()})
        with pytest.raises(NoValidRouteError):
            calculate_optimal_route(bare, "time")


# =========================================================================
# Test: Comparison
# =========================================================================


class TestCompareRoutes:
    """Side-by-side comparison of precomputed routes."""

    def test_best_per_dimension(self, graph):
        cmp = compare_routes(graph)
        by_id = {r.id: r.milestones for r in graph.routes}
        assert len(cmp.rows) == 5
        assert by_id[cmp.fastest] == ROUTE_A
        assert by_id[cmp.cheapest] == ROUTE_E
        assert by_id[cmp.easiest] == ROUTE_A

    def test_subset(self, graph):
        subset = [r for r in graph.routes if r.milestones in (ROUTE_D, ROUTE_E)]
        cmp = compare_routes(graph, subset)
        assert [row["path"] for row in cmp.rows] == [list(ROUTE_D), list(ROUTE_E)]
        assert cmp.easiest == subset[0].id

    def test_empty(self, graph):
        cmp = compare_routes(graph, [])
        assert cmp.rows == ()
        assert cmp.fastest is None


# =========================================================================
# Test: Cost buckets
# =========================================================================


class TestCostBuckets:
    """Inclusive upper bounds from EngineConfig."""

    def test_bounds(self):
        cfg = EngineConfig()
        assert cfg.cost_bucket(0) == "low"
        assert cfg.cost_bucket(5000) == "low"
        assert cfg.cost_bucket(5000.01) == "medium"
        assert cfg.cost_bucket(20000) == "medium"
        assert cfg.cost_bucket(20000.5) == "high"

    def test_inverted_bounds_rejected(self):
        with pytest.raises(ValueError):
            EngineConfig(cost_low_max=10, cost_medium_max=5)
