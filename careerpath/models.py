"""
Pydantic models for the Career Path Router.

Graph: milestone descriptions, nodes, edges, routes, graphs (frozen values).
Progress: per-node progress, per-person progress state, partial updates.
Re-routing: deviations, route options, impact analysis, re-route results.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =========================================================================
# Literals & constants
# =========================================================================

NodeKind = Literal["start", "milestone", "destination"]
MilestoneType = Literal[
    "exam",
    "certification",
    "skill",
    "college",
    "internship",
    "work_experience",
]
Difficulty = Literal["easy", "medium", "hard"]
CostBucket = Literal["low", "medium", "high"]
NodeStatus = Literal["not_started", "in_progress", "completed", "failed", "skipped"]
DeviationType = Literal[
    "timeline_delay",
    "milestone_failure",
    "interest_change",
    "manual_request",
]
Severity = Literal["low", "medium", "high"]
OptimizeFor = Literal["time", "cost", "difficulty"]

START_ID = "__start__"
DESTINATION_ID = "__destination__"
RESERVED_IDS = frozenset({START_ID, DESTINATION_ID})

DIFFICULTY_RANK: Dict[str, int] = {"easy": 0, "medium": 1, "hard": 2}
COST_BUCKET_RANK: Dict[str, int] = {"low": 0, "medium": 1, "high": 2}

# Failing one of these is a milestone_failure deviation.
CRITICAL_MILESTONE_TYPES = frozenset({"exam", "certification"})

# Statuses that count as "done" for prerequisite / waypoint purposes.
SATISFIED_STATUSES = frozenset({"completed", "skipped"})


# =========================================================================
# Graph models
# =========================================================================


class MilestoneSpec(BaseModel):
    """A single milestone description, as supplied to the graph builder.

    ``prerequisites`` lists the milestones that lead into this one (each
    becomes an incoming edge). ``requires`` lists milestones that must be
    satisfied earlier on any route passing through this one.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: Optional[str] = None
    milestone_type: MilestoneType = "skill"
    estimated_duration: float = Field(ge=0)
    difficulty: Difficulty = "medium"
    cost: float = Field(default=0.0, ge=0)
    prerequisites: Tuple[str, ...] = ()
    requires: Tuple[str, ...] = ()

    @property
    def is_critical(self) -> bool:
        return self.milestone_type in CRITICAL_MILESTONE_TYPES


class Node(BaseModel):
    """A graph node; milestone payload present iff ``kind == 'milestone'``."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: NodeKind
    milestone: Optional[MilestoneSpec] = None

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "Node":
        if self.kind == "milestone" and self.milestone is None:
            raise ValueError(f"milestone node {self.id!r} has no payload")
        if self.kind != "milestone" and self.milestone is not None:
            raise ValueError(f"{self.kind} node {self.id!r} must not carry a payload")
        return self


class Edge(BaseModel):
    """Directed edge; ``prerequisites`` must be satisfied to traverse it."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    weight: float = Field(ge=0)
    prerequisites: Tuple[str, ...] = ()


class Route(BaseModel):
    """An ordered start → destination node sequence with derived totals."""

    model_config = ConfigDict(frozen=True)

    id: str
    career_id: str
    nodes: Tuple[str, ...]
    total_duration: float = 0.0
    total_cost: float = 0.0
    difficulty: Difficulty = "easy"
    cost_bucket: CostBucket = "low"

    @property
    def milestones(self) -> Tuple[str, ...]:
        """Node ids between the synthetic start and destination."""
        return self.nodes[1:-1]

    def position(self, node_id: str) -> int:
        """Index of *node_id* in the sequence, ``-1`` if absent."""
        try:
            return self.nodes.index(node_id)
        except ValueError:
            return -1


class Graph(BaseModel):
    """A validated, read-only career graph.

    Never edited in place: ``graph_builder.add_milestones`` returns a new
    value with ``version + 1``.
    """

    model_config = ConfigDict(frozen=True)

    career_id: str
    version: int = 1
    start_id: str = START_ID
    destination_id: str = DESTINATION_ID
    nodes: Tuple[Node, ...]
    edges: Tuple[Edge, ...]
    routes: Tuple[Route, ...] = ()
    behind_start: Tuple[MilestoneSpec, ...] = ()

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_route(self, route_id: str) -> Optional[Route]:
        for route in self.routes:
            if route.id == route_id:
                return route
        return None

    def milestone_specs(self) -> List[MilestoneSpec]:
        return [n.milestone for n in self.nodes if n.milestone is not None]


# =========================================================================
# Progress models
# =========================================================================


class NodeProgress(BaseModel):
    """Progress of one person on one node."""

    status: NodeStatus = "not_started"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent: float = 0.0  # months
    evidence: Optional[str] = None


class ProgressState(BaseModel):
    """Per-person progress against one active route.

    Mutated only by ``ProgressTracker``; callers receive deep copies.
    """

    person_id: str
    career_id: str
    graph_version: int = 1
    route: Route
    current_node_id: str
    completed_nodes: List[str] = Field(default_factory=list)
    node_progress: Dict[str, NodeProgress] = Field(default_factory=dict)
    overall_completion: int = 0
    offered_routes: Dict[str, Route] = Field(default_factory=dict)
    offered_at_version: Optional[int] = None
    version: int = 0
    updated_at: Optional[datetime] = None

    @property
    def route_id(self) -> str:
        return self.route.id

    def status_of(self, node_id: str) -> str:
        progress = self.node_progress.get(node_id)
        return progress.status if progress is not None else "not_started"

    def nodes_with_status(self, *statuses: str) -> List[str]:
        return [nid for nid, p in self.node_progress.items() if p.status in statuses]


class ProgressUpdate(BaseModel):
    """Partial update applied by ``ProgressTracker.update_progress``."""

    model_config = ConfigDict(frozen=True)

    status: Optional[NodeStatus] = None
    evidence: Optional[str] = None
    at: Optional[datetime] = None


# =========================================================================
# Deviation & re-routing models
# =========================================================================


class Deviation(BaseModel):
    """A detected mismatch between planned and actual progress."""

    model_config = ConfigDict(frozen=True)

    type: DeviationType
    severity: Severity
    description: str
    detected_at: datetime
    node_id: Optional[str] = None
    magnitude: Optional[float] = None


class RouteOptions(BaseModel):
    """Re-routing options. The destination is always preserved."""

    model_config = ConfigDict(frozen=True)

    preserve_destination: bool = True
    consider_completed: bool = True
    max_routes: int = Field(default=5, ge=1)
    optimize_for: OptimizeFor = "time"

    @field_validator("preserve_destination")
    @classmethod
    def _destination_is_fixed(cls, value: bool) -> bool:
        if not value:
            raise ValueError("re-routing always preserves the destination")
        return value


class ImpactAnalysis(BaseModel):
    """Difference between the recommended route and the original one."""

    model_config = ConfigDict(frozen=True)

    duration_delta: float
    cost_delta: Literal["lower", "same", "higher"]
    difficulty_delta: Literal["easier", "same", "harder"]


class ReRouteResult(BaseModel):
    """Ranked alternatives produced for one deviation."""

    model_config = ConfigDict(frozen=True)

    person_id: str
    deviation: Deviation
    original_route: Route
    alternatives: Tuple[Route, ...]
    recommendation: Route
    scores: Dict[str, float]
    # Duration each alternative was scored on (remaining work by default).
    scored_durations: Dict[str, float]
    impact_analysis: ImpactAnalysis
    explanation: str
    explanation_source: Literal["oracle", "template"]
    based_on_version: int


class RouteComparison(BaseModel):
    """Side-by-side comparison of several routes through one graph."""

    model_config = ConfigDict(frozen=True)

    career_id: str
    rows: Tuple[Dict[str, Any], ...]
    fastest: Optional[str] = None
    cheapest: Optional[str] = None
    easiest: Optional[str] = None
