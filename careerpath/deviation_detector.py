"""
Deviation detection over (progress state, active route, graph).

Pure: never mutates state. Rules are evaluated in priority order and the
first match is the only deviation reported:

1. ``milestone_failure`` (high): a critical milestone (exam,
   certification) on the active route has status ``failed``.
2. ``timeline_delay`` (medium): the current in-progress milestone has
   taken more than ``delay_ratio`` × its estimated duration.
3. ``interest_change`` (low/medium): the caller-supplied career-fit shift
   exceeds ``interest_change_delta``.
4. ``manual_request`` (low): the person asked for a re-route.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from careerpath.config import DEFAULT_CONFIG, EngineConfig
from careerpath.models import Deviation, Graph, NodeProgress, ProgressState, Route
from careerpath.progress_tracker import effective_time_spent
from careerpath.route_finder import GraphIndex

logger = logging.getLogger(__name__)


def _label(index: GraphIndex, node_id: str) -> str:
    spec = index.milestone(node_id)
    return (spec.title or spec.id) if spec is not None else node_id


def _check_failure(
    state: ProgressState, route: Route, index: GraphIndex, now: datetime
) -> Optional[Deviation]:
    for node_id in route.milestones:
        spec = index.milestone(node_id)
        if spec is None or not spec.is_critical:
            continue
        if state.status_of(node_id) == "failed":
            return Deviation(
                type="milestone_failure",
                severity="high",
                description=(
                    f"Critical {spec.milestone_type} milestone "
                    f"'{_label(index, node_id)}' was failed."
                ),
                detected_at=now,
                node_id=node_id,
            )
    return None


def _check_delay(
    state: ProgressState,
    index: GraphIndex,
    now: datetime,
    config: EngineConfig,
) -> Optional[Deviation]:
    node_id = state.current_node_id
    progress = state.node_progress.get(node_id, NodeProgress())
    spec = index.milestone(node_id)
    if spec is None or progress.status != "in_progress":
        return None

    spent = effective_time_spent(progress, now, config)
    threshold = config.delay_ratio * spec.estimated_duration
    if spent <= threshold:
        return None

    ratio = spent / spec.estimated_duration if spec.estimated_duration > 0 else None
    return Deviation(
        type="timeline_delay",
        severity="medium",
        description=(
            f"'{_label(index, node_id)}' has been in progress for {spent:.1f} "
            f"month(s), over the {threshold:.1f}-month limit "
            f"({config.delay_ratio:g}x the {spec.estimated_duration:g}-month estimate)."
        ),
        detected_at=now,
        node_id=node_id,
        magnitude=round(ratio, 4) if ratio is not None else None,
    )


def _check_interest(
    magnitude: Optional[float], now: datetime, config: EngineConfig
) -> Optional[Deviation]:
    if magnitude is None or abs(magnitude) <= config.interest_change_delta:
        return None
    severity = "medium" if abs(magnitude) >= config.interest_change_high_delta else "low"
    return Deviation(
        type="interest_change",
        severity=severity,
        description=(
            f"Profile change shifted career fit by {magnitude:+.2f} "
            f"(threshold {config.interest_change_delta:.2f})."
        ),
        detected_at=now,
        magnitude=magnitude,
    )


def manual_deviation(reason: str, now: Optional[datetime] = None) -> Deviation:
    """A person-initiated re-route request; bypasses every other check."""
    reason = reason.strip() or "Re-route requested."
    return Deviation(
        type="manual_request",
        severity="low",
        description=reason if reason.endswith(".") else reason + ".",
        detected_at=now or datetime.now(timezone.utc),
    )


def detect_deviations(
    state: ProgressState,
    route: Optional[Route],
    graph: Graph,
    now: Optional[datetime] = None,
    interest_change: Optional[float] = None,
    manual_reason: Optional[str] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Optional[Deviation]:
    """Return the highest-priority deviation, or ``None``.

    Args:
        state: Progress snapshot.
        route: Active route (defaults to ``state.route``).
        graph: The career graph the route runs through.
        now: Evaluation time (defaults to current UTC time).
        interest_change: Career-fit shift reported by the profile service.
        manual_reason: Set when the person explicitly asked for a re-route.
        config: Thresholds.
    """
    now = now or datetime.now(timezone.utc)
    route = route or state.route
    index = GraphIndex(graph)

    deviation = (
        _check_failure(state, route, index, now)
        or _check_delay(state, index, now, config)
        or _check_interest(interest_change, now, config)
        or (manual_deviation(manual_reason, now) if manual_reason is not None else None)
    )
    if deviation is not None:
        logger.info(
            "Person %s: %s deviation (%s) detected.",
            state.person_id, deviation.type, deviation.severity,
        )
    return deviation
