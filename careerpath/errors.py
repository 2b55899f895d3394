"""
Typed exceptions raised by the route engine.

Every error carries the ids a caller needs to act on it without
re-deriving state.
"""

from typing import Iterable, Optional


class CareerPathError(Exception):
    """Base class for all route-engine errors."""

    retryable = False


class GraphInvalidError(CareerPathError):
    """Raised when a career graph is cyclic, disconnected or malformed.

    Attributes:
        career_id: Career whose graph was rejected.
        reason: Short machine-readable reason (``'cycle'``,
                ``'unreachable'``, ``'unknown_prerequisite'``, ...).
        nodes: Offending node ids.
    """

    def __init__(
        self, career_id: str, reason: str, nodes: Iterable[str] = ()
    ) -> None:
        self.career_id = career_id
        self.reason = reason
        self.nodes = tuple(nodes)
        super().__init__(
            f"invalid graph for career={career_id!r}: {reason} "
            f"(nodes={list(self.nodes)})"
        )


class ProgressInvalidError(CareerPathError):
    """Raised when a serialised progress state cannot be parsed."""

    def __init__(self, person_id: str, reason: str) -> None:
        self.person_id = person_id
        self.reason = reason
        super().__init__(f"invalid progress for person={person_id!r}: {reason}")


class InvalidTransitionError(CareerPathError):
    """Raised for an illegal node status change; state is left unchanged."""

    def __init__(
        self, person_id: str, node_id: str, from_status: str, to_status: str
    ) -> None:
        self.person_id = person_id
        self.node_id = node_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"person={person_id!r} node={node_id!r}: "
            f"illegal transition {from_status} -> {to_status}"
        )


class NoValidRouteError(CareerPathError):
    """Raised when no route is consistent with the work already done."""

    def __init__(
        self,
        career_id: str,
        destination_id: str,
        completed: Iterable[str] = (),
        person_id: Optional[str] = None,
    ) -> None:
        self.career_id = career_id
        self.destination_id = destination_id
        self.completed = tuple(completed)
        self.person_id = person_id
        super().__init__(
            f"no valid route to {destination_id!r} in career={career_id!r} "
            f"(person={person_id!r}, completed={list(self.completed)})"
        )


class ExternalOracleError(CareerPathError):
    """Raised when the recommendation oracle fails, times out or answers
    with a malformed payload. Always recovered locally.
    """

    def __init__(self, operation: str, original: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.original = original
        super().__init__(f"oracle {operation} failed: {original!r}")


class ConcurrentUpdateError(CareerPathError):
    """Raised when progress changed between read and commit. Retryable."""

    retryable = True

    def __init__(self, person_id: str, expected_version: int, actual_version: int) -> None:
        self.person_id = person_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"person={person_id!r}: progress changed "
            f"(expected version {expected_version}, found {actual_version}); "
            "re-fetch and retry"
        )


class UnknownEntityError(CareerPathError, KeyError):
    """Raised for an unknown person, career, node or route id."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"unknown {kind}: {entity_id!r}")

    def __str__(self) -> str:
        return self.args[0]
