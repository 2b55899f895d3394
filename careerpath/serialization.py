"""
JSON (de)serialisation of graphs and progress states.

Pure functions: no disk or network I/O. Callers decide where the text
is stored. ``deserialize_graph`` re-runs DAG validation so a tampered or
corrupted payload can never enter the engine as a ``Graph``.
"""

from typing import Optional

from pydantic import ValidationError

from careerpath.dag_validator import validate_dag
from careerpath.errors import GraphInvalidError, ProgressInvalidError
from careerpath.models import Graph, ProgressState


def serialize_graph(graph: Graph, indent: Optional[int] = None) -> str:
    return graph.model_dump_json(indent=indent)


def deserialize_graph(text: str) -> Graph:
    """Parse and re-validate a graph.

    Raises:
        GraphInvalidError: malformed JSON or a structurally invalid graph.
    """
    try:
        graph = Graph.model_validate_json(text)
    except ValidationError as exc:
        raise GraphInvalidError("<unknown>", f"malformed_payload: {exc.error_count()} error(s)") from exc
    validate_dag(graph)
    return graph


def serialize_progress(state: ProgressState, indent: Optional[int] = None) -> str:
    return state.model_dump_json(indent=indent)


def deserialize_progress(text: str) -> ProgressState:
    """Parse a progress state.

    Raises:
        ProgressInvalidError: malformed JSON or missing fields.
    """
    try:
        return ProgressState.model_validate_json(text)
    except ValidationError as exc:
        raise ProgressInvalidError(
            "<unknown>", f"malformed_payload: {exc.error_count()} error(s)"
        ) from exc
