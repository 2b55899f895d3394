"""
Boundary to the external recommendation oracle.

The oracle generates milestone lists and natural-language explanations.
It is slow and fallible, so every call goes through ``OracleClient``:

- runs on a worker pool with an explicit timeout;
- retries with exponential back-off;
- validates the response shape;
- raises ``ExternalOracleError`` on any failure.

The module-level helpers turn that error into a deterministic fallback
(template milestones, template explanation); callers never see it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from careerpath.config import DEFAULT_CONFIG, EngineConfig
from careerpath.errors import ExternalOracleError
from careerpath.models import Deviation, ImpactAnalysis, MilestoneSpec, Route
from careerpath.utils import retry_with_backoff

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class OracleRequest(BaseModel):
    """Structured request sent to the oracle."""

    model_config = ConfigDict(frozen=True)

    career_id: str
    profile_summary: Dict[str, Any] = {}
    route_context: Optional[Dict[str, Any]] = None


class RecommendationOracle(Protocol):
    def suggest_milestones(self, request: OracleRequest) -> Sequence[Any]:
        ...

    def explain_reroute(self, request: OracleRequest) -> str:
        ...


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class OracleClient:
    """Timeout-, retry- and validation-wrapping client around an oracle."""

    def __init__(
        self,
        oracle: RecommendationOracle,
        config: EngineConfig = DEFAULT_CONFIG,
        max_workers: int = 4,
    ) -> None:
        self.oracle = oracle
        self.config = config
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="oracle"
        )

    def _call_once(self, operation: str, fn: Callable[[OracleRequest], Any],
                   request: OracleRequest) -> Any:
        future = self._executor.submit(fn, request)
        try:
            return future.result(timeout=self.config.oracle_timeout_s)
        except FuturesTimeout as exc:
            future.cancel()
            raise ExternalOracleError(operation, exc) from exc
        except Exception as exc:
            raise ExternalOracleError(operation, exc) from exc

    def _call(self, operation: str, fn: Callable[[OracleRequest], Any],
              request: OracleRequest) -> Any:
        return retry_with_backoff(
            self._call_once,
            operation,
            fn,
            request,
            max_retries=self.config.oracle_max_retries,
            base_delay=self.config.oracle_backoff_s,
            logger=logger,
        )

    def explain_reroute(self, request: OracleRequest) -> str:
        """Return the oracle's explanation text or raise ``ExternalOracleError``."""
        text = self._call("explain_reroute", self.oracle.explain_reroute, request)
        if not isinstance(text, str) or not text.strip():
            raise ExternalOracleError(
                "explain_reroute", ValueError(f"malformed explanation: {text!r}")
            )
        return text.strip()

    def suggest_milestones(self, request: OracleRequest) -> List[MilestoneSpec]:
        """Return validated milestone specs or raise ``ExternalOracleError``."""
        raw = self._call("suggest_milestones", self.oracle.suggest_milestones, request)
        if isinstance(raw, (str, bytes)) or not raw:
            raise ExternalOracleError(
                "suggest_milestones", ValueError(f"malformed milestone list: {raw!r}")
            )
        try:
            return [
                m if isinstance(m, MilestoneSpec) else MilestoneSpec.model_validate(m)
                for m in raw
            ]
        except (TypeError, ValidationError) as exc:
            raise ExternalOracleError("suggest_milestones", exc) from exc

    def close(self) -> None:
        self._executor.shutdown(wait=False)


# ---------------------------------------------------------------------------
# Rule-based fallbacks
# ---------------------------------------------------------------------------


def default_milestones(career_id: str) -> List[MilestoneSpec]:
    """Deterministic four-step template used when the oracle is unavailable."""
    label = career_id.replace("_", " ")
    return [
        MilestoneSpec(
            id="foundations", title=f"Foundations for {label}",
            milestone_type="skill", estimated_duration=6, difficulty="easy",
        ),
        MilestoneSpec(
            id="formal_training", title=f"Formal training in {label}",
            milestone_type="college", estimated_duration=24, difficulty="medium",
            prerequisites=("foundations",),
        ),
        MilestoneSpec(
            id="certification", title=f"{label.title()} certification",
            milestone_type="certification", estimated_duration=3, difficulty="medium",
            prerequisites=("formal_training",),
        ),
        MilestoneSpec(
            id="work_experience", title=f"Entry-level {label} experience",
            milestone_type="work_experience", estimated_duration=12, difficulty="medium",
            prerequisites=("certification",),
        ),
    ]


def template_explanation(
    deviation: Deviation,
    original: Route,
    recommendation: Route,
    impact: ImpactAnalysis,
) -> str:
    """Plain, non-generated explanation of a re-route."""
    if impact.duration_delta > 0:
        timing = f"adds {impact.duration_delta:.1f} month(s)"
    elif impact.duration_delta < 0:
        timing = f"saves {-impact.duration_delta:.1f} month(s)"
    else:
        timing = "keeps the same duration"
    steps = " -> ".join(recommendation.milestones) or "(no remaining milestones)"
    return (
        f"A {deviation.type.replace('_', ' ')} ({deviation.severity} severity) was "
        f"detected: {deviation.description} The recommended route ({steps}) "
        f"{timing} compared with the previous plan of "
        f"{len(original.milestones)} milestone(s); cost is {impact.cost_delta} "
        f"and difficulty is {impact.difficulty_delta}. Completed milestones and "
        f"the career goal are unchanged."
    )


def suggest_milestones_or_default(
    client: Optional[OracleClient], request: OracleRequest
) -> Tuple[List[MilestoneSpec], str]:
    """Milestones from the oracle, or the template; returns ``(specs, source)``."""
    if client is not None:
        try:
            return client.suggest_milestones(request), "oracle"
        except ExternalOracleError as exc:
            logger.warning(
                "Oracle milestone suggestion failed for career %s, "
                "using template: %s", request.career_id, exc,
            )
    return default_milestones(request.career_id), "template"


def explain_or_template(
    client: Optional[OracleClient], request: OracleRequest, fallback: str
) -> Tuple[str, str]:
    """Explanation from the oracle, or *fallback*; returns ``(text, source)``."""
    if client is not None:
        try:
            return client.explain_reroute(request), "oracle"
        except ExternalOracleError as exc:
            logger.warning(
                "Oracle explanation failed for career %s, using template: %s",
                request.career_id, exc,
            )
    return fallback, "template"
