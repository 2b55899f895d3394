"""
Engine configuration: search budgets, deviation thresholds, scoring weights.

Configs round-trip through JSON so a tuned setup can be saved once and
re-applied (``python -m careerpath.cli --save-config`` / ``--config``).
"""

import json
import logging
import os
from typing import Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


# (duration, cost bucket, difficulty) weights per optimisation objective
_DEFAULT_WEIGHTS: Dict[str, Tuple[float, float, float]] = {
    "time": (0.60, 0.20, 0.20),
    "cost": (0.20, 0.60, 0.20),
    "difficulty": (0.20, 0.20, 0.60),
}


class EngineConfig(BaseModel):
    """Tunable parameters shared by every component."""

    model_config = ConfigDict(frozen=True)

    # Route enumeration
    max_routes: int = Field(default=20, ge=1)
    max_search_nodes: int = Field(default=10_000, ge=1)

    # Deviation detection
    delay_ratio: float = Field(default=1.5, gt=0)
    interest_change_delta: float = Field(default=0.15, ge=0)
    interest_change_high_delta: float = Field(default=0.35, ge=0)

    # Time units
    days_per_month: float = Field(default=30.4375, gt=0)

    # Cost buckets (inclusive upper bounds)
    cost_low_max: float = Field(default=5_000.0, ge=0)
    cost_medium_max: float = Field(default=20_000.0, ge=0)

    # Scoring weights: objective -> (duration, cost, difficulty)
    scoring_weights: Dict[str, Tuple[float, float, float]] = Field(
        default_factory=lambda: dict(_DEFAULT_WEIGHTS)
    )

    # Recommendation oracle
    oracle_timeout_s: float = Field(default=5.0, gt=0)
    oracle_max_retries: int = Field(default=1, ge=1)
    oracle_backoff_s: float = Field(default=0.2, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "EngineConfig":
        if self.cost_medium_max < self.cost_low_max:
            raise ValueError("cost_medium_max must be >= cost_low_max")
        if self.interest_change_high_delta < self.interest_change_delta:
            raise ValueError(
                "interest_change_high_delta must be >= interest_change_delta"
            )
        missing = set(_DEFAULT_WEIGHTS) - set(self.scoring_weights)
        if missing:
            raise ValueError(f"scoring_weights missing objectives: {sorted(missing)}")
        return self

    def cost_bucket(self, total_cost: float) -> str:
        if total_cost <= self.cost_low_max:
            return "low"
        if total_cost <= self.cost_medium_max:
            return "medium"
        return "high"


DEFAULT_CONFIG = EngineConfig()


def load_config(path: str) -> EngineConfig:
    """Read an ``EngineConfig`` from a JSON file."""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    config = EngineConfig.model_validate(data)
    logger.info("Config loaded ← %s", path)
    return config


def save_config(config: EngineConfig, path: str) -> None:
    """Write *config* to *path* as indented JSON."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(config.model_dump_json(indent=2))
    logger.info("Config saved → %s", path)
