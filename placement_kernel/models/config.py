"""
Kernel configuration.

Built by an external loader and handed to the kernel as plain mappings or
models. Every cost parameter is required: a missing value is a
configuration error, never a silent default. load_config() is the single
boundary where pydantic validation errors become ConfigurationInvalid.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from croniter import croniter
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from placement_kernel.errors import ConfigurationInvalid
from placement_kernel.models.target import Location
from placement_kernel.models.weights import (
    WEIGHT_SUM_TOLERANCE,
    ObjectiveSpec,
)
from placement_kernel.predictors.sequence_matcher import DistanceMetric


class ProximityClass(str, Enum):
    """Location-pair relationship used for data gravity and transfer pricing."""
    SAME_LOCATION = "same_location"
    SAME_REGION = "same_region"
    ADJACENT_REGION = "adjacent_region"
    SAME_PROVIDER = "same_provider"
    DIFFERENT_PROVIDER = "different_provider"


def _require_all_classes(value: Dict[ProximityClass, float], name: str) -> Dict[ProximityClass, float]:
    missing = [c.value for c in ProximityClass if c not in value]
    if missing:
        raise ValueError(f"{name} missing proximity classes: {missing}")
    return value


class CostModelConfig(BaseModel):
    """Parameters of the per-objective cost models and score adjustments."""

    transfer_cost_per_gb: Dict[ProximityClass, float]
    gravity: Dict[ProximityClass, float]
    gravity_factor: float = Field(ge=0.0)
    adjacent_regions: List[Tuple[str, str]] = []
    compute_unit_cost: float = Field(ge=0.0)
    base_latency_ms: float = Field(ge=0.0)
    baseline_throughput: float = Field(gt=0.0)
    anomaly_capacity_multiplier: float = Field(ge=1.0)
    forecast_adjustment: float = Field(ge=0.0)
    downstream_stage_factor: float = Field(ge=0.0)
    soft_penalty_scale: float = Field(ge=0.0)
    pattern_bonus: float = Field(ge=0.0)
    rl_bonus: float = Field(ge=0.0)

    @field_validator("transfer_cost_per_gb")
    @classmethod
    def _transfer_complete(cls, v):
        _require_all_classes(v, "transfer_cost_per_gb")
        if any(cost < 0 for cost in v.values()):
            raise ValueError("transfer costs must be non-negative")
        return v

    @field_validator("gravity")
    @classmethod
    def _gravity_complete(cls, v):
        _require_all_classes(v, "gravity")
        if any(g <= 0 or g > 1 for g in v.values()):
            raise ValueError("gravity scores must lie in (0, 1]")
        return v


class LearnerConfig(BaseModel):
    learning_rate: float = Field(gt=0.0)    # Mandatory; no canonical default exists
    momentum: float = Field(default=0.0, ge=0.0, lt=1.0)
    weight_decay: float = Field(default=0.0, ge=0.0)
    adaptive_rate: bool = False                     # AdaGrad-style per-objective rate
    history_size: int = Field(default=100, gt=0)
    stability_window: int = Field(default=20, gt=0)
    stability_epsilon: float = Field(default=0.01, gt=0.0)
    pattern_min_samples: int = Field(default=10, gt=0)
    pattern_success_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    pattern_deprecate_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    pattern_reward_threshold: float = 0.0
    max_patterns: int = Field(default=50, gt=0)
    discovery_interval_decisions: int = Field(default=50, gt=0)
    adaptation_schedule: Optional[str] = None       # Cron, e.g. "0 * * * *"
    adaptation_interval_seconds: int = Field(default=3600, gt=0)
    queue_depth_thresholds: List[float] = [10, 30, 50]
    compute_usage_thresholds: List[float] = [0.5, 0.8]
    memory_usage_thresholds: List[float] = [0.5, 0.85]


class ExplorationConfig(BaseModel):
    strategy_selection: bool = True
    bandit_exploration_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    rl_learning_rate: float = Field(default=0.1, gt=0.0, le=1.0)
    rl_discount: float = Field(default=0.9, ge=0.0, le=1.0)
    rl_epsilon: float = Field(default=0.1, ge=0.0, le=1.0)
    rl_epsilon_decay: float = Field(default=0.995, gt=0.0, le=1.0)
    rl_min_epsilon: float = Field(default=0.01, ge=0.0, le=1.0)
    rl_sla_penalty: float = Field(default=1.0, ge=0.0)


class PredictorConfig(BaseModel):
    smoothing_alpha: float = Field(default=0.167, gt=0.0, le=1.0)
    cusum_drift_sigmas: float = Field(default=0.5, ge=0.0)
    cusum_threshold_sigmas: float = Field(default=5.0, gt=0.0)
    cusum_warmup: int = Field(default=10, ge=2)
    forecaster_history: int = Field(default=100, ge=20)
    cusum_adaptive: bool = False                    # Track slow drift in the reference mean
    motif_metric: DistanceMetric = DistanceMetric.EUCLIDEAN
    motif_window: Optional[int] = Field(default=None, ge=1)    # DTW band half-width


class SafetyConfig(BaseModel):
    min_reliability: float = Field(default=0.5, ge=0.0, le=1.0)
    max_realtime_latency_ms: float = Field(default=500.0, gt=0.0)
    high_sensitivity_level: int = Field(default=4, ge=0, le=5)
    overload_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    min_network_stability: float = Field(default=0.5, ge=0.0, le=1.0)


class ScalingConfig(BaseModel):
    high_priority_threshold: int = Field(default=7, ge=1, le=10)
    urgent_priority_threshold: int = Field(default=9, ge=1, le=10)
    priority_weight_multiplier: float = Field(default=2.0, ge=1.0)
    time_decay_factor: float = Field(default=0.1, ge=0.0)
    scale_down_headroom: float = Field(default=0.5, gt=0.0, le=1.0)


class PlacementConfig(BaseModel):
    objectives: List[ObjectiveSpec]
    cost_model: CostModelConfig
    learner: LearnerConfig
    local_location: Location
    exploration: ExplorationConfig = ExplorationConfig()
    predictors: PredictorConfig = PredictorConfig()
    safety: SafetyConfig = SafetyConfig()
    scaling: ScalingConfig = ScalingConfig()
    seed: Optional[int] = None
    decision_deadline_ms: Optional[float] = Field(default=None, ge=0.0)
    audit_retention: int = Field(default=10000, gt=0)

    @model_validator(mode="after")
    def _check_objectives(self):
        if not self.objectives:
            raise ValueError("at least one objective is required")
        kinds = [o.kind for o in self.objectives]
        if len(set(kinds)) != len(kinds):
            raise ValueError("duplicate objective kinds")
        total = sum(o.weight for o in self.objectives)
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"objective weights sum to {total:.6f}, expected 1.0")
        for o in self.objectives:
            if o.min_weight > o.max_weight:
                raise ValueError(f"{o.kind.value}: min_weight exceeds max_weight")
            if not o.min_weight <= o.weight <= o.max_weight:
                raise ValueError(f"{o.kind.value}: weight {o.weight} outside its bounds")
        if sum(o.min_weight for o in self.objectives) > 1.0 + WEIGHT_SUM_TOLERANCE:
            raise ValueError("objective lower bounds sum above 1.0")
        if sum(o.max_weight for o in self.objectives) < 1.0 - WEIGHT_SUM_TOLERANCE:
            raise ValueError("objective upper bounds sum below 1.0")
        if self.learner.adaptation_schedule is not None:
            if not croniter.is_valid(self.learner.adaptation_schedule):
                raise ValueError(
                    f"invalid adaptation schedule {self.learner.adaptation_schedule!r}"
                )
        return self


def load_config(data: Any) -> PlacementConfig:
    """Validate a mapping (or an existing config) into a PlacementConfig."""
    if isinstance(data, PlacementConfig):
        data = data.model_dump()
    if not isinstance(data, Mapping):
        raise ConfigurationInvalid(f"expected a mapping, got {type(data).__name__}")
    try:
        return PlacementConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationInvalid(str(exc)) from exc
