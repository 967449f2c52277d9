"""Objectives and the Weight Vector that balances them."""

import math
from datetime import datetime
from enum import Enum
from typing import Dict, List, Tuple

from pydantic import BaseModel, Field

WEIGHT_SUM_TOLERANCE = 0.001


class ObjectiveKind(str, Enum):
    """Every objective the decision engine knows how to cost."""
    QUEUE_DEPTH = "queue_depth"             # Pressure left on the local queue
    PROCESSOR_LOAD = "processor_load"       # Compute cost under current utilisation
    NETWORK_COST = "network_cost"           # Data transfer and downstream movement
    LATENCY_COST = "latency_cost"           # End-to-end completion estimate
    ENERGY_COST = "energy_cost"
    POLICY_COST = "policy_cost"             # Soft-constraint mismatch
    THROUGHPUT = "throughput"               # Benefit metric, usually maximised


class ObjectiveSpec(BaseModel):
    """One entry of the configured objective list."""

    kind: ObjectiveKind
    weight: float = Field(ge=0.0, le=1.0)
    minimize: bool = True
    min_weight: float = Field(default=0.0, ge=0.0, le=1.0)
    max_weight: float = Field(default=1.0, ge=0.0, le=1.0)


class WeightVector(BaseModel):
    """
    Normalised per-objective importance coefficients.

    Invariant: weights sum to 1.0 within WEIGHT_SUM_TOLERANCE and each weight
    lies within its [min, max] bound.
    """

    weights: Dict[ObjectiveKind, float]
    bounds: Dict[ObjectiveKind, Tuple[float, float]]
    version: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_objectives(cls, objectives: List[ObjectiveSpec]) -> "WeightVector":
        return cls(
            weights={o.kind: o.weight for o in objectives},
            bounds={o.kind: (o.min_weight, o.max_weight) for o in objectives},
        )

    @property
    def kinds(self) -> List[ObjectiveKind]:
        return list(self.weights.keys())

    def get(self, kind: ObjectiveKind) -> float:
        return self.weights.get(kind, 0.0)

    def total(self) -> float:
        return sum(self.weights.values())

    def violations(self) -> List[str]:
        return weight_violations(self.weights, self.bounds)

    def is_valid(self) -> bool:
        return not self.violations()

    def with_weights(self, weights: Dict[ObjectiveKind, float]) -> "WeightVector":
        """A successor vector. Does not validate; callers check is_valid()."""
        return WeightVector(
            weights=dict(weights),
            bounds=self.bounds,
            version=self.version + 1,
            updated_at=datetime.utcnow(),
        )

    def as_dict(self) -> Dict[str, float]:
        return {k.value: v for k, v in self.weights.items()}


def weight_violations(
    weights: Dict[ObjectiveKind, float],
    bounds: Dict[ObjectiveKind, Tuple[float, float]],
) -> List[str]:
    """List every way a weight mapping breaks the sum or bound invariant."""
    problems = [
        f"{kind.value} is not finite" for kind, value in weights.items() if not math.isfinite(value)
    ]
    if problems:
        return problems
    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        problems.append(f"weights sum to {total:.6f}, expected 1.0")
    for kind, value in weights.items():
        lo, hi = bounds.get(kind, (0.0, 1.0))
        if value < lo - 1e-9 or value > hi + 1e-9:
            problems.append(f"{kind.value}={value:.6f} outside [{lo}, {hi}]")
    return problems


def project_to_bounds(
    weights: Dict[ObjectiveKind, float],
    bounds: Dict[ObjectiveKind, Tuple[float, float]],
    max_rounds: int = 10,
) -> Dict[ObjectiveKind, float]:
    """
    Clamp each weight to its bounds, then spread the remaining surplus or
    deficit over the weights that still have headroom, proportionally to that
    headroom. Converges in one round whenever the bounds admit a sum of 1.
    """
    result = {}
    for kind, value in weights.items():
        lo, hi = bounds.get(kind, (0.0, 1.0))
        result[kind] = min(max(value, lo), hi)

    for _ in range(max_rounds):
        diff = 1.0 - sum(result.values())
        if abs(diff) < 1e-12:
            break
        if diff > 0:
            room = {k: bounds.get(k, (0.0, 1.0))[1] - v for k, v in result.items()}
        else:
            room = {k: v - bounds.get(k, (0.0, 1.0))[0] for k, v in result.items()}
        room = {k: r for k, r in room.items() if r > 1e-12}
        total_room = sum(room.values())
        if total_room <= 0:
            break  # Infeasible bounds; caller will see the violation
        share = min(1.0, abs(diff) / total_room)
        sign = 1.0 if diff > 0 else -1.0
        for kind, r in room.items():
            result[kind] += sign * r * share

    return result
