"""Outcome — what actually happened after a decision was executed."""

import math
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from placement_kernel.models.weights import ObjectiveKind

REWARD_BOUND = 5.0


class Outcome(BaseModel):
    """Reported by the execution monitor. Consumed once by the learner."""

    decision_id: str
    success: bool
    duration_seconds: float = Field(default=0.0, ge=0.0)
    expected_duration_seconds: Optional[float] = Field(default=None, ge=0.0)
    cost: float = Field(default=0.0, ge=0.0)
    budget: Optional[float] = Field(default=None, ge=0.0)
    sla_met: bool = True
    energy_efficiency: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    attribution: Optional[Dict[ObjectiveKind, float]] = None    # Per-objective share of the reward
    reward: Optional[float] = Field(default=None, ge=-REWARD_BOUND, le=REWARD_BOUND)
    reported_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("attribution")
    @classmethod
    def _finite_attribution(cls, v):
        if v is not None:
            for kind, share in v.items():
                if not math.isfinite(share):
                    raise ValueError(f"attribution for {kind.value} is not finite")
        return v

    def throughput_ratio(self) -> float:
        """Expected over actual duration; above 1 means faster than planned."""
        if not self.expected_duration_seconds or self.duration_seconds <= 0:
            return 1.0
        return self.expected_duration_seconds / self.duration_seconds

    def within_budget(self) -> bool:
        return self.budget is None or self.cost <= self.budget
