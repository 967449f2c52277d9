"""Scaling Model — executor catalog entries, queued work and scaling actions."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from placement_kernel.models.target import ExecutionTarget


class QueuedProcess(BaseModel):
    """A waiting process, as seen by the queue collaborator."""

    id: str
    executor_type: str                      # e.g., "cpu-worker", "gpu-inference"
    priority: int = Field(default=5, ge=1, le=10)
    cpu_requirement: float = Field(default=1.0, ge=0.0)
    input_size_mb: float = Field(default=0.0, ge=0.0)
    submitted_at: datetime


class ExecutorSpec(BaseModel):
    """Catalog entry for a deployable executor."""

    id: str
    executor_type: str
    target: ExecutionTarget                 # Where instances of this executor run
    tasks_per_minute: float = Field(gt=0.0)     # Capacity of one instance
    min_instances: int = Field(default=0, ge=0)
    max_instances: int = Field(default=10, ge=0)
    startup_seconds: float = Field(default=30.0, ge=0.0)
    cost_per_hour: float = Field(default=0.0, ge=0.0)


class PriorityWeightedDemand(BaseModel):
    executor_type: str
    total_processes: int
    weighted_demand: float
    high_priority_count: int = 0
    urgent_count: int = 0
    average_wait_seconds: float = 0.0
    urgency_score: float = Field(default=0.0, ge=0.0, le=1.0)
    cpu_requirement: float = 1.0            # Mean per queued process
    input_size_mb: float = 0.0              # Total pending input


class ScalingActionType(str, Enum):
    DEPLOY = "deploy"
    REMOVE = "remove"
    HOLD = "hold"


class ScalingAction(BaseModel):
    id: str
    executor_type: str
    executor_id: Optional[str] = None
    action: ScalingActionType
    count: int = 0
    current_count: int = 0
    predicted_demand: float = 0.0
    anomaly: bool = False
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    estimated_cost: float = 0.0             # Per hour; negative when removing
    ready_in_seconds: float = 0.0
    reason: str
    scores: Dict[str, float] = {}           # Executor id -> final score
    created_at: datetime
