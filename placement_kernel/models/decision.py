"""Decision Model — the kernel's placement ruling and its score breakdown."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from placement_kernel.models.policy import PolicyEvaluation
from placement_kernel.models.target import TargetType


class PlacementAction(str, Enum):
    """Coarse action classes shared by the RL learner and discovered patterns."""
    STAY = "stay"
    MOVE_TO_EDGE = "move_to_edge"
    MOVE_TO_CLOUD = "move_to_cloud"
    MOVE_TO_HPC = "move_to_hpc"


_ACTION_BY_TARGET_TYPE = {
    TargetType.LOCAL: PlacementAction.STAY,
    TargetType.EDGE: PlacementAction.MOVE_TO_EDGE,
    TargetType.FOG: PlacementAction.MOVE_TO_EDGE,
    TargetType.PRIVATE_CLOUD: PlacementAction.MOVE_TO_CLOUD,
    TargetType.PUBLIC_CLOUD: PlacementAction.MOVE_TO_CLOUD,
    TargetType.HYBRID_CLOUD: PlacementAction.MOVE_TO_CLOUD,
    TargetType.HPC_CLUSTER: PlacementAction.MOVE_TO_HPC,
}


def action_for_target_type(target_type: TargetType) -> PlacementAction:
    return _ACTION_BY_TARGET_TYPE[target_type]


class Strategy(str, Enum):
    """Arms of the strategy bandit. Each biases the weight vector differently."""
    DATA_LOCAL = "data_local"
    PERFORMANCE = "performance"
    COST_OPTIMAL = "cost_optimal"
    BALANCED = "balanced"
    LATENCY_FIRST = "latency_first"
    GREEN_COMPUTE = "green_compute"


class PredictionSnapshot(BaseModel):
    """Toolkit outputs a decision was made with."""

    forecast: Optional[float] = None
    smoothed: Optional[float] = None
    smoothed_interval: Optional[Tuple[float, float]] = None    # 95% band around smoothed
    anomaly: bool = False
    source: str = "live"                    # "live" | "cached" | "fallback"


class TargetScore(BaseModel):
    target_id: str
    components: Dict[str, float]            # Raw cost per objective kind
    weighted_score: float                   # -sum(w * signed cost)
    gravity: float                          # Location-pair proximity
    gravity_multiplier: float               # gravity ** gravity_factor
    soft_penalty: float = 0.0
    pattern_bonus: float = 0.0
    rl_bonus: float = 0.0
    final_score: float


class DecisionContext(BaseModel):
    """Features captured at decision time, used later for pattern discovery."""

    queue_depth: int
    compute_usage: float
    memory_usage: float
    load_score: float
    priority: int
    process_type: str
    data_size_mb: float
    real_time: bool = False
    pipeline_stage: int = 0
    time_slot: int = 0


class Decision(BaseModel):
    """Created once, never modified. Outcomes attach by decision id."""

    model_config = ConfigDict(frozen=True)

    id: str
    process_id: str
    selected_target_id: Optional[str] = None
    selected_target_type: Optional[TargetType] = None
    action: Optional[PlacementAction] = None
    scores: List[TargetScore] = []
    policy_evaluations: List[PolicyEvaluation] = []
    dropped_targets: Dict[str, str] = {}    # target id -> reason
    applied_pattern_id: Optional[str] = None
    strategy: Optional[Strategy] = None
    rl_action: Optional[PlacementAction] = None
    capacity_needed: float = 0.0
    prediction: PredictionSnapshot = PredictionSnapshot()
    effective_weights: Dict[str, float] = {}
    weights_version: int = 0
    confidence: float = 0.0
    explanation: str = ""
    context: Optional[DecisionContext] = None
    created_at: datetime

    def score_for(self, target_id: str) -> Optional[TargetScore]:
        for score in self.scores:
            if score.target_id == target_id:
                return score
        return None
