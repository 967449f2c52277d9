"""Placement Kernel data models."""

from placement_kernel.models.config import (
    CostModelConfig,
    ExplorationConfig,
    LearnerConfig,
    PlacementConfig,
    PredictorConfig,
    ProximityClass,
    SafetyConfig,
    ScalingConfig,
    load_config,
)
from placement_kernel.models.decision import (
    Decision,
    DecisionContext,
    PlacementAction,
    PredictionSnapshot,
    Strategy,
    TargetScore,
)
from placement_kernel.models.learning import (
    ConditionOperator,
    DiscoveredPattern,
    PatternCondition,
    PatternStatus,
)
from placement_kernel.models.outcome import Outcome
from placement_kernel.models.policy import (
    ConstraintType,
    PolicyAuditEntry,
    PolicyEvaluation,
    PolicyRule,
    PolicyStats,
    PolicyViolation,
    RuleActivation,
    ViolationSeverity,
)
from placement_kernel.models.process import PipelineContext, PipelineStage, Process
from placement_kernel.models.scaling import (
    ExecutorSpec,
    QueuedProcess,
    ScalingAction,
    ScalingActionType,
)
from placement_kernel.models.state import SystemState
from placement_kernel.models.target import ExecutionTarget, Location, TargetType
from placement_kernel.models.weights import ObjectiveKind, ObjectiveSpec, WeightVector

__all__ = [
    "ConditionOperator",
    "ConstraintType",
    "CostModelConfig",
    "Decision",
    "DecisionContext",
    "DiscoveredPattern",
    "ExecutionTarget",
    "ExecutorSpec",
    "ExplorationConfig",
    "LearnerConfig",
    "Location",
    "ObjectiveKind",
    "ObjectiveSpec",
    "Outcome",
    "PatternCondition",
    "PatternStatus",
    "PipelineContext",
    "PipelineStage",
    "PlacementAction",
    "PlacementConfig",
    "PolicyAuditEntry",
    "PolicyEvaluation",
    "PolicyRule",
    "PolicyStats",
    "PolicyViolation",
    "PredictionSnapshot",
    "PredictorConfig",
    "Process",
    "ProximityClass",
    "QueuedProcess",
    "RuleActivation",
    "SafetyConfig",
    "ScalingAction",
    "ScalingActionType",
    "ScalingConfig",
    "Strategy",
    "SystemState",
    "TargetScore",
    "TargetType",
    "ViolationSeverity",
    "WeightVector",
    "load_config",
]
