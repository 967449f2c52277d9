"""Policy Model — rules, violations, evaluations and audit entries."""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConstraintType(str, Enum):
    HARD = "hard"   # Never violate. The target is removed outright.
    SOFT = "soft"   # Prefer to satisfy. Violations only lower the score.


class ViolationSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_PENALTIES: Dict[ViolationSeverity, float] = {
    ViolationSeverity.LOW: 0.2,
    ViolationSeverity.MEDIUM: 0.5,
    ViolationSeverity.HIGH: 0.8,
    ViolationSeverity.CRITICAL: 1.0,
}


class CorrectiveAction(str, Enum):
    BLOCKED = "blocked"
    WARNED = "warned"
    ALLOWED = "allowed"


class RuleActivation(BaseModel):
    """Temporal authority — when this rule is in force."""

    always: bool = True
    schedule: Optional[str] = None          # Cron expression


class PolicyRule(BaseModel):
    """
    A constraint over a (process, target) pair.
    The predicate returns True when the pair is compliant.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    type: ConstraintType
    priority: int = 100                     # Lower number is evaluated first
    predicate: Callable[[Any, Any], bool] = Field(exclude=True)
    description: str
    severity: Optional[ViolationSeverity] = None    # Defaults by type
    enabled: bool = True
    activation: RuleActivation = RuleActivation()

    @property
    def effective_severity(self) -> ViolationSeverity:
        if self.severity is not None:
            return self.severity
        if self.type == ConstraintType.HARD:
            return ViolationSeverity.CRITICAL
        return ViolationSeverity.MEDIUM


class PolicyViolation(BaseModel):
    rule_id: str
    rule_type: ConstraintType
    severity: ViolationSeverity
    process_id: str
    target_id: str
    description: str
    action: CorrectiveAction
    timestamp: datetime


class PolicyEvaluation(BaseModel):
    """The policy engine's ruling on one (process, target) pair."""

    process_id: str
    target_id: str
    allowed: bool
    hard_violations: List[PolicyViolation] = []
    soft_violations: List[PolicyViolation] = []
    applied_rules: List[str] = []
    soft_penalty: float = 0.0               # Sum of severity penalty weights
    evaluated_at: datetime

    def has_hard_violations(self) -> bool:
        return bool(self.hard_violations)


class PolicyAuditEntry(BaseModel):
    """Immutable audit trail record. One per evaluation plus one per violation."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    event_type: str                         # "evaluation" | "violation"
    process_id: str
    target_id: str
    rule_id: Optional[str] = None
    decision: CorrectiveAction
    details: Dict[str, Any] = {}


class PolicyStats(BaseModel):
    total_evaluations: int = 0
    hard_violations: int = 0
    soft_violations: int = 0
    targets_blocked: int = 0
    targets_allowed: int = 0
    violations_by_rule: Dict[str, int] = {}
