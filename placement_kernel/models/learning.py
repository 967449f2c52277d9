"""Learning Model — discovered behavioural patterns."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from placement_kernel.models.decision import DecisionContext, PlacementAction


class ConditionOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GE = "ge"
    LE = "le"


class PatternStatus(str, Enum):
    DISCOVERING = "discovering"
    VALIDATED = "validated"
    DEPRECATED = "deprecated"


class PatternCondition(BaseModel):
    field: str                              # A DecisionContext attribute, e.g. "queue_depth"
    operator: ConditionOperator
    value: Union[float, str, bool]

    def matches(self, context: DecisionContext) -> bool:
        actual = getattr(context, self.field, None)
        if actual is None:
            return False
        op = self.operator
        if op == ConditionOperator.EQ:
            return actual == self.value
        if op == ConditionOperator.NE:
            return actual != self.value
        try:
            actual_f = float(actual)
            expected_f = float(self.value)
        except (TypeError, ValueError):
            return False
        if op == ConditionOperator.GT:
            return actual_f > expected_f
        if op == ConditionOperator.LT:
            return actual_f < expected_f
        if op == ConditionOperator.GE:
            return actual_f >= expected_f
        return actual_f <= expected_f

    def describe(self) -> str:
        return f"{self.field} {self.operator.value} {self.value}"


class DiscoveredPattern(BaseModel):
    """A condition → action rule with an empirical success rate."""

    id: str
    conditions: List[PatternCondition]
    recommended_action: PlacementAction
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    sample_count: int = 0                   # Supporting history entries at discovery
    applications: int = 0                   # Times applied to a later decision
    successes: int = 0                      # Successful applications
    status: PatternStatus = PatternStatus.DISCOVERING
    source: str = "context"                 # "context" | "sequence"
    discovered_at: datetime
    last_updated: datetime

    def matches(self, context: DecisionContext) -> bool:
        return all(c.matches(context) for c in self.conditions)

    def signature(self) -> str:
        conds = " AND ".join(sorted(c.describe() for c in self.conditions))
        return f"{conds} -> {self.recommended_action.value}"

    @property
    def condition_fields(self) -> List[str]:
        return [c.field for c in self.conditions]

    @property
    def applied_success_rate(self) -> Optional[float]:
        if self.applications == 0:
            return None
        return self.successes / self.applications
