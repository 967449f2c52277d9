"""
Policy Engine — evaluates hard and soft constraints per (process, target).

Behavioral Contract:
- Rules run in ascending priority number (ties by rule id); disabled rules
  and rules outside their activation window are skipped
- A hard violation blocks the target; it never raises
- A soft violation only contributes its severity penalty
  (LOW 0.2, MEDIUM 0.5, HIGH 0.8, CRITICAL 1.0)
- Every evaluation, and every violation, appends an immutable audit entry
- A predicate that raises is treated as a violation (fail closed)
- Once immutable, the rule set cannot be changed
"""

import logging
from collections import deque
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from croniter import croniter

from placement_kernel.errors import ConfigurationInvalid
from placement_kernel.models.policy import (
    SEVERITY_PENALTIES,
    ConstraintType,
    CorrectiveAction,
    PolicyAuditEntry,
    PolicyEvaluation,
    PolicyRule,
    PolicyStats,
    PolicyViolation,
)
from placement_kernel.models.process import Process
from placement_kernel.models.target import ExecutionTarget

logger = logging.getLogger(__name__)


def _is_rule_active(rule: PolicyRule, current_time: datetime) -> bool:
    """Determine if a rule is in force based on its activation window."""
    activation = rule.activation
    if activation.always:
        return True
    if activation.schedule:
        try:
            return croniter.match(activation.schedule, current_time)
        except (ValueError, KeyError):
            return False
    return False


def _check_rule(rule: PolicyRule, process: Process, target: ExecutionTarget) -> bool:
    """True when compliant. Predicate errors count as violations."""
    try:
        return bool(rule.predicate(process, target))
    except Exception:
        logger.warning(
            "Policy rule %s raised while evaluating process %s on target %s",
            rule.id, process.id, target.id, exc_info=True,
        )
        return False


class PolicyEngine:
    """
    Holds the rule set and the audit trail.

    The optional audit sink receives every entry through append(entry);
    the in-memory log keeps the most recent `audit_retention` entries.
    """

    def __init__(
        self,
        rules: Optional[Iterable[PolicyRule]] = None,
        audit_sink=None,
        audit_retention: int = 10000,
    ):
        self._rules: Dict[str, PolicyRule] = {}
        self._immutable = False
        self._audit_log: deque = deque(maxlen=audit_retention)
        self._audit_sink = audit_sink
        self._stats = PolicyStats()
        for rule in rules or []:
            self.add_rule(rule)

    # --- Rule management ---

    @property
    def immutable(self) -> bool:
        return self._immutable

    def set_immutable(self, immutable: bool = True) -> None:
        if self._immutable and not immutable:
            raise ConfigurationInvalid("rule set is immutable")
        self._immutable = immutable

    def add_rule(self, rule: PolicyRule) -> None:
        self._check_mutable()
        if rule.id in self._rules:
            raise ConfigurationInvalid(f"duplicate policy rule id {rule.id!r}")
        schedule = rule.activation.schedule
        if schedule is not None and not croniter.is_valid(schedule):
            raise ConfigurationInvalid(f"rule {rule.id!r} has invalid schedule {schedule!r}")
        self._rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        self._check_mutable()
        return self._rules.pop(rule_id, None) is not None

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> None:
        self._check_mutable()
        rule = self._rules.get(rule_id)
        if rule is None:
            raise KeyError(rule_id)
        self._rules[rule_id] = rule.model_copy(update={"enabled": enabled})

    def get_rules(self) -> List[PolicyRule]:
        return sorted(self._rules.values(), key=lambda r: (r.priority, r.id))

    def _check_mutable(self) -> None:
        if self._immutable:
            raise ConfigurationInvalid("rule set is immutable")

    # --- Evaluation ---

    def evaluate(
        self,
        process: Process,
        target: ExecutionTarget,
        current_time: Optional[datetime] = None,
    ) -> PolicyEvaluation:
        if current_time is None:
            current_time = datetime.utcnow()

        hard: List[PolicyViolation] = []
        soft: List[PolicyViolation] = []
        applied: List[str] = []

        for rule in self.get_rules():
            if not rule.enabled or not _is_rule_active(rule, current_time):
                continue
            applied.append(rule.id)
            if _check_rule(rule, process, target):
                continue

            is_hard = rule.type == ConstraintType.HARD
            violation = PolicyViolation(
                rule_id=rule.id,
                rule_type=rule.type,
                severity=rule.effective_severity,
                process_id=process.id,
                target_id=target.id,
                description=rule.description,
                action=CorrectiveAction.BLOCKED if is_hard else CorrectiveAction.WARNED,
                timestamp=current_time,
            )
            (hard if is_hard else soft).append(violation)
            self._record_violation(violation)

        evaluation = PolicyEvaluation(
            process_id=process.id,
            target_id=target.id,
            allowed=not hard,
            hard_violations=hard,
            soft_violations=soft,
            applied_rules=applied,
            soft_penalty=sum(SEVERITY_PENALTIES[v.severity] for v in soft),
            evaluated_at=current_time,
        )
        self._record_evaluation(evaluation)
        return evaluation

    def filter_targets(
        self,
        process: Process,
        targets: List[ExecutionTarget],
        current_time: Optional[datetime] = None,
    ) -> Tuple[List[ExecutionTarget], List[PolicyEvaluation]]:
        """Feasible targets (no hard violations) plus every evaluation made."""
        feasible = []
        evaluations = []
        for target in targets:
            evaluation = self.evaluate(process, target, current_time)
            evaluations.append(evaluation)
            if evaluation.allowed:
                feasible.append(target)
        return feasible, evaluations

    # --- Audit ---

    def _record_violation(self, violation: PolicyViolation) -> None:
        self._stats.violations_by_rule[violation.rule_id] = (
            self._stats.violations_by_rule.get(violation.rule_id, 0) + 1
        )
        if violation.rule_type == ConstraintType.HARD:
            self._stats.hard_violations += 1
            logger.debug(
                "Hard policy %s blocks %s on %s",
                violation.rule_id, violation.process_id, violation.target_id,
            )
        else:
            self._stats.soft_violations += 1
        self._append_audit(PolicyAuditEntry(
            id=f"audit_{uuid4().hex[:12]}",
            timestamp=violation.timestamp,
            event_type="violation",
            process_id=violation.process_id,
            target_id=violation.target_id,
            rule_id=violation.rule_id,
            decision=violation.action,
            details={
                "rule_type": violation.rule_type.value,
                "severity": violation.severity.value,
                "description": violation.description,
            },
        ))

    def _record_evaluation(self, evaluation: PolicyEvaluation) -> None:
        self._stats.total_evaluations += 1
        if evaluation.allowed:
            self._stats.targets_allowed += 1
        else:
            self._stats.targets_blocked += 1
        self._append_audit(PolicyAuditEntry(
            id=f"audit_{uuid4().hex[:12]}",
            timestamp=evaluation.evaluated_at,
            event_type="evaluation",
            process_id=evaluation.process_id,
            target_id=evaluation.target_id,
            decision=(
                CorrectiveAction.ALLOWED if evaluation.allowed else CorrectiveAction.BLOCKED
            ),
            details={
                "hard_violations": [v.rule_id for v in evaluation.hard_violations],
                "soft_violations": [v.rule_id for v in evaluation.soft_violations],
                "soft_penalty": evaluation.soft_penalty,
            },
        ))

    def _append_audit(self, entry: PolicyAuditEntry) -> None:
        self._audit_log.append(entry)
        if self._audit_sink is not None:
            self._audit_sink.append(entry)

    def get_audit_log(self, limit: Optional[int] = None) -> List[PolicyAuditEntry]:
        """Most recent entries last."""
        entries = list(self._audit_log)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def get_stats(self) -> PolicyStats:
        return self._stats.model_copy(deep=True)
