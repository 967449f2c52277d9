"""Default rule set: safety filters as hard rules, preferences as soft rules."""

from typing import List

from placement_kernel.models.config import SafetyConfig
from placement_kernel.models.policy import ConstraintType, PolicyRule, ViolationSeverity
from placement_kernel.models.target import TargetType

LOCALITY_TARGET_TYPES = (TargetType.LOCAL, TargetType.EDGE)


def default_rules(safety: SafetyConfig) -> List[PolicyRule]:
    return [
        PolicyRule(
            id="target_healthy",
            type=ConstraintType.HARD,
            priority=1,
            predicate=lambda p, t: t.healthy and t.reliability >= safety.min_reliability,
            description=(
                f"Target must be healthy with reliability >= {safety.min_reliability}"
            ),
        ),
        PolicyRule(
            id="safety_critical_local",
            type=ConstraintType.HARD,
            priority=2,
            predicate=lambda p, t: not p.safety_critical or t.type == TargetType.LOCAL,
            description="Safety-critical processes must run locally",
        ),
        PolicyRule(
            id="security_level",
            type=ConstraintType.HARD,
            priority=3,
            predicate=lambda p, t: p.security_level <= t.security_level,
            description="Target security level must meet the process requirement",
        ),
        PolicyRule(
            id="locality_required",
            type=ConstraintType.HARD,
            priority=4,
            predicate=lambda p, t: not p.locality_required or t.type in LOCALITY_TARGET_TYPES,
            description="Locality-bound processes may only run on local or edge targets",
        ),
        PolicyRule(
            id="capacity",
            type=ConstraintType.HARD,
            priority=5,
            predicate=lambda p, t: t.can_accommodate(p),
            description="Target must have CPU and memory headroom for the process",
        ),
        PolicyRule(
            id="realtime_latency",
            type=ConstraintType.HARD,
            priority=6,
            predicate=lambda p, t: (
                not p.real_time or t.network_latency_ms <= safety.max_realtime_latency_ms
            ),
            description=(
                f"Real-time processes need latency <= {safety.max_realtime_latency_ms:.0f}ms"
            ),
        ),
        PolicyRule(
            id="sensitive_data_public_cloud",
            type=ConstraintType.SOFT,
            priority=10,
            severity=ViolationSeverity.HIGH,
            predicate=lambda p, t: (
                p.data_sensitivity < safety.high_sensitivity_level
                or t.type != TargetType.PUBLIC_CLOUD
            ),
            description="Avoid public cloud for highly sensitive data",
        ),
        PolicyRule(
            id="target_overloaded",
            type=ConstraintType.SOFT,
            priority=11,
            severity=ViolationSeverity.MEDIUM,
            predicate=lambda p, t: t.current_load <= safety.overload_threshold,
            description=f"Prefer targets below {safety.overload_threshold:.0%} load",
        ),
        PolicyRule(
            id="network_unstable",
            type=ConstraintType.SOFT,
            priority=12,
            severity=ViolationSeverity.LOW,
            predicate=lambda p, t: (
                t.type == TargetType.LOCAL
                or t.network_stability >= safety.min_network_stability
            ),
            description="Prefer targets with a stable network link",
        ),
        PolicyRule(
            id="deadline_feasible",
            type=ConstraintType.SOFT,
            priority=13,
            severity=ViolationSeverity.HIGH,
            predicate=lambda p, t: (
                p.deadline_seconds is None
                or t.estimate_execution_seconds(p) <= p.deadline_seconds
            ),
            description="Estimated completion should meet the process deadline",
        ),
    ]
