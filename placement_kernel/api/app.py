"""
Placement Kernel API — FastAPI endpoints.

Exposes the orchestrator over REST for:
- Placement decisions and outcome reporting
- Scaling decisions
- Adaptation passes, weights and discovered patterns
- Policy rules, audit trail and statistics
"""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from placement_kernel.audit.store import AuditStore
from placement_kernel.errors import ConfigurationInvalid, InvalidInput, NoFeasibleTarget
from placement_kernel.models.outcome import Outcome
from placement_kernel.models.process import Process
from placement_kernel.models.scaling import ExecutorSpec, QueuedProcess
from placement_kernel.models.state import SystemState
from placement_kernel.models.target import ExecutionTarget
from placement_kernel.orchestrator.core import Orchestrator


# --- Request/Response Models ---

class DecisionRequest(BaseModel):
    process: Process
    targets: List[ExecutionTarget]
    state: SystemState = SystemState()
    deadline_ms: Optional[float] = None


class ScalingRequest(BaseModel):
    executor_type: str
    queued: List[QueuedProcess] = []
    executors: List[ExecutorSpec]
    running: Dict[str, int] = {}
    state: SystemState = SystemState()


# --- Application Factory ---

def create_app(
    orchestrator: Optional[Orchestrator] = None,
    config: Any = None,
    audit_store: Optional[AuditStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Placement Kernel API",
        description="Adaptive workload placement and scaling",
        version="0.1.0",
    )

    store = audit_store or AuditStore()
    if orchestrator is None:
        if config is None:
            raise ConfigurationInvalid("create_app needs an orchestrator or a config")
        orchestrator = Orchestrator(config, audit_sink=store)
    orch = orchestrator

    app.state.orchestrator = orch
    app.state.audit_store = store

    # === DECISIONS ===

    @app.post("/decisions")
    def decide(req: DecisionRequest):
        try:
            decision = orch.decide(req.process, req.targets, req.state, req.deadline_ms)
        except NoFeasibleTarget as exc:
            raise HTTPException(409, {
                "explanation": str(exc),
                "decision": exc.decision.model_dump(mode="json") if exc.decision else None,
            })
        except InvalidInput as exc:
            raise HTTPException(422, str(exc))
        return decision.model_dump(mode="json")

    @app.get("/decisions/{decision_id}")
    def get_decision(decision_id: str):
        decision = orch.get_decision(decision_id)
        if not decision:
            raise HTTPException(404, "Decision not found")
        return decision.model_dump(mode="json")

    @app.post("/outcomes")
    def report_outcome(outcome: Outcome):
        if orch.get_decision(outcome.decision_id) is None:
            raise HTTPException(404, "Decision not found")
        try:
            applied = orch.report_outcome(outcome)
        except InvalidInput as exc:
            raise HTTPException(422, str(exc))
        return {"decision_id": outcome.decision_id, "applied": applied}

    # === SCALING ===

    @app.post("/scaling")
    def decide_scaling(req: ScalingRequest):
        action = orch.decide_scaling(
            req.executor_type, req.queued, req.executors, req.running, req.state,
        )
        return action.model_dump(mode="json")

    # === LEARNING ===

    @app.post("/adapt")
    def adapt():
        return orch.adapt().model_dump(mode="json")

    @app.get("/stats")
    def get_stats():
        return orch.get_stats().model_dump(mode="json")

    @app.get("/weights")
    def get_weights():
        weights = orch.get_weights()
        return {
            "weights": weights.as_dict(),
            "bounds": {k.value: list(v) for k, v in weights.bounds.items()},
            "version": weights.version,
            "updated_at": weights.updated_at.isoformat(),
        }

    @app.get("/patterns")
    def get_patterns():
        return [p.model_dump(mode="json") for p in orch.get_patterns()]

    @app.get("/rl/policy")
    def get_rl_policy():
        return orch.rl_policy()

    # === POLICY ===

    @app.get("/policy/rules")
    def get_rules():
        return [r.model_dump(mode="json") for r in orch.policy.get_rules()]

    @app.get("/policy/audit")
    def get_audit(limit: int = 100):
        return [e.model_dump(mode="json") for e in orch.audit_log(limit)]

    @app.get("/policy/audit/verify")
    def verify_audit():
        """Verify the persisted audit chain."""
        return {
            "integrity_valid": store.verify_chain(),
            "total_records": store.count(),
        }

    @app.get("/policy/stats")
    def get_policy_stats():
        return orch.policy.get_stats().model_dump(mode="json")

    return app
