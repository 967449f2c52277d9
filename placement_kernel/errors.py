"""
Error taxonomy for the placement kernel.

Only NoFeasibleTarget and InvalidInput ever reach callers of a decision.
InsufficientHistory is raised by the predictor toolkit and absorbed by the
orchestrator. ConfigurationInvalid is raised at the configuration boundary
and never reaches runtime state.
"""


class PlacementError(Exception):
    """Base class for all placement kernel errors."""


class InvalidInput(PlacementError):
    """A malformed process, target or outcome reference."""


class NoFeasibleTarget(PlacementError):
    """Every candidate target was removed by policy or validation."""

    def __init__(self, message: str, decision=None):
        super().__init__(message)
        self.decision = decision  # Decision with selected_target_id=None


class InsufficientHistory(PlacementError):
    """A predictor does not have enough observations to answer yet."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"insufficient history: need {required} observations, have {available}"
        )
        self.required = required
        self.available = available


class ConfigurationInvalid(PlacementError):
    """Rejected configuration. Raised before any state is built from it."""
