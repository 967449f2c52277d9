"""System State — snapshot of local queue and resource utilisation."""

from datetime import datetime

from pydantic import BaseModel, Field


class SystemState(BaseModel):
    """Supplied by the metrics collector for every decision."""

    queue_depth: int = Field(default=0, ge=0)
    queue_threshold: int = Field(default=20, gt=0)
    queue_velocity: float = 0.0             # Change in depth per minute
    queue_throughput: float = Field(default=0.0, ge=0.0)    # Processes per minute
    queue_wait_seconds: float = Field(default=0.0, ge=0.0)

    compute_usage: float = Field(default=0.0, ge=0.0, le=1.0)
    memory_usage: float = Field(default=0.0, ge=0.0, le=1.0)
    disk_usage: float = Field(default=0.0, ge=0.0, le=1.0)
    network_usage: float = Field(default=0.0, ge=0.0, le=1.0)
    master_usage: float = Field(default=0.0, ge=0.0, le=1.0)

    time_slot: int = Field(default=0, ge=0, le=23)      # Hour of day
    day_of_week: int = Field(default=0, ge=0, le=6)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def queue_pressure(self) -> float:
        """Queue depth relative to its threshold, capped at 1."""
        return min(self.queue_depth / self.queue_threshold, 1.0)

    def load_score(self) -> float:
        return (
            0.4 * self.compute_usage
            + 0.3 * self.memory_usage
            + 0.1 * self.network_usage
            + 0.1 * self.master_usage
            + 0.1 * self.queue_pressure()
        )

    def is_high_load(self) -> bool:
        return (
            self.compute_usage > 0.8
            or self.memory_usage > 0.85
            or self.queue_depth > self.queue_threshold
        )

    def is_low_load(self) -> bool:
        return (
            self.compute_usage < 0.3
            and self.memory_usage < 0.3
            and self.queue_depth < self.queue_threshold // 4
        )
