"""Process — a unit of work submitted for placement. Immutable once submitted."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from placement_kernel.models.target import Location


class PipelineStage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    input_size_mb: float = Field(default=0.0, ge=0.0)
    output_size_mb: float = Field(default=0.0, ge=0.0)
    dependencies: List[str] = []


class PipelineContext(BaseModel):
    """DAG context for a process that is one stage of a larger pipeline."""

    model_config = ConfigDict(frozen=True)

    dag_id: str
    stages: List[PipelineStage]
    current_stage: int = Field(default=0, ge=0)

    def remaining_stages(self) -> List[PipelineStage]:
        """Stages downstream of the current one."""
        return self.stages[self.current_stage + 1:]

    def downstream_data_mb(self) -> float:
        return sum(s.input_size_mb for s in self.remaining_stages())


class Process(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str = "compute"                   # e.g., "compute", "etl", "ml_inference"
    priority: int = Field(default=5, ge=1, le=10)   # 10 = highest

    cpu_requirement: float = Field(default=1.0, ge=0.0)    # cores
    memory_requirement_mb: float = Field(default=512.0, ge=0.0)
    input_size_mb: float = Field(default=0.0, ge=0.0)
    output_size_mb: float = Field(default=0.0, ge=0.0)
    data_sensitivity: int = Field(default=0, ge=0, le=5)

    estimated_duration_seconds: float = Field(default=60.0, ge=0.0)
    deadline_seconds: Optional[float] = Field(default=None, gt=0.0)   # SLA bound
    real_time: bool = False
    safety_critical: bool = False
    locality_required: bool = False
    security_level: int = Field(default=0, ge=0, le=5)

    data_location: Optional[Location] = None
    pipeline: Optional[PipelineContext] = None
    dependencies: List[str] = []
    submitted_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def data_size_mb(self) -> float:
        return self.input_size_mb + self.output_size_mb

    @property
    def pipeline_stage(self) -> int:
        return self.pipeline.current_stage if self.pipeline else 0

    def validation_errors(self) -> List[str]:
        """Semantic problems pydantic field constraints cannot express."""
        errors = []
        if not self.id:
            errors.append("id cannot be empty")
        if self.id in self.dependencies:
            errors.append("process cannot depend on itself")
        if len(set(self.dependencies)) != len(self.dependencies):
            errors.append("duplicate dependencies")
        if (
            self.deadline_seconds is not None
            and self.deadline_seconds < self.estimated_duration_seconds
        ):
            errors.append(
                f"deadline {self.deadline_seconds}s is shorter than estimated "
                f"duration {self.estimated_duration_seconds}s"
            )
        if self.pipeline and self.pipeline.current_stage >= len(self.pipeline.stages):
            errors.append(
                f"pipeline stage {self.pipeline.current_stage} out of range "
                f"({len(self.pipeline.stages)} stages)"
            )
        return errors
