"""Core pipeline functionality (metapipe)."""

from metapipe.core.pipeline import Pipeline
from metapipe.core.pipeline_types import PipelineResult, StagePlan, StageRecord
from metapipe.core.stages import ALL_STAGES, Stage, StageState

__all__ = [
    "ALL_STAGES",
    "Pipeline",
    "PipelineResult",
    "Stage",
    "StagePlan",
    "StageRecord",
    "StageState",
]
