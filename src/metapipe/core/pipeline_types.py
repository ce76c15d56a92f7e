"""Shared pipeline types.

Lightweight dataclasses only, so the CLI can render plans and results
without importing the orchestrator.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from metapipe.core.stages import Stage, StageState

# Plan actions
COMPUTE = "compute"
SKIP = "skip"


@dataclass(frozen=True)
class StagePlan:
    """What the orchestrator intends to do with one requested stage."""

    stage: Stage
    action: str
    # upstream artifact name -> "scratch" / "durable"
    inputs_from: Dict[str, str] = field(default_factory=dict)
    reason: str = ""

    @property
    def computes(self) -> bool:
        return self.action == COMPUTE


@dataclass
class StageRecord:
    """Execution record of one stage."""

    stage: Stage
    state: StageState = StageState.PENDING
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration: Optional[float] = None
    error_message: Optional[str] = None

    def transition(self, state: StageState) -> None:
        if state in (StageState.STAGING, StageState.RUNNING) and self.start_time is None:
            self.start_time = time.time()
        if state in (StageState.DONE, StageState.FAILED) and self.start_time is not None:
            self.end_time = time.time()
            self.duration = self.end_time - self.start_time
        self.state = state


@dataclass
class PipelineResult:
    """Per-stage states of a run."""

    sample_id: str
    records: List[StageRecord] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)

    def record_for(self, stage: Stage) -> StageRecord:
        for record in self.records:
            if record.stage is stage:
                return record
        record = StageRecord(stage)
        self.records.append(record)
        return record

    def stages_in(self, state: StageState) -> List[Stage]:
        return [r.stage for r in self.records if r.state is state]

    @property
    def completed(self) -> List[Stage]:
        return self.stages_in(StageState.DONE)

    @property
    def skipped(self) -> List[Stage]:
        return self.stages_in(StageState.SKIPPED_COMPLETE)

    @property
    def failed(self) -> Optional[Stage]:
        failed = self.stages_in(StageState.FAILED)
        return failed[0] if failed else None

    def summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {}
        for record in self.records:
            summary[record.stage.value] = {
                "state": record.state.value,
                "duration": record.duration,
                "start_time": (
                    datetime.fromtimestamp(record.start_time).isoformat()
                    if record.start_time
                    else None
                ),
                "error": record.error_message,
            }
        return summary
