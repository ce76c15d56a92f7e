"""Stage Runner: invoke a stage's tool(s) on staged scratch inputs and verify outputs."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from metapipe.core.context import RunContext
from metapipe.core.locator import find_scratch, missing_scratch_artifacts
from metapipe.core.stages import Stage, ordered
from metapipe.core.staging import StagedPaths
from metapipe.exceptions import (
    DependencyError,
    ExternalToolError,
    StageOutputMissing,
    ToolExecutionFailed,
)
from metapipe.external.bracken import Bracken
from metapipe.external.kneaddata import Kneaddata
from metapipe.external.kraken2 import Kraken2
from metapipe.external.pigz import Pigz
from metapipe.utils.logging import get_logger

logger = get_logger("runner")

# Tools each stage needs on PATH; pigz moves reads in and out of scratch
STAGE_TOOLS: Dict[Stage, tuple[str, ...]] = {
    Stage.DECONTAMINATION: ("kneaddata", "pigz"),
    Stage.CLASSIFICATION: ("kraken2", "pigz"),
    Stage.ABUNDANCE_ESTIMATION: ("bracken",),
}

# The abundance stage publishes exactly these two tables
BRACKEN_LEVELS = (("S", "species"), ("G", "genus"))


@dataclass
class StageOutputs:
    """Verified scratch artifacts of one stage."""

    stage: Stage
    stage_dir: Path
    artifacts: Dict[str, Path] = field(default_factory=dict)
    duration: float = 0.0


class StageRunner:
    """Runs one stage at a time for the sample in ``context``.

    Tool wrappers are created lazily; ``tools`` may pre-seed them by name.
    """

    def __init__(self, context: RunContext, tools: Optional[Mapping[str, Any]] = None):
        self.context = context
        self._tools: Dict[str, Any] = dict(tools or {})
        self._factories: Dict[str, Callable[[], Any]] = {
            "kneaddata": self._make_kneaddata,
            "kraken2": lambda: Kraken2(threads=context.threads, env=context.tool_env),
            "bracken": lambda: Bracken(threads=context.threads, env=context.tool_env),
            "pigz": lambda: Pigz(threads=context.threads, env=context.tool_env),
        }

    def _make_kneaddata(self) -> Kneaddata:
        options = self.context.tool_options(Stage.DECONTAMINATION)
        return Kneaddata(
            threads=self.context.threads,
            env=self.context.tool_env,
            fastqc=options.get("fastqc") or "fastqc",
            trimmomatic_dir=options.get("trimmomatic_dir"),
        )

    def tool(self, name: str) -> Any:
        if name not in self._tools:
            self._tools[name] = self._factories[name]()
        return self._tools[name]

    def preflight(self, stages: Iterable[Stage]) -> None:
        """Check every executable the given stages need.

        Raises:
            DependencyError: listing all missing tools at once
        """
        problems: List[str] = []
        names: List[str] = []
        for stage in ordered(stages):
            for name in STAGE_TOOLS[stage]:
                if name not in names:
                    names.append(name)
        for name in names:
            try:
                tool = self.tool(name)
                if name == "kneaddata":
                    tool.resolve_trimmomatic_dir()
            except ExternalToolError as exc:
                problems.append(str(exc))
        if problems:
            raise DependencyError("Missing dependencies: " + "; ".join(problems))
        if names:
            logger.info(f"All dependencies found: {', '.join(names)}")

    def run_stage(self, stage: Stage, staged: StagedPaths) -> StageOutputs:
        """Invoke the tool(s) of ``stage`` and verify its scratch artifacts.

        Raises:
            ToolExecutionFailed: a tool exited non-zero or could not start
            StageOutputMissing: an expected artifact is absent or empty
        """
        start = time.time()
        handlers = {
            Stage.DECONTAMINATION: self._run_kneaddata,
            Stage.CLASSIFICATION: self._run_kraken2,
            Stage.ABUNDANCE_ESTIMATION: self._run_bracken,
        }
        staged.stage_dir.mkdir(parents=True, exist_ok=True)
        try:
            handlers[stage](staged)
        except ToolExecutionFailed:
            raise
        except ExternalToolError as exc:
            raise ToolExecutionFailed(
                f"{stage.value} failed for {self.context.sample_id}: {exc}",
                command=exc.command,
                returncode=exc.returncode,
                stderr=exc.stderr,
            ) from exc

        outputs = self.verify_outputs(stage, staged.stage_dir)
        outputs.duration = time.time() - start
        return outputs

    def verify_outputs(self, stage: Stage, stage_dir: Path) -> StageOutputs:
        sample_id = self.context.sample_id
        working_dir = stage_dir.parent
        missing = missing_scratch_artifacts(working_dir, sample_id, stage)
        if missing:
            raise StageOutputMissing(
                f"{stage.value} finished but left no usable {', '.join(missing)} in {stage_dir}",
                missing=missing,
            )
        artifacts = {
            a.name: find_scratch(working_dir, sample_id, a, stage) for a in stage.artifacts
        }
        return StageOutputs(stage=stage, stage_dir=stage_dir, artifacts=artifacts)

    def _run_kneaddata(self, staged: StagedPaths) -> None:
        sample_id = self.context.sample_id
        out_dir = staged.stage_dir
        kneaddata = self.tool("kneaddata")
        input1, input2 = staged.reads
        kneaddata.decontaminate(
            input1,
            input2,
            out_dir,
            staged.references["host_index"],
            out_dir / f"{sample_id}.kneaddata.log",
            self.context.tool_options(Stage.DECONTAMINATION),
        )
        kneaddata.read_count_table(out_dir, out_dir / f"{sample_id}.kneaddata.read_count.tsv")
        self._remove_byproducts(Stage.DECONTAMINATION, out_dir)

    def _remove_byproducts(self, stage: Stage, stage_dir: Path) -> None:
        removed = 0
        for pattern in stage.spec.byproduct_globs:
            for path in stage_dir.glob(pattern):
                if path.is_file():
                    path.unlink()
                    removed += 1
        if removed:
            logger.info(f"Removed {removed} intermediate file(s) from {stage_dir}")

    def _run_kraken2(self, staged: StagedPaths) -> None:
        sample_id = self.context.sample_id
        options = self.context.tool_options(Stage.CLASSIFICATION)
        self.tool("kraken2").classify(
            staged.references["kraken2_db"],
            staged.upstream["paired_1"],
            staged.upstream["paired_2"],
            staged.stage_dir / f"{sample_id}.kraken2.report",
            staged.stage_dir / f"{sample_id}.kraken2.labels.tsv",
            confidence=options.get("confidence", 0.5),
            use_names=options.get("use_names", True),
        )

    def _run_bracken(self, staged: StagedPaths) -> None:
        sample_id = self.context.sample_id
        options = self.context.tool_options(Stage.ABUNDANCE_ESTIMATION)
        bracken = self.tool("bracken")
        for level, suffix in BRACKEN_LEVELS:
            logger.info(f"[{sample_id}] Running bracken at level {level}")
            bracken.estimate(
                staged.references["bracken_db"],
                staged.upstream["kraken_report"],
                staged.stage_dir / f"{sample_id}_{suffix}.tsv",
                staged.stage_dir / f"{sample_id}_{suffix}.outreport",
                level,
                read_length=options.get("read_length", 100),
                threshold=options.get("threshold", 10),
            )

