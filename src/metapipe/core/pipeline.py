"""Pipeline Orchestrator: drive one sample through its requested stages.

Durable storage is the only checkpoint. A requested stage whose durable
artifacts are all present is skipped; every other stage is staged into
scratch, run, verified and published before the next one starts.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from metapipe.core.cleanup import CleanupDispatcher, FinalizeReport, ScratchSession
from metapipe.core.context import RunContext
from metapipe.core.locator import is_stage_complete, locate_upstream
from metapipe.core.pipeline_types import COMPUTE, SKIP, PipelineResult, StagePlan
from metapipe.core.publisher import DurablePublisher
from metapipe.core.runner import StageRunner
from metapipe.core.stages import Stage, StageState
from metapipe.core.staging import ScratchStager, reference_databases_for
from metapipe.exceptions import MetaPipeError, PipelineError
from metapipe.utils.logging import LogTemplates, get_logger
from metapipe.utils.progress import iter_progress


class Pipeline:
    """Runs the requested stages of one sample.

    Collaborators can be injected; by default they are built from ``context``.
    """

    def __init__(
        self,
        context: RunContext,
        runner: Optional[StageRunner] = None,
        stager: Optional[ScratchStager] = None,
        publisher: Optional[DurablePublisher] = None,
        dispatcher: Optional[CleanupDispatcher] = None,
        enable_progress: bool = False,
    ):
        self.context = context
        self.logger = get_logger("pipeline")
        self.runner = runner or StageRunner(context)
        self.stager = stager or ScratchStager(
            threads=context.threads,
            expansion_factor=context.expansion_factor,
            env=context.tool_env,
        )
        self.publisher = publisher or DurablePublisher(threads=context.threads, env=context.tool_env)
        self.dispatcher = dispatcher or CleanupDispatcher(context, publisher=self.publisher)
        self.enable_progress = enable_progress
        self.report: Optional[FinalizeReport] = None
        self.result: Optional[PipelineResult] = None

    def plan(self) -> List[StagePlan]:
        """Decide skip/compute per requested stage without touching anything.

        Raises:
            MissingUpstreamArtifact: a computed stage has no upstream source
        """
        ctx = self.context
        plans: List[StagePlan] = []
        produced: List[Stage] = []
        for stage in ctx.stages:
            if is_stage_complete(ctx.durable_root, ctx.sample_id, stage):
                plans.append(StagePlan(stage, SKIP, reason="outputs already in durable storage"))
                continue
            sources = locate_upstream(
                ctx.working_dir,
                ctx.durable_root,
                ctx.sample_id,
                stage,
                produced_this_run=tuple(produced),
                check_scratch=False,
            )
            inputs_from = {s.artifact.name: s.location for s in sources}
            plans.append(StagePlan(stage, COMPUTE, inputs_from=inputs_from))
            produced.append(stage)
        return plans

    def describe_plan(self) -> List[str]:
        ctx = self.context
        lines = [
            f"Sample:        {ctx.sample_id} (task {ctx.task_index})",
            f"Inputs:        {ctx.record.input_a}, {ctx.record.input_b}",
            f"Durable root:  {ctx.durable_root}",
            f"Working dir:   {ctx.working_dir}",
            f"Threads:       {ctx.threads}",
        ]
        for plan in self.plan():
            if plan.computes:
                sources = ", ".join(f"{k} from {v}" for k, v in plan.inputs_from.items())
                detail = f"compute ({sources})" if sources else "compute (raw reads)"
            else:
                detail = f"skip - {plan.reason}"
            lines.append(f"  {plan.stage.value:<10} {detail}")
        if ctx.transfer is not None:
            lines.append(f"Transfer to:   {ctx.transfer.dest}")
        return lines

    def _reference_databases(self, stage: Stage):
        read_length = self.context.tool_options(Stage.ABUNDANCE_ESTIMATION).get("read_length", 100)
        return reference_databases_for(stage, self.context.databases, read_length)

    def run(self) -> PipelineResult:
        """Execute the plan inside a scratch session.

        Raises:
            MetaPipeError: the first fatal failure, after cleanup ran
            KeyboardInterrupt: on SIGINT/SIGTERM, after cleanup ran
        """
        ctx = self.context
        plans = self.plan()
        computed = [p.stage for p in plans if p.computes]
        if computed:
            self.runner.preflight(computed)

        result = self.result = PipelineResult(sample_id=ctx.sample_id)
        for plan in plans:
            result.record_for(plan.stage)

        session = ScratchSession(ctx, self.dispatcher)
        try:
            with session:
                iterator = iter_progress(
                    plans, total=len(plans), desc=ctx.sample_id, enabled=self.enable_progress
                )
                for number, plan in enumerate(iterator, 1):
                    self._run_planned_stage(plan, number, len(plans), result, session)
        finally:
            self.report = session.report

        self.logger.info(f"[{ctx.sample_id}] Pipeline completed successfully")
        return result

    def _run_planned_stage(
        self,
        plan: StagePlan,
        number: int,
        total: int,
        result: PipelineResult,
        session: ScratchSession,
    ) -> None:
        ctx = self.context
        stage = plan.stage
        record = result.record_for(stage)

        if not plan.computes:
            record.transition(StageState.SKIPPED_COMPLETE)
            self.logger.info(
                LogTemplates.STAGE_SKIPPED.format(sample=ctx.sample_id, stage=stage.value, reason=plan.reason)
            )
            return

        self.logger.info(
            LogTemplates.STAGE_START.format(sample=ctx.sample_id, stage=stage.value, number=number, total=total)
        )
        with self._failing(record):
            record.transition(StageState.STAGING)
            staged = self.stager.prepare(
                stage, ctx.record, ctx.working_dir, ctx.durable_root, self._reference_databases(stage)
            )
            record.transition(StageState.RUNNING)
            outputs = self.runner.run_stage(stage, staged)

        record.transition(StageState.DONE)
        session.mark_done(stage)
        self.logger.info(
            LogTemplates.STAGE_SUCCESS.format(sample=ctx.sample_id, stage=stage.value, duration=record.duration or 0.0)
        )
        # A failed publish turns the stage back to FAILED
        with self._failing(record):
            self.publisher.publish(stage, Path(outputs.stage_dir), ctx.durable_root, ctx.sample_id)

    @contextmanager
    def _failing(self, record):
        try:
            yield
        except KeyboardInterrupt:
            record.error_message = "interrupted"
            record.transition(StageState.FAILED)
            raise
        except MetaPipeError as exc:
            self._fail(record, exc)
            raise
        except Exception as exc:
            self._fail(record, exc)
            raise PipelineError(
                f"Unexpected failure in {record.stage.value} for {self.context.sample_id}: {exc}"
            ) from exc

    def _fail(self, record, exc: BaseException) -> None:
        record.error_message = str(exc)
        record.transition(StageState.FAILED)
        self.logger.error(
            LogTemplates.STAGE_FAILURE.format(
                sample=self.context.sample_id,
                category=type(exc).__name__,
                stage=record.stage.value,
                error=exc,
            )
        )

