"""Scratch lifetime and end-of-run finalisation.

``ScratchSession`` owns the working directory. Whatever happens inside the
``with`` block, its exit builds a ``RunOutcome`` and hands it to
``CleanupDispatcher.finalize`` exactly once, then lets the original
exception continue.
"""

from __future__ import annotations

import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from metapipe.core.context import RunContext
from metapipe.core.publisher import DurablePublisher
from metapipe.core.stages import Stage
from metapipe.core.transfer import TransferDispatcher, TransferResult
from metapipe.exceptions import ExternalToolError, PublishFailed
from metapipe.external.qstat import Qstat
from metapipe.utils.logging import get_logger

logger = get_logger("cleanup")


def format_elapsed(seconds: float) -> str:
    """``HH:MM:SS``; hours may exceed 24."""
    total = int(max(0, seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class RunOutcome:
    """How the run body ended."""

    early_exit: bool
    completed_stages: tuple[Stage, ...] = ()
    error: Optional[BaseException] = None
    preserve_scratch: bool = False

    @classmethod
    def from_exception(
        cls,
        exc: Optional[BaseException],
        completed_stages: tuple[Stage, ...] = (),
        keep_scratch: bool = False,
    ) -> "RunOutcome":
        return cls(
            early_exit=exc is not None,
            completed_stages=tuple(completed_stages),
            error=exc,
            preserve_scratch=keep_scratch or isinstance(exc, PublishFailed),
        )


@dataclass
class FinalizeReport:
    """What the finaliser did."""

    published: List[Stage] = field(default_factory=list)
    scratch_removed: bool = False
    accounting_file: Optional[Path] = None
    transfer: Optional[TransferResult] = None
    elapsed: str = "00:00:00"


class CleanupDispatcher:
    """Runs once at the end of every run, successful or not."""

    def __init__(
        self,
        context: RunContext,
        publisher: Optional[DurablePublisher] = None,
        transfer: Optional[TransferDispatcher] = None,
        accounting_factory: Optional[Callable[[], Qstat]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.context = context
        self.publisher = publisher or DurablePublisher(threads=context.threads, env=context.tool_env)
        if transfer is None and context.transfer_settings is not None:
            transfer = TransferDispatcher(context.transfer_settings)
        self.transfer = transfer
        self._accounting_factory = accounting_factory or (
            lambda: Qstat(env=context.tool_env, command=context.accounting_command)
        )
        self._clock = clock

    def discard_scratch(self) -> bool:
        working_dir = self.context.working_dir
        if not working_dir.exists():
            return True
        shutil.rmtree(working_dir, ignore_errors=True)
        if working_dir.exists():
            logger.warning(f"Could not fully remove working directory {working_dir}")
            return False
        logger.info(f"Removed working directory {working_dir}")
        return True

    def snapshot_accounting(self) -> Optional[Path]:
        """Best effort: write the scheduler's job record next to the outputs."""
        ctx = self.context
        if not ctx.job_id:
            logger.debug("No job id in environment; skipping accounting snapshot")
            return None
        dest = ctx.durable_root / f"qstat_{ctx.job_id}_{ctx.task_index}.txt"
        try:
            return self._accounting_factory().snapshot(ctx.job_id, dest)
        except (ExternalToolError, OSError) as exc:
            logger.warning(f"Could not record scheduler accounting to {dest}: {exc}")
            return None

    def finalize(self, outcome: RunOutcome) -> FinalizeReport:
        """Apply the end-of-run rules to ``outcome``.

        Early exit: no publish, no transfer; scratch discarded unless it must
        be preserved. Normal exit: publish, snapshot, discard, transfer.

        Raises:
            PublishFailed: a completed stage could not be published (normal exit only)
        """
        ctx = self.context
        report = FinalizeReport()
        try:
            if outcome.early_exit:
                if outcome.preserve_scratch:
                    logger.warning(f"Keeping working directory for inspection: {ctx.working_dir}")
                else:
                    report.scratch_removed = self.discard_scratch()
                return report

            for stage in outcome.completed_stages:
                if self.publisher.publish(stage, ctx.stage_scratch_dir(stage), ctx.durable_root, ctx.sample_id):
                    report.published.append(stage)
            report.accounting_file = self.snapshot_accounting()
            if ctx.keep_scratch:
                logger.info(f"Keeping working directory: {ctx.working_dir}")
            else:
                report.scratch_removed = self.discard_scratch()

            if ctx.transfer is not None and self.transfer is not None:
                report.transfer = self.transfer.dispatch(ctx.transfer)
            return report
        finally:
            report.elapsed = format_elapsed(self._clock() - ctx.started_at)
            logger.info(f"[{ctx.sample_id}] Total elapsed time: {report.elapsed}")


class ScratchSession:
    """Context manager around the working directory of one run.

    ``completed`` is appended to by the orchestrator as stages finish.
    """

    def __init__(self, context: RunContext, dispatcher: CleanupDispatcher):
        self.context = context
        self.dispatcher = dispatcher
        self.completed: List[Stage] = []
        self.report: Optional[FinalizeReport] = None

    def __enter__(self) -> "ScratchSession":
        working_dir = self.context.working_dir
        if working_dir.exists():
            logger.warning(f"Removing stale working directory {working_dir}")
            shutil.rmtree(working_dir)
        working_dir.mkdir(parents=True)
        logger.info(f"Working directory: {working_dir}")
        return self

    def mark_done(self, stage: Stage) -> None:
        if stage not in self.completed:
            self.completed.append(stage)

    def __exit__(self, exc_type, exc, tb) -> bool:
        outcome = RunOutcome.from_exception(exc, tuple(self.completed), self.context.keep_scratch)
        if exc is not None:
            # Finalisation must not replace the exception that ended the run
            try:
                self.report = self.dispatcher.finalize(outcome)
            except Exception as cleanup_exc:
                logger.error(f"Cleanup after failure also failed: {cleanup_exc}")
            return False
        self.report = self.dispatcher.finalize(outcome)
        return False
