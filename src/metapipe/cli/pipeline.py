"""Run execution helpers for the CLI."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

import click

from metapipe.config import Config, load_config
from metapipe.core.context import build_run_context, resolve_task_index, study_log_dir
from metapipe.core.manifest import resolve
from metapipe.core.pipeline import Pipeline
from metapipe.core.pipeline_types import PipelineResult
from metapipe.core.stages import ALL_STAGES, Stage, ordered
from metapipe.exceptions import ConfigurationError
from metapipe.utils.logging import level_from_name, setup_logging


@dataclass
class RunOptions:
    """Container for run options collected from the command line."""

    run_kneaddata: bool = False
    run_kraken2: bool = False
    run_bracken: bool = False
    run_all: bool = False
    manifest: Optional[Path] = None
    output_base_dir: Optional[str] = None  # None means use config or default
    save_to_scratch: bool = False
    study_name: Optional[str] = None
    transfer: bool = False
    transfer_dir: Optional[str] = None
    config_path: Optional[Path] = None
    threads: Optional[int] = None
    task_index: Optional[int] = None
    keep_scratch: bool = False
    dry_run: bool = False
    verbose: int = 0
    log_file: Optional[Path] = None

    def selected_stages(self) -> tuple[Stage, ...]:
        if self.run_all:
            return ALL_STAGES
        selected: List[Stage] = []
        if self.run_kneaddata:
            selected.append(Stage.DECONTAMINATION)
        if self.run_kraken2:
            selected.append(Stage.CLASSIFICATION)
        if self.run_bracken:
            selected.append(Stage.ABUNDANCE_ESTIMATION)
        return ordered(selected)


def log_level_for(verbose: int, cfg: Config) -> int:
    """-vv: DEBUG, -v: INFO, otherwise the configured level."""
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return level_from_name(cfg.runtime.log_level)


def build_config(opts: RunOptions) -> Config:
    """Defaults, then config file, then command line."""
    cfg = load_config(opts.config_path) if opts.config_path else Config()

    if opts.manifest is not None:
        cfg.paths.manifest = opts.manifest
    if opts.output_base_dir is not None:
        cfg.paths.output_base_dir = opts.output_base_dir
    if opts.save_to_scratch:
        cfg.paths.save_to_scratch = True
    if opts.study_name is not None:
        cfg.paths.study_name = opts.study_name
    if opts.transfer:
        cfg.transfer.enabled = True
    if opts.transfer_dir is not None:
        cfg.transfer.dest_dir = opts.transfer_dir
    if opts.threads is not None:
        cfg.threads = opts.threads
    if opts.keep_scratch:
        cfg.keep_scratch = True
    if opts.log_file is not None:
        cfg.runtime.log_file = opts.log_file

    cfg.validate()
    return cfg


def execute_run(
    opts: RunOptions,
    logger: logging.Logger,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[PipelineResult]:
    """Resolve the task, build the run context and run (or describe) the pipeline.

    Returns None for a dry run.

    Raises:
        MetaPipeError: any failure category; the caller maps it to an exit code
    """
    env = dict(os.environ) if env is None else dict(env)
    stages = opts.selected_stages()
    if not stages:
        raise ConfigurationError(
            "No stage selected. Use -k/--run-kneaddata, -r/--run-kraken2, -b/--run-bracken or -a/--all"
        )

    cfg = build_config(opts)
    level = log_level_for(opts.verbose, cfg)
    setup_logging(level=level, log_file=cfg.runtime.log_file)

    task_index = resolve_task_index(env, cfg.scheduler, opts.task_index)
    logger.info(f"Resolving task {task_index} from {cfg.paths.manifest}")
    record = resolve(cfg.paths.manifest, task_index)

    if cfg.runtime.log_file is None and not opts.dry_run:
        # Per-sample run log, attached as soon as the sample is known
        sample_log = study_log_dir(cfg) / f"{record.sample_id}_meta.log"
        setup_logging(level=level, log_file=sample_log)
        logger.info(f"Run log: {sample_log}")

    context = build_run_context(cfg, record, stages, env, transfer=cfg.transfer.enabled)
    logger.info(
        f"[{record.sample_id}] Task {context.task_index}: stages "
        f"{', '.join(s.value for s in context.stages)} with {context.threads} thread(s)"
    )
    logger.debug(f"Run context: {context.summary()}")

    pipeline = Pipeline(context, enable_progress=cfg.runtime.enable_progress)
    if opts.dry_run:
        click.echo("Dry run - nothing will be executed:")
        for line in pipeline.describe_plan():
            click.echo(line)
        return None

    return pipeline.run()
