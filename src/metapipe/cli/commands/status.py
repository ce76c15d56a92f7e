"""`status` subcommand: per-sample stage completeness from durable storage."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import click
import pandas as pd

from metapipe.cli.common_options import (
    config_option,
    manifest_option,
    output_base_dir_option,
    save_to_scratch_option,
    task_index_option,
)
from metapipe.cli.exit_codes import exit_code_for
from metapipe.config import Config, load_config
from metapipe.core.context import durable_root_for
from metapipe.core.locator import missing_durable_artifacts
from metapipe.core.manifest import load_records
from metapipe.core.stages import ALL_STAGES
from metapipe.exceptions import ConfigurationError, EmptyManifest, IndexOutOfRange


def completeness_table(cfg: Config, env, task_index: Optional[int] = None) -> pd.DataFrame:
    """One row per sample, one column per stage ("done" or the missing artifacts)."""
    records = load_records(cfg.paths.manifest)
    if not records:
        raise EmptyManifest(f"Manifest contains no complete records: {cfg.paths.manifest}")
    if task_index is not None:
        records = [r for r in records if r.index == task_index]
        if not records:
            raise IndexOutOfRange(f"No well-formed manifest row at index {task_index}")

    rows = []
    for record in records:
        durable_root = durable_root_for(cfg, env, record.sample_id)
        row = {"task": record.index, "sample": record.sample_id}
        for stage in ALL_STAGES:
            missing = missing_durable_artifacts(durable_root, record.sample_id, stage)
            row[stage.value] = "done" if not missing else "missing: " + ",".join(missing)
        rows.append(row)
    return pd.DataFrame(rows, columns=["task", "sample"] + [s.value for s in ALL_STAGES])


@click.command(name="status")
@manifest_option
@output_base_dir_option
@save_to_scratch_option
@config_option
@task_index_option
def status(
    manifest: Optional[Path],
    output_base_dir: Optional[str],
    save_to_scratch: bool,
    config: Optional[Path],
    task_index: Optional[int],
) -> None:
    """Show which stages are complete in durable storage (read-only)."""
    try:
        cfg = load_config(config) if config else Config()
        if manifest is not None:
            cfg.paths.manifest = manifest
        if output_base_dir is not None:
            cfg.paths.output_base_dir = output_base_dir
        if save_to_scratch:
            cfg.paths.save_to_scratch = True
        cfg.validate()
        table = completeness_table(cfg, dict(os.environ), task_index)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(exit_code_for(exc))

    click.echo(table.to_string(index=False))
    done = int((table[[s.value for s in ALL_STAGES]] == "done").all(axis=1).sum())
    click.echo(f"\n{done}/{len(table)} samples complete")
