"""Shared Click options for metapipe CLI commands.

The run command and ``status`` locate samples the same way, so the
options that address the manifest and durable storage live here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, TypeVar

import click

F = TypeVar("F", bound=Callable[..., None])


def manifest_option(func: F) -> F:
    """Manifest file option."""
    return click.option(
        "-m",
        "--manifest",
        type=click.Path(path_type=Path),
        default=None,
        help="Whitespace-separated manifest: sample_id input_a input_b (header line skipped)",
    )(func)


def output_base_dir_option(func: F) -> F:
    """Durable output base directory option."""
    return click.option(
        "-o",
        "--output-base-dir",
        default=None,
        help="Output directory relative to the durable base [default: metagenomics/out]",
    )(func)


def save_to_scratch_option(func: F) -> F:
    """Durable base on shared scratch instead of home."""
    return click.option(
        "-s",
        "--save-to-scratch",
        is_flag=True,
        default=False,
        help="Keep durable outputs under the shared scratch root instead of the home directory",
    )(func)


def config_option(func: F) -> F:
    """Configuration file option."""
    return click.option(
        "-c",
        "--config",
        type=click.Path(exists=True, path_type=Path),
        help="Configuration file (YAML)",
    )(func)


def task_index_option(func: F) -> F:
    """Explicit task index option."""
    return click.option(
        "--task-index",
        type=int,
        default=None,
        help="1-based manifest row [default: TASK_INDEX, then the scheduler task id, then 1]",
    )(func)


def threads_option(func: F) -> F:
    """Threads option."""
    return click.option(
        "--threads",
        type=click.IntRange(min=1),
        default=None,
        help="Number of threads [default: scheduler slot count, else 1]",
    )(func)


def verbose_option(func: F) -> F:
    """Verbosity option."""
    return click.option(
        "-v",
        "--verbose",
        count=True,
        help="Increase log verbosity (-v for INFO, -vv for DEBUG)",
    )(func)
