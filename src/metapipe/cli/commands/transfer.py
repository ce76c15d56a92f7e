"""`transfer` subcommand: run or retry the relay transfer of one sample."""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click

from metapipe.cli.exit_codes import EXIT_ERROR, exit_code_for
from metapipe.config import Config, load_config
from metapipe.core.transfer import TransferDispatcher, TransferRequest, TransferSettings
from metapipe.exceptions import ConfigurationError
from metapipe.utils.logging import get_logger, setup_logging


@click.command(name="transfer")
@click.argument("durable_dir", type=click.Path(path_type=Path))
@click.argument("dest")
@click.option("--sample-id", default=None, help="Sample id [default: name of DURABLE_DIR]")
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="Transfer log to append to")
@click.option("-c", "--config", type=click.Path(exists=True, path_type=Path), help="Configuration file (YAML)")
@click.option("--relay-host", default=None, help="Data-transfer relay host")
@click.option("--ssh-key", type=click.Path(path_type=Path), default=None, help="Private key for the relay host")
@click.option("--netrc", type=click.Path(path_type=Path), default=None, help="Credentials file the remote side needs")
@click.option("--remote-command", default=None, help="Command run on the relay host with <src> <dest>")
@click.option("--max-retries", type=click.IntRange(min=1), default=None, help="Attempts before giving up")
@click.option("--retry-wait", type=click.FloatRange(min=0), default=None, help="Seconds between attempts")
@click.option("--max-concurrent", type=click.IntRange(min=1), default=None, help="Concurrent transfers allowed")
@click.option("--slot-dir", type=click.Path(path_type=Path), default=None, help="Shared transfer slot directory")
@click.option("--slot-wait-seconds", type=click.FloatRange(min=0), default=None, help="Seconds to wait for a free slot")
@click.option("--slot-stale-seconds", type=click.FloatRange(min=0), default=None, help="Age after which a slot is reclaimed")
def transfer(
    durable_dir: Path,
    dest: str,
    sample_id: Optional[str],
    log_file: Optional[Path],
    config: Optional[Path],
    relay_host: Optional[str],
    ssh_key: Optional[Path],
    netrc: Optional[Path],
    remote_command: Optional[str],
    max_retries: Optional[int],
    retry_wait: Optional[float],
    max_concurrent: Optional[int],
    slot_dir: Optional[Path],
    slot_wait_seconds: Optional[float],
    slot_stale_seconds: Optional[float],
) -> None:
    """Send DURABLE_DIR to DEST through the relay host.

    DEST is the full remote destination. Exits 0 on success, 1 on failure.
    """
    try:
        cfg = load_config(config) if config else Config()
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(exit_code_for(exc))

    sample = sample_id or durable_dir.name
    log_path = log_file or Path(cfg.runtime.log_root) / f"{sample}_transfer.log"
    setup_logging()
    logger = get_logger("cli.transfer")

    settings = TransferSettings.from_config(cfg.transfer)
    overrides = {
        "relay_host": relay_host,
        "ssh_key": ssh_key,
        "netrc": netrc,
        "remote_command": remote_command,
        "max_retries": max_retries,
        "retry_wait": retry_wait,
        "max_concurrent": max_concurrent,
        "slot_dir": slot_dir,
        "slot_wait_seconds": slot_wait_seconds,
        "slot_stale_seconds": slot_stale_seconds,
    }
    settings = replace(settings, mode="inline", **{k: v for k, v in overrides.items() if v is not None})

    request = TransferRequest(sample, durable_dir, dest, log_path)
    result = TransferDispatcher(settings).dispatch(request)
    if not result.success:
        logger.error(f"Transfer of {sample} failed: {result.error}")
        sys.exit(EXIT_ERROR)
    click.echo(f"Transfer of {sample} completed after {result.attempts} attempt(s)")
