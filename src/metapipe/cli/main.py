"""Click application entrypoint for metapipe."""

from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path
from types import FrameType
from typing import Optional

import click

from metapipe import __version__
from metapipe.cli.exit_codes import EXIT_ERROR, EXIT_SUCCESS, EXIT_SIGINT, exit_code_for
from metapipe.exceptions import MetaPipeError, MissingUpstreamArtifact
from metapipe.utils.logging import get_logger, setup_logging

from .commands.config import init_config
from .commands.status import status
from .commands.transfer import transfer as transfer_command
from .common_options import (
    config_option,
    manifest_option,
    output_base_dir_option,
    save_to_scratch_option,
    task_index_option,
    threads_option,
    verbose_option,
)
from .pipeline import RunOptions, execute_run


def _handle_signal(signum: int, frame: Optional[FrameType]) -> None:
    """Turn SIGINT/SIGTERM into KeyboardInterrupt so cleanup runs."""
    sig_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
    click.echo(f"\n{sig_name} received, cleaning up...", err=True)
    raise KeyboardInterrupt(f"{sig_name} received")


def _print_version(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
    if value and not ctx.resilient_parsing:
        click.echo(f"metapipe {__version__}")
        ctx.exit()


@click.group(
    context_settings=dict(help_option_names=["-h", "--help"]),
    invoke_without_command=True,
)
@click.option(
    "-V",
    "--version",
    is_flag=True,
    is_eager=True,
    expose_value=False,
    callback=_print_version,
    help="Show the version and exit.",
)
@click.option("-k", "--run-kneaddata", is_flag=True, help="Run host decontamination and QC (kneaddata)")
@click.option("-r", "--run-kraken2", is_flag=True, help="Run taxonomic classification (kraken2)")
@click.option("-b", "--run-bracken", is_flag=True, help="Run abundance estimation (bracken)")
@click.option("-a", "--all", "run_all", is_flag=True, help="Run all stages")
@manifest_option
@output_base_dir_option
@save_to_scratch_option
@click.option("-n", "--study-name", default=None, help="Study name, used for the log directory")
@click.option("-t", "--transfer", is_flag=True, help="Transfer durable outputs via the relay host when done")
@click.option("-d", "--transfer-dir", default=None, help="Remote destination root for --transfer")
@config_option
@threads_option
@task_index_option
@click.option("--keep-scratch", is_flag=True, help="Keep the scratch working directory")
@click.option("--dry-run", is_flag=True, help="Show the plan without executing")
@verbose_option
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Log file [default: <log_root>/<study>/<sample>_meta.log]",
)
@click.pass_context
def cli(
    ctx: click.Context,
    run_kneaddata: bool,
    run_kraken2: bool,
    run_bracken: bool,
    run_all: bool,
    manifest: Optional[Path],
    output_base_dir: Optional[str],
    save_to_scratch: bool,
    study_name: Optional[str],
    transfer: bool,
    transfer_dir: Optional[str],
    config: Optional[Path],
    threads: Optional[int],
    task_index: Optional[int],
    keep_scratch: bool,
    dry_run: bool,
    verbose: int,
    log_file: Optional[Path],
) -> None:
    """metapipe: stage-checkpointed metagenomics for one manifest sample.

    Runs kneaddata, kraken2 and bracken for the sample addressed by the
    scheduler task index. Stages whose outputs already exist in durable
    storage are skipped.
    """
    ctx.ensure_object(dict)

    # If a subcommand was invoked, do not run the pipeline here
    if ctx.invoked_subcommand:
        return

    setup_logging(level=logging.DEBUG if verbose >= 2 else logging.INFO)
    logger = get_logger("cli")

    opts = RunOptions(
        run_kneaddata=run_kneaddata,
        run_kraken2=run_kraken2,
        run_bracken=run_bracken,
        run_all=run_all,
        manifest=manifest,
        output_base_dir=output_base_dir,
        save_to_scratch=save_to_scratch,
        study_name=study_name,
        transfer=transfer,
        transfer_dir=transfer_dir,
        config_path=config,
        threads=threads,
        task_index=task_index,
        keep_scratch=keep_scratch,
        dry_run=dry_run,
        verbose=verbose,
        log_file=log_file,
    )
    if not opts.selected_stages():
        click.echo(ctx.get_help())
        raise click.UsageError(
            "No stage selected. Use -k/--run-kneaddata, -r/--run-kraken2, -b/--run-bracken or -a/--all",
            ctx=ctx,
        )

    try:
        execute_run(opts, logger)
    except KeyboardInterrupt as exc:
        logger.warning(f"Run interrupted: {exc}")
        sys.exit(exit_code_for(exc))
    except MetaPipeError as exc:
        code = exit_code_for(exc)
        logger.error(f"{type(exc).__name__}: {exc}")
        if isinstance(exc, MissingUpstreamArtifact) and exc.flag:
            logger.error(f"Hint: add {exc.flag} to produce the missing {exc.upstream} outputs")
        logger.error(f"Exiting with code {code}")
        sys.exit(code)
    except Exception as exc:
        logger.exception(f"Unexpected error: {exc}")
        sys.exit(EXIT_ERROR)


cli.add_command(init_config)
cli.add_command(status)
cli.add_command(transfer_command)


def main(argv: list[str] | None = None) -> int:
    """Main entry point with signal handling."""
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        cli(argv)
        return EXIT_SUCCESS
    except KeyboardInterrupt:
        return EXIT_SIGINT
    except SystemExit as exc:
        # Preserve explicit exit codes from cli()
        if exc.code is None:
            return EXIT_SUCCESS
        return exc.code if isinstance(exc.code, int) else EXIT_ERROR
    except Exception as exc:
        click.echo(f"Error: {exc}", err=True)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
