"""`init-config` subcommand: write the annotated YAML template."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from metapipe.cli.exit_codes import EXIT_USAGE

# Keys a study has to edit before the first array job is submitted
SITE_SPECIFIC_KEYS = ("paths.manifest", "databases", "transfer.relay_host")


@click.command(name="init-config")
@click.option(
    "-o",
    "--output-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("metapipe.yaml"),
    show_default=True,
    help="Where to write the template",
)
@click.option("--stdout", is_flag=True, help="Print the template instead of writing a file")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(output_file: Path, stdout: bool, force: bool) -> None:
    """Write a configuration template for a study.

    Every value in the template is the built-in default, so an unedited
    file behaves exactly like running without -c.
    """
    from metapipe.resources import get_default_config

    template = get_default_config()
    if stdout:
        click.echo(template, nl=False)
        return

    if output_file.exists() and not force:
        click.echo(f"Error: {output_file} already exists; pass --force to overwrite it", err=True)
        sys.exit(EXIT_USAGE)

    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(template)
    click.echo(f"Wrote configuration template: {output_file}")
    click.echo(f"Set {', '.join(SITE_SPECIFIC_KEYS)} before submitting, then run with -c {output_file}")
