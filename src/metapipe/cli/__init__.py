"""Command line interface (metapipe)."""

from metapipe.cli.main import cli, main

__all__ = ["cli", "main"]
