"""Subcommands of the metapipe CLI."""
