"""Bracken wrapper."""

from __future__ import annotations

from pathlib import Path

from metapipe.external.base import ExternalTool

LEVEL_NAMES = {
    "D": "domain",
    "P": "phylum",
    "C": "class",
    "O": "order",
    "F": "family",
    "G": "genus",
    "S": "species",
}


def kmer_distribution_files(read_length: int) -> tuple[str, str]:
    """Database files bracken needs for a given read length."""
    return (
        f"database{read_length}mers.kmer_distrib",
        f"database{read_length}mers.kraken",
    )


class Bracken(ExternalTool):
    """Bracken abundance re-estimation from a kraken2 report."""

    tool_name = "bracken"
    version_command = "-v"

    def estimate(
        self,
        db: Path,
        report: Path,
        output: Path,
        output_report: Path,
        level: str,
        read_length: int = 100,
        threshold: int = 10,
    ) -> None:
        cmd = [
            self.tool_name,
            "-d", str(db),
            "-i", str(report),
            "-o", str(output),
            "-w", str(output_report),
            "-r", str(read_length),
            "-t", str(threshold),
            "-l", level,
        ]
        self.run(cmd, capture_output=True)
        self.logger.info(f"bracken {LEVEL_NAMES.get(level, level)} table: {output}")
