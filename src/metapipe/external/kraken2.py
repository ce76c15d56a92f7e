"""Kraken2 wrapper."""

from __future__ import annotations

from pathlib import Path

from metapipe.external.base import ExternalTool


class Kraken2(ExternalTool):
    """Kraken2 taxonomic classification of paired reads."""

    tool_name = "kraken2"
    # --confidence appeared in 2.0.7
    required_version = "2.0.7"

    def classify(
        self,
        db: Path,
        paired_1: Path,
        paired_2: Path,
        report: Path,
        labels: Path,
        confidence: float = 0.5,
        use_names: bool = True,
    ) -> None:
        cmd = [
            self.tool_name,
            "--db", str(db),
            "--threads", str(self.threads),
            "--confidence", str(confidence),
            "--report", str(report),
            "--output", str(labels),
        ]
        if use_names:
            cmd.append("--use-names")
        cmd += ["--paired", str(paired_1), str(paired_2)]

        report.parent.mkdir(parents=True, exist_ok=True)
        stdout, stderr = self.run(cmd, capture_output=True)
        # kraken2 prints its classification summary on stderr
        if stderr:
            self.logger.info(f"kraken2 summary: {stderr.strip()[-500:]}")
