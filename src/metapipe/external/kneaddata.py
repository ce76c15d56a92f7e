"""KneadData wrapper (host decontamination and read QC)."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, List, Mapping, Optional

from metapipe.exceptions import ExternalToolError
from metapipe.external.base import ExternalTool

TRIMMOMATIC_JAR = "trimmomatic.jar"


class Kneaddata(ExternalTool):
    """KneadData: trimming, repeat removal and host read depletion."""

    tool_name = "kneaddata"
    read_count_tool = "kneaddata_read_count_table"

    def __init__(
        self,
        logger=None,
        threads: int = 1,
        env: Optional[Mapping[str, str]] = None,
        fastqc: str = "fastqc",
        trimmomatic_dir: Optional[Path] = None,
    ):
        self.fastqc = fastqc
        self.trimmomatic_dir = Path(trimmomatic_dir).expanduser() if trimmomatic_dir else None
        super().__init__(logger=logger, threads=threads, env=env)

    def _get_required_tools(self) -> List[str]:
        return ["bowtie2", "java", self.fastqc, self.read_count_tool]

    def resolve_trimmomatic_dir(self) -> Path:
        """Directory holding trimmomatic.jar.

        Uses the configured directory, else ``$CONDA_PREFIX/share/trimmomatic``.
        """
        candidates = []
        if self.trimmomatic_dir:
            candidates.append(self.trimmomatic_dir)
        conda_prefix = (self.env or {}).get("CONDA_PREFIX")
        if conda_prefix:
            candidates.append(Path(conda_prefix) / "share" / "trimmomatic")
        for candidate in candidates:
            if (candidate / TRIMMOMATIC_JAR).is_file():
                return candidate
        searched = ", ".join(str(c) for c in candidates) or "no candidate (CONDA_PREFIX unset)"
        raise ExternalToolError(f"Trimmomatic directory with {TRIMMOMATIC_JAR} not found: {searched}")

    def resolve_fastqc(self) -> str:
        search_path = self.env.get("PATH") if self.env else None
        return shutil.which(self.fastqc, path=search_path) or self.fastqc

    def decontaminate(
        self,
        input1: Path,
        input2: Path,
        output_dir: Path,
        reference_db: Path,
        log_file: Path,
        options: Mapping[str, Any],
    ) -> None:
        """Run kneaddata on a read pair."""
        bowtie2_options = f"{options.get('bowtie2_options', '')} -p {self.threads}".strip()
        cmd = [
            self.tool_name,
            "--input1", str(input1),
            "--input2", str(input2),
            "--output", str(output_dir),
            "--reference-db", str(reference_db),
            "--threads", str(self.threads),
            "--fastqc", self.resolve_fastqc(),
            "--trimmomatic", str(self.resolve_trimmomatic_dir()),
            "--trimmomatic-options", str(options.get("trimmomatic_options", "SLIDINGWINDOW:4:20 MINLEN:50")),
        ]
        if options.get("run_trim_repetitive", True):
            cmd.append("--run-trim-repetitive")
        cmd += ["--bowtie2-options", bowtie2_options, "--log", str(log_file)]
        if options.get("verbose", True):
            cmd.append("--verbose")
        if options.get("max_memory"):
            cmd += ["--max-memory", str(options["max_memory"])]

        output_dir.mkdir(parents=True, exist_ok=True)
        # --verbose output streams to the job log; --log keeps the full record
        self.run(cmd, capture_output=False)
        self.logger.info(f"kneaddata outputs written to: {output_dir}")

    def read_count_table(self, input_dir: Path, output_file: Path) -> None:
        """Summarise read counts of a kneaddata output directory."""
        cmd = [self.read_count_tool, "--input", str(input_dir), "--output", str(output_file)]
        self.run(cmd, capture_output=True)
        self.logger.info(f"Read count table: {output_file}")
