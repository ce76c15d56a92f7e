"""pigz wrapper for parallel (de)compression of read files."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from metapipe.exceptions import ExternalToolError
from metapipe.external.base import ExternalTool


class Pigz(ExternalTool):
    """Parallel gzip."""

    tool_name = "pigz"

    def _threads(self, threads: Optional[int]) -> int:
        return max(1, threads if threads is not None else self.threads)

    def decompress(self, gz_path: Path, threads: Optional[int] = None) -> Path:
        """Decompress ``gz_path`` in place; returns the path without ``.gz``."""
        if gz_path.suffix != ".gz":
            raise ExternalToolError(f"Not a gzip file name: {gz_path}")
        cmd = [self.tool_name, "-d", "-f", "-p", str(self._threads(threads)), str(gz_path)]
        self.run(cmd)
        return gz_path.with_suffix("")

    def compress_to(self, source: Path, dest: Path, threads: Optional[int] = None) -> Path:
        """Write a gzip copy of ``source`` to ``dest``, leaving ``source`` untouched."""
        cmd = [self.tool_name, "-c", "-p", str(self._threads(threads)), str(source)]
        dest.parent.mkdir(parents=True, exist_ok=True)
        returncode = self.run_to_file(cmd, dest)
        if returncode != 0:
            raise ExternalToolError(
                f"{self.tool_name} failed to compress {source}",
                command=cmd,
                returncode=returncode,
            )
        self.logger.debug(f"Compressed {source} -> {dest}")
        return dest
