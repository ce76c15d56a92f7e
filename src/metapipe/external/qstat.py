"""Scheduler accounting snapshot (``qstat -j <job_id>`` by default)."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Sequence

from metapipe.exceptions import ExternalToolError
from metapipe.external.base import ExternalTool


class Qstat(ExternalTool):
    """Dump the scheduler's view of the running job."""

    tool_name = "qstat"
    version_command = None

    def __init__(
        self,
        logger=None,
        threads: int = 1,
        env: Optional[Mapping[str, str]] = None,
        command: Sequence[str] = ("qstat", "-j", "{job_id}"),
    ):
        self.command = list(command)
        # The executable follows the configured command
        self.tool_name = self.command[0] if self.command else self.tool_name
        super().__init__(logger=logger, threads=threads, env=env)

    def snapshot(self, job_id: str, dest: Path) -> Path:
        cmd = [part.format(job_id=job_id) for part in self.command]
        dest.parent.mkdir(parents=True, exist_ok=True)
        returncode = self.run_to_file(cmd, dest)
        if returncode != 0:
            raise ExternalToolError(
                f"{self.tool_name} exited with {returncode}", command=cmd, returncode=returncode
            )
        return dest
