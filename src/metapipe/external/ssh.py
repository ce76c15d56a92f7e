"""ssh wrapper used to trigger the remote transfer on the relay host."""

from __future__ import annotations

import shlex
from pathlib import Path

from metapipe.external.base import ExternalTool


class RelaySsh(ExternalTool):
    """Run a command on the data-transfer relay host."""

    tool_name = "ssh"
    version_command = "-V"

    def remote_command(
        self,
        relay_host: str,
        ssh_key: Path,
        remote_command: str,
        args: list[str],
        log_file: Path,
    ) -> int:
        """Run ``remote_command args...`` on ``relay_host``; output appended to ``log_file``.

        The remote command itself is passed verbatim so a leading ``~`` is
        expanded by the remote shell.
        """
        remote = " ".join([remote_command] + [shlex.quote(a) for a in args])
        cmd = [
            self.tool_name,
            "-i", str(ssh_key),
            "-o", "BatchMode=yes",
            relay_host,
            remote,
        ]
        log_file.parent.mkdir(parents=True, exist_ok=True)
        return self.run_to_file(cmd, log_file, append=True, merge_stderr=True)
