"""Base class for external tool execution."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence

from packaging import version

from metapipe.exceptions import ExternalToolError
from metapipe.utils.logging import get_logger

VERSION_PATTERN = re.compile(r"(\d+\.\d+(?:\.\d+)*)")


def _extract_version(text: str) -> Optional[version.Version]:
    match = VERSION_PATTERN.search(text or "")
    if not match:
        return None
    try:
        return version.parse(match.group(1))
    except version.InvalidVersion:
        return None


class ExternalTool:
    """Base class for external tool wrappers.

    Subclasses set ``tool_name`` and may list companion executables in
    ``_get_required_tools()``. Construction fails with ``ExternalToolError``
    when anything is missing from the subprocess ``PATH``.
    """

    tool_name: str = ""
    required_version: Optional[str] = None
    version_command: Optional[str] = "--version"

    # Stage tools routinely run for hours; no timeout unless asked
    DEFAULT_TIMEOUT: Optional[int] = None

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        threads: int = 1,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.threads = threads
        # None inherits the parent's environment
        self.env = dict(env) if env is not None else None
        self.logger = logger or get_logger(f"external.{self.tool_name}")
        self._check_installation()

    def _search_path(self) -> Optional[str]:
        return self.env.get("PATH") if self.env else None

    def check_tool_availability(self, tool_name: str) -> bool:
        """True when ``tool_name`` resolves on the subprocess PATH."""
        return shutil.which(tool_name, path=self._search_path()) is not None

    def _check_installation(self) -> None:
        if not self.check_tool_availability(self.tool_name):
            raise ExternalToolError(
                f"{self.tool_name} not found in PATH. "
                f"Activate the environment that provides it (e.g. conda install -c bioconda {self.tool_name})"
            )

        for companion in getattr(self, "_get_required_tools", lambda: [])():
            if not self.check_tool_availability(companion):
                raise ExternalToolError(f"Required dependency '{companion}' not found for {self.tool_name}")

        if self.required_version:
            found = self.get_tool_version(self.tool_name)
            if found and not self.check_minimum_version(found, self.required_version):
                raise ExternalToolError(
                    f"{self.tool_name} {found} is older than the required {self.required_version}"
                )
            self.logger.debug(f"{self.tool_name} version: {found or 'unknown'}")

    def get_tool_version(self, tool_name: str) -> Optional[str]:
        """Version string reported by the tool, or None."""
        if not self.version_command:
            return None
        for flag in dict.fromkeys((self.version_command, "-v")):
            try:
                result = subprocess.run(
                    [tool_name, flag], capture_output=True, text=True, check=False, timeout=10, env=self.env
                )
            except (subprocess.TimeoutExpired, OSError):
                continue
            match = VERSION_PATTERN.search(f"{result.stdout}{result.stderr}")
            if match:
                return match.group(1)
        self.logger.debug(f"Could not determine the version of {tool_name}")
        return None

    def check_minimum_version(self, current_version: str, required_version: str) -> bool:
        """Compare dotted versions; unparseable strings are accepted with a warning."""
        current = _extract_version(current_version)
        required = _extract_version(required_version)
        if current is None or required is None:
            self.logger.warning(
                f"Cannot compare {self.tool_name} versions '{current_version}' and '{required_version}'; "
                "check the installed version manually"
            )
            return True
        if current < required:
            self.logger.warning(f"{self.tool_name} {current_version} is below the minimum {required_version}")
            return False
        return True

    def _failure(self, message: str, cmd: Sequence[str], returncode: int, stderr: Optional[str]):
        self.logger.error(f"{message}: {' '.join(str(c) for c in cmd)}")
        if stderr:
            self.logger.error(f"stderr: {stderr[:1000]}")
        return ExternalToolError(message, command=list(cmd), returncode=returncode, stderr=stderr)

    def run(
        self,
        cmd: Sequence[str],
        cwd: Optional[Path] = None,
        check: bool = True,
        capture_output: bool = True,
        timeout: Optional[int] = None,
    ) -> tuple[str, str]:
        """Run ``cmd`` with the tool environment.

        Args:
            cmd: Command and arguments
            cwd: Working directory for the command
            check: Raise on a non-zero exit code
            capture_output: Capture stdout/stderr instead of inheriting them
            timeout: Seconds before the command is killed (DEFAULT_TIMEOUT if None)

        Returns:
            (stdout, stderr), both empty when output is not captured

        Raises:
            ExternalToolError: non-zero exit, timeout, or the command could not start
        """
        limit = timeout if timeout is not None else self.DEFAULT_TIMEOUT
        args = [str(c) for c in cmd]
        self.logger.info(f"Running: {' '.join(args)}")
        try:
            result = subprocess.run(
                args,
                cwd=cwd,
                capture_output=capture_output,
                text=True,
                check=check,
                timeout=limit,
                env=self.env,
            )
        except subprocess.TimeoutExpired:
            raise self._failure(
                f"{self.tool_name} timed out", cmd, -1, f"Process timed out after {limit} seconds"
            )
        except subprocess.CalledProcessError as e:
            raise self._failure(f"{self.tool_name} failed (exit {e.returncode})", cmd, e.returncode, e.stderr)
        except OSError as e:
            raise self._failure(f"Failed to execute {self.tool_name}", cmd, -1, str(e))

        if not capture_output:
            return "", ""
        if result.stderr and not result.returncode:
            self.logger.debug(f"{self.tool_name} stderr: {result.stderr[:500]}")
        return result.stdout, result.stderr

    def run_to_file(
        self,
        cmd: Sequence[str],
        output_path: Path,
        append: bool = False,
        merge_stderr: bool = False,
        cwd: Optional[Path] = None,
    ) -> int:
        """Run ``cmd`` with stdout redirected into ``output_path``.

        Returns the exit code. Raises ExternalToolError only when the process
        cannot be started or the output file cannot be opened.
        """
        args = [str(c) for c in cmd]
        self.logger.info(f"Running: {' '.join(args)} {'>>' if append else '>'} {output_path}")
        try:
            with open(output_path, "ab" if append else "wb") as handle:
                result = subprocess.run(
                    args,
                    cwd=cwd,
                    stdout=handle,
                    stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                    check=False,
                    env=self.env,
                )
        except OSError as e:
            raise self._failure(f"Failed to execute {self.tool_name}", cmd, -1, str(e))

        if result.returncode and result.stderr:
            self.logger.error(f"{self.tool_name} stderr: {result.stderr.decode(errors='replace')[:1000]}")
        return result.returncode
