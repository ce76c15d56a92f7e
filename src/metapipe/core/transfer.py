"""Best-effort hand-off of a sample's durable directory to the relay host.

Nothing here raises to the caller: failures become a ``TransferResult``
with ``success=False`` plus log lines in the run log and the sample's
transfer log.
"""

from __future__ import annotations

import os
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from metapipe.config import TransferConfig
from metapipe.exceptions import ExternalToolError, TransferFailed
from metapipe.external.ssh import RelaySsh
from metapipe.utils.logging import LogTemplates, get_logger

logger = get_logger("transfer")


@dataclass(frozen=True)
class TransferRequest:
    """What to send and where the transfer log goes."""

    sample_id: str
    durable_dir: Path
    dest: str
    log_file: Path

    @classmethod
    def for_sample(cls, sample_id: str, durable_dir: Path, dest_dir: str, log_dir: Path) -> "TransferRequest":
        dest = f"{dest_dir.rstrip('/')}/{sample_id}/"
        return cls(sample_id, Path(durable_dir), dest, Path(log_dir) / f"{sample_id}_transfer.log")


@dataclass(frozen=True)
class TransferSettings:
    """How to reach the relay host and how hard to try."""

    relay_host: str
    ssh_key: Path
    netrc: Optional[Path]
    remote_command: str
    mode: str = "inline"
    max_retries: int = 5
    retry_wait: float = 10.0
    max_concurrent: int = 35
    slot_dir: Optional[Path] = None
    slot_wait_seconds: float = 1800.0
    slot_stale_seconds: float = 43200.0

    @classmethod
    def from_config(cls, cfg: TransferConfig) -> "TransferSettings":
        return cls(
            relay_host=cfg.relay_host,
            ssh_key=Path(cfg.ssh_key),
            netrc=Path(cfg.netrc) if cfg.netrc else None,
            remote_command=cfg.remote_command,
            mode=cfg.mode,
            max_retries=cfg.max_retries,
            retry_wait=cfg.retry_wait,
            max_concurrent=cfg.max_concurrent,
            slot_dir=Path(cfg.slot_dir) if cfg.slot_dir else None,
            slot_wait_seconds=cfg.slot_wait_seconds,
            slot_stale_seconds=cfg.slot_stale_seconds,
        )


@dataclass(frozen=True)
class TransferResult:
    """Observed result of a transfer attempt."""

    success: bool
    attempts: int = 0
    detached: bool = False
    error: Optional[str] = None


class TransferSlot:
    """One of ``max_concurrent`` lock files shared by all tasks of a study.

    A slot is held by creating ``slot-<n>.lock`` with O_EXCL; lock files
    older than ``stale_seconds`` belong to killed jobs and are reclaimed.
    """

    def __init__(
        self,
        slot_dir: Path,
        max_concurrent: int,
        wait_seconds: float = 1800.0,
        stale_seconds: float = 43200.0,
        poll_interval: float = 5.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.slot_dir = Path(slot_dir)
        self.max_concurrent = max_concurrent
        self.wait_seconds = wait_seconds
        self.stale_seconds = stale_seconds
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self.path: Optional[Path] = None

    def _reclaim_stale(self) -> None:
        now = self._clock()
        for lock in self.slot_dir.glob("slot-*.lock"):
            try:
                age = now - lock.stat().st_mtime
            except FileNotFoundError:
                continue
            if age > self.stale_seconds:
                logger.warning(f"Reclaiming stale transfer slot {lock.name} ({age / 3600:.1f}h old)")
                lock.unlink(missing_ok=True)

    def _try_claim(self, owner: str) -> Optional[Path]:
        for n in range(self.max_concurrent):
            candidate = self.slot_dir / f"slot-{n}.lock"
            try:
                fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                continue
            with os.fdopen(fd, "w") as handle:
                handle.write(f"{owner} {os.getpid()} {datetime.now().isoformat()}\n")
            return candidate
        return None

    def acquire(self, owner: str) -> Path:
        """Claim a free slot, waiting up to ``wait_seconds``.

        Raises:
            TransferFailed: no slot became free in time
        """
        self.slot_dir.mkdir(parents=True, exist_ok=True)
        deadline = self._clock() + self.wait_seconds
        while True:
            self._reclaim_stale()
            claimed = self._try_claim(owner)
            if claimed is not None:
                self.path = claimed
                logger.debug(f"Acquired transfer slot {claimed.name}")
                return claimed
            if self._clock() >= deadline:
                raise TransferFailed(
                    f"No free transfer slot in {self.slot_dir} after {self.wait_seconds:.0f}s "
                    f"({self.max_concurrent} concurrent transfers allowed)"
                )
            self._sleep(self.poll_interval)

    def release(self) -> None:
        if self.path is not None:
            self.path.unlink(missing_ok=True)
            self.path = None

    def __enter__(self) -> "TransferSlot":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class TransferDispatcher:
    """Send a durable sample directory through the relay host."""

    def __init__(
        self,
        settings: TransferSettings,
        ssh_factory: Callable[[], RelaySsh] = RelaySsh,
        sleep: Callable[[float], None] = time.sleep,
        spawn: Callable[..., object] = subprocess.Popen,
    ):
        self.settings = settings
        self._ssh_factory = ssh_factory
        self._sleep = sleep
        self._spawn = spawn

    def check_preconditions(self, request: TransferRequest) -> None:
        """Raises TransferFailed when the transfer cannot possibly work."""
        problems = []
        if not request.durable_dir.is_dir():
            problems.append(f"durable directory missing: {request.durable_dir}")
        if not self.settings.ssh_key.is_file():
            problems.append(f"ssh key missing: {self.settings.ssh_key}")
        if self.settings.netrc is not None and not self.settings.netrc.is_file():
            problems.append(f"netrc missing: {self.settings.netrc}")
        if not request.dest.strip("/"):
            problems.append("no transfer destination given")
        if problems:
            raise TransferFailed("; ".join(problems))

    def _append_log(self, request: TransferRequest, message: str) -> None:
        try:
            request.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(request.log_file, "a", encoding="utf-8") as handle:
                handle.write(f"[{datetime.now().isoformat(timespec='seconds')}] {message}\n")
        except OSError as exc:
            logger.warning(f"Cannot write transfer log {request.log_file}: {exc}")

    def _attempt_all(self, request: TransferRequest) -> int:
        ssh = self._ssh_factory()
        attempts = 0
        for attempt in range(1, self.settings.max_retries + 1):
            attempts = attempt
            self._append_log(request, f"attempt {attempt}/{self.settings.max_retries}")
            returncode = ssh.remote_command(
                self.settings.relay_host,
                self.settings.ssh_key,
                self.settings.remote_command,
                [str(request.durable_dir), request.dest],
                request.log_file,
            )
            if returncode == 0:
                return attempts
            logger.warning(
                f"[{request.sample_id}] Transfer attempt {attempt}/{self.settings.max_retries} "
                f"exited with {returncode}"
            )
            if attempt < self.settings.max_retries:
                self._sleep(self.settings.retry_wait)
        raise TransferFailed(
            f"remote transfer failed after {attempts} attempts (see {request.log_file})"
        )

    def run_inline(self, request: TransferRequest) -> TransferResult:
        logger.info(
            LogTemplates.TRANSFER_START.format(
                sample=request.sample_id,
                src=request.durable_dir,
                dest=request.dest,
                relay=self.settings.relay_host,
            )
        )
        slot: Optional[TransferSlot] = None
        try:
            self.check_preconditions(request)
            if self.settings.slot_dir is not None:
                slot = TransferSlot(
                    self.settings.slot_dir,
                    self.settings.max_concurrent,
                    wait_seconds=self.settings.slot_wait_seconds,
                    stale_seconds=self.settings.slot_stale_seconds,
                )
                slot.acquire(request.sample_id)
            attempts = self._attempt_all(request)
        except (TransferFailed, ExternalToolError, OSError) as exc:
            message = str(exc)
            logger.error(LogTemplates.TRANSFER_FAILURE.format(sample=request.sample_id, error=message))
            self._append_log(request, f"FAILED: {message}")
            return TransferResult(success=False, error=message)
        finally:
            if slot is not None:
                slot.release()

        self._append_log(request, f"completed after {attempts} attempt(s)")
        logger.info(f"[{request.sample_id}] Transfer completed after {attempts} attempt(s)")
        return TransferResult(success=True, attempts=attempts)

    def detached_command(self, request: TransferRequest) -> list[str]:
        """Command line of the background ``metapipe transfer`` process."""
        s = self.settings
        cmd = [
            sys.executable, "-m", "metapipe", "transfer",
            str(request.durable_dir), request.dest,
            "--sample-id", request.sample_id,
            "--log-file", str(request.log_file),
            "--relay-host", s.relay_host,
            "--ssh-key", str(s.ssh_key),
            "--remote-command", s.remote_command,
            "--max-retries", str(s.max_retries),
            "--retry-wait", str(s.retry_wait),
            "--max-concurrent", str(s.max_concurrent),
            "--slot-wait-seconds", str(s.slot_wait_seconds),
            "--slot-stale-seconds", str(s.slot_stale_seconds),
        ]
        if s.netrc is not None:
            cmd += ["--netrc", str(s.netrc)]
        if s.slot_dir is not None:
            cmd += ["--slot-dir", str(s.slot_dir)]
        return cmd

    def run_detached(self, request: TransferRequest) -> TransferResult:
        cmd = self.detached_command(request)
        try:
            self.check_preconditions(request)
            request.log_file.parent.mkdir(parents=True, exist_ok=True)
            self._spawn(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except (TransferFailed, OSError) as exc:
            message = str(exc)
            logger.error(LogTemplates.TRANSFER_FAILURE.format(sample=request.sample_id, error=message))
            self._append_log(request, f"FAILED: {message}")
            return TransferResult(success=False, detached=True, error=message)
        logger.info(f"[{request.sample_id}] Transfer handed to background process; log: {request.log_file}")
        return TransferResult(success=True, detached=True)

    def dispatch(self, request: TransferRequest) -> TransferResult:
        """Run the transfer per the configured mode. Never raises."""
        if self.settings.mode == "detached":
            return self.run_detached(request)
        return self.run_inline(request)
