"""Immutable per-run context.

Everything a run needs from flags, configuration and the scheduler
environment is resolved here once. Components receive a ``RunContext`` and
never look at ``os.environ`` themselves.
"""

from __future__ import annotations

import getpass
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from metapipe.config import Config, DatabaseConfig, SchedulerConfig, ToolConfig
from metapipe.core.manifest import Record
from metapipe.core.stages import Stage, ordered
from metapipe.core.transfer import TransferRequest, TransferSettings
from metapipe.exceptions import ConfigurationError

# Schedulers export this literal for non-array jobs
UNSET_MARKER = "undefined"

THREAD_ENV_VARS = (
    "OMP_NUM_THREADS",
    "MKL_NUM_THREADS",
    "OPENBLAS_NUM_THREADS",
    "BLAS_NUM_THREADS",
    "NUMEXPR_NUM_THREADS",
)


def env_value(env: Mapping[str, str], name: str) -> Optional[str]:
    """Value of ``name`` unless unset, blank or ``undefined``."""
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    if not value or value == UNSET_MARKER:
        return None
    return value


def _first_set(env: Mapping[str, str], names: Sequence[str]) -> Optional[str]:
    for name in names:
        value = env_value(env, name)
        if value is not None:
            return value
    return None


def resolve_task_index(
    env: Mapping[str, str],
    scheduler: SchedulerConfig,
    override: Optional[int] = None,
) -> Union[int, str]:
    """Explicit override > TASK_INDEX > scheduler task id > 1.

    Non-numeric values are returned as-is and rejected by the manifest lookup.
    """
    if override is not None:
        return override
    value = env_value(env, scheduler.task_index_override_var)
    if value is None:
        value = _first_set(env, scheduler.task_id_vars)
    if value is None:
        return 1
    return int(value) if value.isdigit() else value


def resolve_threads(env: Mapping[str, str], cfg: Config) -> int:
    if cfg.performance.threads is not None:
        return cfg.performance.threads
    value = _first_set(env, cfg.scheduler.threads_vars)
    if value is None:
        return 1
    try:
        threads = int(value)
    except ValueError:
        raise ConfigurationError(f"Scheduler core count is not an integer: {value!r}")
    if threads < 1:
        raise ConfigurationError(f"Scheduler core count must be >= 1, got {threads}")
    return threads


def resolve_job_id(env: Mapping[str, str], scheduler: SchedulerConfig) -> Optional[str]:
    return _first_set(env, scheduler.job_id_vars)


def resolve_scratch_root(env: Mapping[str, str], scheduler: SchedulerConfig) -> Path:
    value = env_value(env, scheduler.scratch_var)
    return Path(value) if value else Path(tempfile.gettempdir())


def resolve_user(env: Mapping[str, str]) -> str:
    return env_value(env, "USER") or env_value(env, "LOGNAME") or getpass.getuser()


def durable_base(cfg: Config, env: Mapping[str, str]) -> Path:
    """Root under which ``output_base_dir`` lives."""
    if cfg.paths.save_to_scratch:
        return Path(cfg.paths.shared_scratch_root) / resolve_user(env)
    return Path(cfg.paths.persistent_root)


def durable_root_for(cfg: Config, env: Mapping[str, str], sample_id: str) -> Path:
    """``<base>/<output_base_dir>/<sample_id>``."""
    return durable_base(cfg, env) / str(cfg.paths.output_base_dir).strip("/") / sample_id


def study_log_dir(cfg: Config) -> Path:
    return Path(cfg.runtime.log_root) / cfg.paths.study_name


def build_tool_env(base_env: Mapping[str, str], threads: int, working_dir: Path) -> Dict[str, str]:
    """Subprocess environment: numeric libraries pinned to ``threads``, temp files in scratch."""
    tool_env = dict(base_env)
    for name in THREAD_ENV_VARS:
        tool_env[name] = str(threads)
    tool_env["TMPDIR"] = str(working_dir)
    tool_env["_JAVA_OPTIONS"] = f"-Djava.io.tmpdir={working_dir}"
    return tool_env


@dataclass(frozen=True)
class RunContext:
    """Resolved, read-only description of one sample run."""

    record: Record
    task_index: int
    stages: tuple[Stage, ...]
    durable_root: Path
    working_dir: Path
    threads: int
    study_name: str
    log_dir: Path
    databases: DatabaseConfig
    tools: ToolConfig
    job_id: Optional[str] = None
    transfer: Optional[TransferRequest] = None
    transfer_settings: Optional[TransferSettings] = None
    keep_scratch: bool = False
    expansion_factor: float = 4.0
    accounting_command: tuple[str, ...] = ("qstat", "-j", "{job_id}")
    tool_env: Mapping[str, str] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)

    @property
    def sample_id(self) -> str:
        return self.record.sample_id

    def stage_scratch_dir(self, stage: Stage) -> Path:
        return self.working_dir / stage.subdir

    def stage_durable_dir(self, stage: Stage) -> Path:
        return self.durable_root / stage.subdir

    def tool_options(self, stage: Stage) -> Dict[str, Any]:
        return dict(getattr(self.tools, stage.value))

    def summary(self) -> Dict[str, Any]:
        return {
            "sample": self.sample_id,
            "task_index": self.task_index,
            "stages": [s.value for s in self.stages],
            "durable_root": str(self.durable_root),
            "working_dir": str(self.working_dir),
            "threads": self.threads,
            "job_id": self.job_id,
            "transfer": self.transfer.dest if self.transfer else None,
        }


def build_run_context(
    cfg: Config,
    record: Record,
    stages: Sequence[Stage],
    env: Mapping[str, str],
    transfer: bool = False,
    started_at: Optional[float] = None,
) -> RunContext:
    """Assemble the run context for ``record``.

    Raises:
        ConfigurationError: bad thread count, or transfer requested without destination
    """
    if not stages:
        raise ConfigurationError("No stage selected")
    threads = resolve_threads(env, cfg)
    working_dir = resolve_scratch_root(env, cfg.scheduler) / record.sample_id
    durable_root = durable_root_for(cfg, env, record.sample_id)
    log_dir = study_log_dir(cfg)

    request = None
    settings = None
    if transfer:
        if not str(cfg.transfer.dest_dir).strip("/"):
            raise ConfigurationError("Transfer requested but no transfer directory given (--transfer-dir)")
        request = TransferRequest.for_sample(record.sample_id, durable_root, cfg.transfer.dest_dir, log_dir)
        settings = TransferSettings.from_config(cfg.transfer)

    return RunContext(
        record=record,
        task_index=record.index,
        stages=ordered(stages),
        durable_root=durable_root,
        working_dir=working_dir,
        threads=threads,
        study_name=cfg.paths.study_name,
        log_dir=log_dir,
        databases=cfg.databases,
        tools=cfg.tools,
        job_id=resolve_job_id(env, cfg.scheduler),
        transfer=request,
        transfer_settings=settings,
        keep_scratch=cfg.runtime.keep_scratch,
        expansion_factor=cfg.runtime.decompression_expansion_factor,
        accounting_command=tuple(cfg.scheduler.accounting_command),
        tool_env=build_tool_env(env, threads, working_dir),
        started_at=started_at if started_at is not None else time.time(),
    )
