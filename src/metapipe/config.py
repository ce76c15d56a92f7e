"""Configuration management for metapipe."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Optional, Dict, Any, List
import yaml
from metapipe.exceptions import ConfigurationError


@dataclass
class RuntimeConfig:
    """Runtime configuration."""

    log_level: str = "INFO"
    log_file: Optional[Path] = None
    # Per-study run logs land in <log_root>/<study_name>/<sample>_meta.log
    log_root: Path = field(default_factory=lambda: Path.home() / "logs")
    keep_scratch: bool = False
    enable_progress: bool = False
    # Raw .fastq.gz typically expands about four-fold
    decompression_expansion_factor: float = 4.0


@dataclass
class PathsConfig:
    """Manifest and durable storage locations."""

    manifest: Path = field(default_factory=lambda: Path.home() / "metagenomics" / "manifest.tsv")
    output_base_dir: str = "metagenomics/out"
    persistent_root: Path = field(default_factory=Path.home)
    shared_scratch_root: Path = Path("/scratch")
    save_to_scratch: bool = False
    study_name: str = "metagenomics"


@dataclass
class PerformanceConfig:
    """Performance-related configuration."""

    # None means use the scheduler-provided core count
    threads: Optional[int] = None


@dataclass
class SchedulerConfig:
    """Environment variables the batch scheduler uses to describe a task."""

    task_index_override_var: str = "TASK_INDEX"
    task_id_vars: List[str] = field(default_factory=lambda: ["SGE_TASK_ID", "SLURM_ARRAY_TASK_ID"])
    threads_vars: List[str] = field(default_factory=lambda: ["NSLOTS", "SLURM_CPUS_PER_TASK"])
    job_id_vars: List[str] = field(default_factory=lambda: ["JOB_ID", "SLURM_JOB_ID"])
    scratch_var: str = "TMPDIR"
    accounting_command: List[str] = field(default_factory=lambda: ["qstat", "-j", "{job_id}"])


@dataclass
class DatabaseConfig:
    """Shared reference databases (read-only, never written by metapipe)."""

    host_index: Path = field(
        default_factory=lambda: Path.home() / "metagenomics" / "databases" / "mouse_C57BL_6NJ"
    )
    kraken2_db: Path = Path("/wynton/group/databases/kraken2")
    bracken_db: Path = field(
        default_factory=lambda: Path.home() / "metagenomics" / "databases" / "bracken_db"
    )
    stage_host_index: bool = True
    # The kraken2 index is usually too large to copy per task
    stage_kraken2_db: bool = False
    stage_bracken_db: bool = True


@dataclass
class ToolConfig:
    """External tool configuration."""

    kneaddata: Dict[str, Any] = field(
        default_factory=lambda: {
            "trimmomatic_options": "SLIDINGWINDOW:4:20 MINLEN:50",
            "bowtie2_options": "--very-sensitive-local --dovetail",
            "run_trim_repetitive": True,
            "max_memory": "4000m",
            "fastqc": "fastqc",
            "trimmomatic_dir": None,
            "verbose": True,
        }
    )
    kraken2: Dict[str, Any] = field(
        default_factory=lambda: {"confidence": 0.5, "use_names": True}
    )
    bracken: Dict[str, Any] = field(
        default_factory=lambda: {"read_length": 100, "threshold": 10}
    )


@dataclass
class TransferConfig:
    """Remote publish through a relay host."""

    enabled: bool = False
    # Destination root on the remote store; the sample id is appended
    dest_dir: str = ""
    relay_host: str = "dt1.wynton.ucsf.edu"
    ssh_key: Path = field(default_factory=lambda: Path.home() / ".ssh" / "wynton-dtn-key")
    netrc: Path = field(default_factory=lambda: Path.home() / ".netrc")
    remote_command: str = "~/utils/wyntonBoxTransfer.sh"
    # inline: run inside the job; detached: hand off to a background process
    mode: str = "inline"
    max_retries: int = 5
    retry_wait: float = 10.0
    max_concurrent: int = 35
    slot_dir: Path = field(default_factory=lambda: Path.home() / ".metapipe" / "transfer_slots")
    slot_wait_seconds: float = 1800.0
    slot_stale_seconds: float = 12 * 3600.0


TRANSFER_MODES = ("inline", "detached")

_PATH_FIELDS = {
    "runtime": {"log_file", "log_root"},
    "paths": {"manifest", "persistent_root", "shared_scratch_root"},
    "databases": {"host_index", "kraken2_db", "bracken_db"},
    "transfer": {"ssh_key", "netrc", "slot_dir"},
}


@dataclass
class Config:
    """Main configuration class."""

    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    databases: DatabaseConfig = field(default_factory=DatabaseConfig)
    tools: ToolConfig = field(default_factory=ToolConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)

    # Convenience properties
    @property
    def threads(self) -> Optional[int]:
        return self.performance.threads

    @threads.setter
    def threads(self, value: Optional[int]):
        self.performance.threads = value

    @property
    def keep_scratch(self) -> bool:
        return self.runtime.keep_scratch

    @keep_scratch.setter
    def keep_scratch(self, value: bool):
        self.runtime.keep_scratch = value

    def validate(self) -> None:
        """Validate configuration."""
        if self.performance.threads is not None and self.performance.threads < 1:
            raise ConfigurationError("Threads must be >= 1")
        if not str(self.paths.output_base_dir).strip("/"):
            raise ConfigurationError("paths.output_base_dir must not be empty")
        if not str(self.paths.study_name).strip():
            raise ConfigurationError("paths.study_name must not be empty")
        if self.runtime.decompression_expansion_factor <= 0:
            raise ConfigurationError("runtime.decompression_expansion_factor must be > 0")

        if self.transfer.mode not in TRANSFER_MODES:
            raise ConfigurationError(
                f"transfer.mode must be one of {', '.join(TRANSFER_MODES)}, "
                f"got {self.transfer.mode!r}"
            )
        if self.transfer.max_retries < 1:
            raise ConfigurationError("transfer.max_retries must be >= 1")
        if self.transfer.max_concurrent < 1:
            raise ConfigurationError("transfer.max_concurrent must be >= 1")
        if self.transfer.retry_wait < 0:
            raise ConfigurationError("transfer.retry_wait must be >= 0")

        read_length = self.tools.bracken.get("read_length", 100)
        if not isinstance(read_length, int) or read_length < 1:
            raise ConfigurationError("tools.bracken.read_length must be a positive integer")
        if "levels" in self.tools.bracken:
            raise ConfigurationError(
                "tools.bracken.levels is not configurable; "
                "the abundance stage always estimates species and genus"
            )
        confidence = self.tools.kraken2.get("confidence", 0.5)
        if not 0.0 <= float(confidence) <= 1.0:
            raise ConfigurationError("tools.kraken2.confidence must be within 0..1")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""

        def path_to_str(obj):
            if isinstance(obj, Path):
                return str(obj)
            elif isinstance(obj, dict):
                return {k: path_to_str(v) for k, v in obj.items()}
            elif isinstance(obj, (list, tuple)):
                return [path_to_str(item) for item in obj]
            return obj

        return path_to_str(asdict(self))


def _apply_section(section: Any, values: Dict[str, Any], name: str) -> None:
    known = {f.name for f in fields(section)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown option(s) in '{name}': {', '.join(unknown)}")
    for key, value in values.items():
        if key in _PATH_FIELDS.get(name, set()) and value is not None:
            value = Path(value).expanduser()
        setattr(section, key, value)


def load_config(path: Path) -> Config:
    """Load configuration from YAML file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    cfg = Config()
    sections = {f.name for f in fields(cfg)}
    unknown = sorted(set(data) - sections)
    if unknown:
        raise ConfigurationError("Unsupported config section(s): " + ", ".join(unknown))

    for name, values in data.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        section = getattr(cfg, name)
        if name == "tools":
            # Tool dicts merge over defaults so a partial override keeps the rest
            for tool, params in values.items():
                if not hasattr(section, tool):
                    raise ConfigurationError(f"Unknown tool in 'tools': {tool}")
                if params is None:
                    continue
                merged = dict(getattr(section, tool))
                merged.update(params)
                setattr(section, tool, merged)
            continue
        _apply_section(section, values, name)

    return cfg


def save_config(cfg: Config, path: Path) -> None:
    """Save configuration to YAML file."""
    data = cfg.to_dict()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
