"""Scratch Stager: materialise stage inputs in the node-local working directory."""

from __future__ import annotations

import shutil
import stat
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from metapipe.config import DatabaseConfig
from metapipe.core.locator import DURABLE, locate_upstream
from metapipe.core.manifest import Record
from metapipe.core.stages import Stage
from metapipe.exceptions import ExternalToolError, StagingFailed
from metapipe.external.bracken import kmer_distribution_files
from metapipe.external.pigz import Pigz
from metapipe.utils.logging import LogTemplates, get_logger

logger = get_logger("staging")

RAW_DIR = "raw"
KRAKEN2_DB_FILES = ("hash.k2d", "opts.k2d", "taxo.k2d")
READ_ONLY = stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH


@dataclass(frozen=True)
class ReferenceDatabase:
    """A shared reference a stage reads.

    ``files`` lists the members that must exist and be non-empty; an empty
    tuple means the whole directory is required (and copied) as-is.
    """

    name: str
    source: Path
    files: tuple[str, ...] = ()
    stage: bool = True


@dataclass
class StagedPaths:
    """Scratch locations a stage runs against."""

    working_dir: Path
    stage_dir: Path
    reads: tuple[Path, ...] = ()
    references: Dict[str, Path] = field(default_factory=dict)
    # artifact name -> scratch path of upstream outputs
    upstream: Dict[str, Path] = field(default_factory=dict)


def reference_databases_for(
    stage: Stage,
    databases: DatabaseConfig,
    read_length: int = 100,
) -> List[ReferenceDatabase]:
    if stage is Stage.DECONTAMINATION:
        return [ReferenceDatabase("host_index", Path(databases.host_index), (), databases.stage_host_index)]
    if stage is Stage.CLASSIFICATION:
        return [
            ReferenceDatabase(
                "kraken2_db", Path(databases.kraken2_db), KRAKEN2_DB_FILES, databases.stage_kraken2_db
            )
        ]
    return [
        ReferenceDatabase(
            "bracken_db",
            Path(databases.bracken_db),
            kmer_distribution_files(read_length),
            databases.stage_bracken_db,
        )
    ]


def _tree_size(path: Path) -> int:
    if path.is_file():
        return path.stat().st_size
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


def estimate_scratch_bytes(
    record: Record,
    reference_dbs: Iterable[ReferenceDatabase] = (),
    expansion_factor: float = 4.0,
) -> int:
    """Rough scratch need: inputs (expanded if compressed) plus staged references."""
    total = 0
    for path in (record.input_a, record.input_b):
        try:
            size = path.stat().st_size
        except OSError:
            continue
        total += size
        if path.suffix == ".gz":
            total += int(size * expansion_factor)
    for db in reference_dbs:
        if not db.stage or not db.source.exists():
            continue
        if db.files:
            total += sum((db.source / name).stat().st_size for name in db.files if (db.source / name).is_file())
        else:
            total += _tree_size(db.source)
    return total


def check_free_space(working_dir: Path, needed_bytes: int) -> bool:
    """Log a warning when the scratch filesystem looks too small. Never fails."""
    try:
        free = shutil.disk_usage(working_dir).free
    except OSError as exc:
        logger.debug(f"Could not query free space for {working_dir}: {exc}")
        return True
    if free < needed_bytes:
        logger.warning(
            f"Scratch at {working_dir} has {free / 1e9:.1f} GB free, "
            f"run needs roughly {needed_bytes / 1e9:.1f} GB"
        )
        return False
    return True


def _make_read_only(root: Path) -> None:
    paths = [root] if root.is_file() else [p for p in root.rglob("*") if p.is_file()]
    for path in paths:
        path.chmod(READ_ONLY)


class ScratchStager:
    """Copies inputs, references and upstream artifacts into scratch.

    Only the working directory is written. Failures raise ``StagingFailed``
    and are not retried.
    """

    def __init__(
        self,
        threads: int = 1,
        pigz_factory: Optional[Callable[[], Pigz]] = None,
        expansion_factor: float = 4.0,
        env=None,
    ):
        self.threads = max(1, threads)
        self.expansion_factor = expansion_factor
        self._pigz_factory = pigz_factory or (lambda: Pigz(threads=self.threads, env=env))
        self._pigz: Optional[Pigz] = None

    @property
    def pigz(self) -> Pigz:
        if self._pigz is None:
            try:
                self._pigz = self._pigz_factory()
            except ExternalToolError as exc:
                raise StagingFailed(f"Cannot decompress inputs: {exc}") from exc
        return self._pigz

    def _copy(self, source: Path, dest: Path) -> Path:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest)
        except OSError as exc:
            raise StagingFailed(f"Failed to copy {source} to {dest}: {exc}") from exc
        logger.debug(LogTemplates.FILE_COPIED.format(src=source, dest=dest))
        return dest

    def _decompress(self, path: Path, threads: int) -> Path:
        try:
            return self.pigz.decompress(path, threads=threads)
        except ExternalToolError as exc:
            raise StagingFailed(f"Failed to decompress {path}: {exc}") from exc

    def _decompress_all(self, paths: Sequence[Path]) -> List[Path]:
        compressed = [p for p in paths if p.suffix == ".gz"]
        if not compressed:
            return list(paths)
        per_job = max(1, self.threads // 2)
        logger.info(f"Decompressing {len(compressed)} input(s) with pigz ({per_job} threads each)")
        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = {p: pool.submit(self._decompress, p, per_job) for p in compressed}
            results = {p: f.result() for p, f in futures.items()}
        return [results.get(p, p) for p in paths]

    def stage_inputs(
        self,
        record: Record,
        working_dir: Path,
        reference_dbs: Sequence[ReferenceDatabase] = (),
    ) -> StagedPaths:
        """Copy and decompress the raw read pair, then stage references."""
        check_free_space(
            working_dir,
            estimate_scratch_bytes(record, reference_dbs, self.expansion_factor),
        )
        raw_dir = working_dir / RAW_DIR
        if record.input_a.name == record.input_b.name:
            raise StagingFailed(f"Both inputs of {record.sample_id} are named {record.input_a.name}")
        copies = [self._copy(p, raw_dir / p.name) for p in (record.input_a, record.input_b)]
        reads = self._decompress_all(copies)
        for read in reads:
            if not read.is_file() or read.stat().st_size == 0:
                raise StagingFailed(f"Staged input is empty: {read}")

        return StagedPaths(
            working_dir=working_dir,
            stage_dir=working_dir,
            reads=tuple(reads),
            references=self.stage_references(working_dir, reference_dbs),
        )

    def stage_references(
        self,
        working_dir: Path,
        reference_dbs: Sequence[ReferenceDatabase],
    ) -> Dict[str, Path]:
        """Stage each database (or hand back its shared path)."""
        staged: Dict[str, Path] = {}
        for db in reference_dbs:
            self._check_reference(db)
            if not db.stage:
                staged[db.name] = db.source
                continue
            dest = working_dir / db.name
            if dest.exists():
                staged[db.name] = dest
                continue
            try:
                if db.files:
                    dest.mkdir(parents=True)
                    for name in db.files:
                        shutil.copy2(db.source / name, dest / name)
                else:
                    shutil.copytree(db.source, dest)
                _make_read_only(dest)
            except OSError as exc:
                raise StagingFailed(f"Failed to stage {db.name} from {db.source}: {exc}") from exc
            logger.info(f"Staged {db.name} into {dest}")
            staged[db.name] = dest
        return staged

    def _check_reference(self, db: ReferenceDatabase) -> None:
        if not db.source.is_dir():
            raise StagingFailed(f"Reference database {db.name} not found: {db.source}")
        if db.files:
            missing = [
                name
                for name in db.files
                if not (db.source / name).is_file() or (db.source / name).stat().st_size == 0
            ]
            if missing:
                raise StagingFailed(
                    f"Reference database {db.name} at {db.source} lacks: {', '.join(missing)}"
                )
        elif not any(db.source.iterdir()):
            raise StagingFailed(f"Reference database {db.name} is empty: {db.source}")

    def restore_artifact(self, durable_path: Path, dest_dir: Path, sample_id: str = "") -> Path:
        """Pull a durable artifact into scratch, decompressing ``.gz``."""
        copied = self._copy(durable_path, dest_dir / durable_path.name)
        restored = self._decompress(copied, self.threads) if copied.suffix == ".gz" else copied
        logger.info(LogTemplates.FILE_RESTORED.format(sample=sample_id, name=restored.name, path=durable_path))
        return restored

    def prepare(
        self,
        stage: Stage,
        record: Record,
        working_dir: Path,
        durable_root: Path,
        reference_dbs: Sequence[ReferenceDatabase] = (),
    ) -> StagedPaths:
        """Everything ``stage`` needs, in scratch.

        Decontamination gets the raw reads. Later stages get their upstream
        artifacts, pulled from durable storage when scratch lacks them.
        """
        stage_dir = working_dir / stage.subdir
        try:
            stage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StagingFailed(f"Cannot create {stage_dir}: {exc}") from exc

        if stage is Stage.DECONTAMINATION:
            staged = self.stage_inputs(record, working_dir, reference_dbs)
            staged.stage_dir = stage_dir
            return staged

        upstream: Dict[str, Path] = {}
        for source in locate_upstream(working_dir, durable_root, record.sample_id, stage):
            if source.location == DURABLE:
                upstream[source.artifact.name] = self.restore_artifact(
                    source.path, working_dir / source.stage.subdir, record.sample_id
                )
            else:
                upstream[source.artifact.name] = source.path
        return StagedPaths(
            working_dir=working_dir,
            stage_dir=stage_dir,
            references=self.stage_references(working_dir, reference_dbs),
            upstream=upstream,
        )
