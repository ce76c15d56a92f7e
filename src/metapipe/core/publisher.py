"""Durable Publisher: idempotent, completeness-last copy of stage outputs.

Outputs are assembled in ``<durable_root>/.<stage>.incoming/`` and then
renamed into ``<durable_root>/<stage>/``. The files that make a stage count
as complete are renamed last, so an interrupted publish never leaves a stage
looking complete.
"""

from __future__ import annotations

import fnmatch
import os
import shutil
import tarfile
from pathlib import Path
from typing import Callable, List, Optional

from metapipe.core.locator import is_stage_complete
from metapipe.core.stages import Stage
from metapipe.exceptions import ExternalToolError, PublishFailed
from metapipe.external.pigz import Pigz
from metapipe.utils.logging import LogTemplates, get_logger

logger = get_logger("publisher")


def incoming_dir(durable_root: Path, stage: Stage) -> Path:
    return durable_root / f".{stage.subdir}.incoming"


class DurablePublisher:
    """Copies a stage's scratch directory into durable storage."""

    def __init__(self, threads: int = 1, pigz_factory: Optional[Callable[[], Pigz]] = None, env=None):
        self.threads = max(1, threads)
        self._pigz_factory = pigz_factory or (lambda: Pigz(threads=self.threads, env=env))
        self._pigz: Optional[Pigz] = None

    @property
    def pigz(self) -> Pigz:
        if self._pigz is None:
            self._pigz = self._pigz_factory()
        return self._pigz

    def publish(self, stage: Stage, stage_dir: Path, durable_root: Path, sample_id: str) -> bool:
        """Publish ``stage_dir`` for ``sample_id``.

        Returns False when the stage was already complete in durable storage.

        Raises:
            PublishFailed: anything went wrong; scratch is left untouched
        """
        durable_root = Path(durable_root)
        if is_stage_complete(durable_root, sample_id, stage):
            logger.info(LogTemplates.PUBLISH_SKIPPED.format(sample=sample_id, stage=stage.value))
            return False

        dest = durable_root / stage.subdir
        staging = incoming_dir(durable_root, stage)
        logger.info(LogTemplates.PUBLISH_START.format(sample=sample_id, stage=stage.value, dest=dest))
        try:
            if not stage_dir.is_dir():
                raise PublishFailed(f"Scratch directory for {stage.value} is missing: {stage_dir}")
            if staging.exists():
                logger.warning(f"Discarding leftover incoming directory {staging}")
                shutil.rmtree(staging)
            staging.mkdir(parents=True)

            self._assemble(stage, stage_dir, staging, sample_id)
            count = self._commit(stage, staging, dest, sample_id)
            shutil.rmtree(staging)
        except PublishFailed:
            raise
        except (OSError, ExternalToolError, tarfile.TarError) as exc:
            raise PublishFailed(f"Publishing {stage.value} for {sample_id} to {dest} failed: {exc}") from exc

        if not is_stage_complete(durable_root, sample_id, stage):
            raise PublishFailed(f"{stage.value} for {sample_id} still incomplete in {dest} after publish")
        logger.info(LogTemplates.PUBLISH_SUCCESS.format(sample=sample_id, stage=stage.value, count=count))
        return True

    def _assemble(self, stage: Stage, stage_dir: Path, staging: Path, sample_id: str) -> None:
        spec = stage.spec
        for entry in sorted(stage_dir.iterdir()):
            if entry.is_dir():
                if entry.name in spec.archive_dirs:
                    archive = staging / f"{sample_id}_{entry.name}.tar.gz"
                    with tarfile.open(archive, "w:gz") as tar:
                        tar.add(entry, arcname=entry.name)
                else:
                    shutil.copytree(entry, staging / entry.name)
            elif any(fnmatch.fnmatch(entry.name, pattern) for pattern in spec.compress_globs):
                self.pigz.compress_to(entry, staging / f"{entry.name}.gz")
            else:
                shutil.copy2(entry, staging / entry.name)

    def _commit(self, stage: Stage, staging: Path, dest: Path, sample_id: str) -> int:
        """Rename everything from ``staging`` into ``dest``; returns the entry count."""
        dest.mkdir(parents=True, exist_ok=True)
        required_patterns = [a.durable_pattern(sample_id) for a in stage.artifacts]

        def is_required(name: str) -> bool:
            return any(fnmatch.fnmatch(name, p) for p in required_patterns)

        entries = sorted(staging.iterdir())
        ordered_entries: List[Path] = [e for e in entries if not is_required(e.name)]
        ordered_entries += [e for e in entries if is_required(e.name)]
        for entry in ordered_entries:
            target = dest / entry.name
            if target.is_dir() and entry.is_dir():
                shutil.rmtree(target)
            os.replace(entry, target)
        return len(ordered_entries)
