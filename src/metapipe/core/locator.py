"""Read-only queries against scratch and durable storage.

Durable storage is the checkpoint: a stage is complete for a sample iff
every durable artifact it declares is present and non-empty. Nothing in this
module creates files or directories.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from metapipe.core.stages import ArtifactSpec, Stage
from metapipe.exceptions import MissingUpstreamArtifact

SCRATCH = "scratch"
DURABLE = "durable"


def artifact_present(path: Optional[Path]) -> bool:
    """True when ``path`` is an existing regular file with size > 0."""
    if path is None:
        return False
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def find_artifact(directory: Path, pattern: str, allow_empty: bool = False) -> Optional[Path]:
    """Return the first (sorted) match of ``pattern`` in ``directory`` that is usable."""
    if not directory.is_dir():
        return None
    for candidate in sorted(directory.glob(pattern)):
        if allow_empty and candidate.is_file():
            return candidate
        if artifact_present(candidate):
            return candidate
    return None


def stage_dir(root: Path, stage: Stage) -> Path:
    return root / stage.subdir


def find_durable(durable_root: Path, sample_id: str, artifact: ArtifactSpec, stage: Stage) -> Optional[Path]:
    return find_artifact(stage_dir(durable_root, stage), artifact.durable_pattern(sample_id))


def find_scratch(working_dir: Path, sample_id: str, artifact: ArtifactSpec, stage: Stage) -> Optional[Path]:
    return find_artifact(
        stage_dir(working_dir, stage),
        artifact.scratch_pattern(sample_id),
        allow_empty=artifact.allow_empty_scratch,
    )


def missing_durable_artifacts(durable_root: Path, sample_id: str, stage: Stage) -> List[str]:
    """Names of the durable artifacts of ``stage`` that are absent or empty."""
    return [
        artifact.name
        for artifact in stage.artifacts
        if find_durable(durable_root, sample_id, artifact, stage) is None
    ]


def is_stage_complete(durable_root: Path, sample_id: str, stage: Stage) -> bool:
    """True iff all durable artifacts of ``stage`` exist and are non-empty."""
    return not missing_durable_artifacts(Path(durable_root), sample_id, stage)


def missing_scratch_artifacts(working_dir: Path, sample_id: str, stage: Stage) -> List[str]:
    """Names of the scratch artifacts of ``stage`` that the tool failed to leave behind."""
    return [
        artifact.name
        for artifact in stage.artifacts
        if find_scratch(working_dir, sample_id, artifact, stage) is None
    ]


@dataclass(frozen=True)
class UpstreamSource:
    """Where an upstream artifact will be taken from."""

    stage: Stage
    artifact: ArtifactSpec
    location: str
    path: Optional[Path] = None


def locate_upstream(
    working_dir: Path,
    durable_root: Path,
    sample_id: str,
    stage: Stage,
    produced_this_run: tuple[Stage, ...] = (),
    check_scratch: bool = True,
) -> List[UpstreamSource]:
    """Resolve every upstream artifact ``stage`` consumes.

    Scratch wins over durable. Stages listed in ``produced_this_run`` are
    treated as providing their artifacts in scratch even if the files do
    not exist yet, which is what planning before execution needs. Planning
    also passes ``check_scratch=False`` because a leftover working directory
    is wiped before the run starts.

    Raises:
        MissingUpstreamArtifact: an upstream artifact is in neither location
    """
    sources: List[UpstreamSource] = []
    for ref in stage.requires:
        artifact = ref.stage.artifact(ref.artifact)
        if ref.stage in produced_this_run:
            sources.append(UpstreamSource(ref.stage, artifact, SCRATCH))
            continue
        scratch_path = find_scratch(working_dir, sample_id, artifact, ref.stage) if check_scratch else None
        if scratch_path is not None:
            sources.append(UpstreamSource(ref.stage, artifact, SCRATCH, scratch_path))
            continue
        durable_path = find_durable(durable_root, sample_id, artifact, ref.stage)
        if durable_path is not None:
            sources.append(UpstreamSource(ref.stage, artifact, DURABLE, durable_path))
            continue
        raise MissingUpstreamArtifact(
            f"{stage.value} needs {ref.stage.value} output '{artifact.name}' for {sample_id}, "
            f"which is neither in scratch nor in durable storage ({stage_dir(durable_root, ref.stage)}). "
            f"Run this sample with the {ref.stage.flag} flag first.",
            stage=stage.value,
            upstream=ref.stage.value,
            flag=ref.stage.flag,
        )
    return sources
