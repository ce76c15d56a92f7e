"""Stage definitions and artifact contracts.

Contracts are declarative: each stage lists the files it must leave in
scratch after the tool ran and the files that must exist in durable storage
for the stage to count as complete. Filename templates are fixed so a run
interoperates with durable trees written by earlier versions of the job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional


class ArtifactRole(Enum):
    """What an artifact is used for."""

    PAIRED_1 = "paired-output-1"
    PAIRED_2 = "paired-output-2"
    REPORT = "report"
    AUXILIARY = "auxiliary"


@dataclass(frozen=True)
class ArtifactSpec:
    """Declarative description of one stage output.

    ``scratch`` and ``durable`` are glob templates formatted with ``sample``.
    """

    name: str
    role: ArtifactRole
    scratch: str
    durable: str
    allow_empty_scratch: bool = False

    def scratch_pattern(self, sample_id: str) -> str:
        return self.scratch.format(sample=sample_id)

    def durable_pattern(self, sample_id: str) -> str:
        return self.durable.format(sample=sample_id)


@dataclass(frozen=True)
class UpstreamRef:
    """An artifact a stage consumes from an earlier stage."""

    stage: "Stage"
    artifact: str


@dataclass(frozen=True)
class StageSpec:
    """Static description of a stage."""

    description: str
    tool: str
    flag: str
    artifacts: tuple[ArtifactSpec, ...]
    requires: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    # Globs removed from scratch right after the tool finishes
    byproduct_globs: tuple[str, ...] = field(default_factory=tuple)
    # Globs compressed with pigz on publish
    compress_globs: tuple[str, ...] = field(default_factory=tuple)
    # Subdirectories packed into <sample>_<dir>.tar.gz on publish
    archive_dirs: tuple[str, ...] = field(default_factory=tuple)


_KNEADDATA = StageSpec(
    description="Host decontamination and read QC",
    tool="kneaddata",
    flag="--run-kneaddata",
    artifacts=(
        ArtifactSpec(
            "paired_1",
            ArtifactRole.PAIRED_1,
            "{sample}_*_kneaddata_paired_1.fastq",
            "{sample}_*_kneaddata_paired_1.fastq.gz",
        ),
        ArtifactSpec(
            "paired_2",
            ArtifactRole.PAIRED_2,
            "{sample}_*_kneaddata_paired_2.fastq",
            "{sample}_*_kneaddata_paired_2.fastq.gz",
        ),
        # Unpaired survivors can legitimately be empty; gzip of an empty file is not
        ArtifactSpec(
            "unmatched_1",
            ArtifactRole.AUXILIARY,
            "{sample}_*_kneaddata_unmatched_1.fastq",
            "{sample}_*_kneaddata_unmatched_1.fastq.gz",
            allow_empty_scratch=True,
        ),
        ArtifactSpec(
            "unmatched_2",
            ArtifactRole.AUXILIARY,
            "{sample}_*_kneaddata_unmatched_2.fastq",
            "{sample}_*_kneaddata_unmatched_2.fastq.gz",
            allow_empty_scratch=True,
        ),
    ),
    byproduct_globs=("*bowtie2*.fastq", "*trimmed*.fastq", "*repeats*.fastq"),
    compress_globs=("*.fastq",),
    archive_dirs=("fastqc",),
)

_KRAKEN2 = StageSpec(
    description="Taxonomic classification",
    tool="kraken2",
    flag="--run-kraken2",
    artifacts=(
        ArtifactSpec(
            "kraken_report",
            ArtifactRole.REPORT,
            "{sample}.kraken2.report",
            "{sample}.kraken2.report",
        ),
        ArtifactSpec(
            "kraken_labels",
            ArtifactRole.AUXILIARY,
            "{sample}.kraken2.labels.tsv",
            "{sample}.kraken2.labels.tsv",
        ),
    ),
    requires=(("kneaddata", "paired_1"), ("kneaddata", "paired_2")),
)

_BRACKEN = StageSpec(
    description="Abundance re-estimation (species and genus)",
    tool="bracken",
    flag="--run-bracken",
    artifacts=(
        ArtifactSpec("species_table", ArtifactRole.REPORT, "{sample}_species.tsv", "{sample}_species.tsv"),
        ArtifactSpec("genus_table", ArtifactRole.REPORT, "{sample}_genus.tsv", "{sample}_genus.tsv"),
        ArtifactSpec(
            "species_report",
            ArtifactRole.AUXILIARY,
            "{sample}_species.outreport",
            "{sample}_species.outreport",
        ),
        ArtifactSpec(
            "genus_report",
            ArtifactRole.AUXILIARY,
            "{sample}_genus.outreport",
            "{sample}_genus.outreport",
        ),
    ),
    requires=(("kraken2", "kraken_report"),),
)


class Stage(Enum):
    """Pipeline stages in dependency order.

    The value doubles as the scratch and durable subdirectory name.
    """

    DECONTAMINATION = "kneaddata"
    CLASSIFICATION = "kraken2"
    ABUNDANCE_ESTIMATION = "bracken"

    @property
    def spec(self) -> StageSpec:
        return _STAGE_SPECS[self]

    @property
    def order(self) -> int:
        return _ORDER.index(self)

    @property
    def subdir(self) -> str:
        return self.value

    @property
    def flag(self) -> str:
        return self.spec.flag

    @property
    def artifacts(self) -> tuple[ArtifactSpec, ...]:
        return self.spec.artifacts

    def artifact(self, name: str) -> ArtifactSpec:
        for spec in self.spec.artifacts:
            if spec.name == name:
                return spec
        raise KeyError(f"{self.value} has no artifact named {name!r}")

    @property
    def requires(self) -> tuple[UpstreamRef, ...]:
        return tuple(UpstreamRef(Stage(stage), name) for stage, name in self.spec.requires)

    @property
    def upstream(self) -> Optional["Stage"]:
        refs = self.requires
        return refs[0].stage if refs else None

    def __lt__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order < other.order


_STAGE_SPECS = {
    Stage.DECONTAMINATION: _KNEADDATA,
    Stage.CLASSIFICATION: _KRAKEN2,
    Stage.ABUNDANCE_ESTIMATION: _BRACKEN,
}

_ORDER = [Stage.DECONTAMINATION, Stage.CLASSIFICATION, Stage.ABUNDANCE_ESTIMATION]

ALL_STAGES: tuple[Stage, ...] = tuple(_ORDER)


def ordered(stages: Iterable[Stage]) -> tuple[Stage, ...]:
    """Deduplicate and sort stages into dependency order."""
    return tuple(sorted(set(stages)))


class StageState(Enum):
    """Per-stage orchestrator state."""

    PENDING = "pending"
    SKIPPED_COMPLETE = "skipped_complete"
    STAGING = "staging"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
