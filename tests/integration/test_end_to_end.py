"""End-to-end runs of one sample against stand-in tools."""

from __future__ import annotations

import gzip
from pathlib import Path

import pytest

from metapipe.cli.exit_codes import exit_code_for
from metapipe.core.stages import ALL_STAGES, Stage
from metapipe.core.transfer import TransferResult
from metapipe.exceptions import StageOutputMissing, ToolExecutionFailed

pytestmark = pytest.mark.integration

FASTQ_RECORD = "@read1\nACGTACGTAC\n+\nIIIIIIIIII\n"

EXPECTED_DURABLE = {
    "kneaddata/S1_R1_kneaddata_paired_1.fastq.gz",
    "kneaddata/S1_R1_kneaddata_paired_2.fastq.gz",
    "kneaddata/S1_R1_kneaddata_unmatched_1.fastq.gz",
    "kneaddata/S1_R1_kneaddata_unmatched_2.fastq.gz",
    "kneaddata/S1_fastqc.tar.gz",
    "kneaddata/S1.kneaddata.log",
    "kneaddata/S1.kneaddata.read_count.tsv",
    "kraken2/S1.kraken2.report",
    "kraken2/S1.kraken2.labels.tsv",
    "bracken/S1_species.tsv",
    "bracken/S1_species.outreport",
    "bracken/S1_genus.tsv",
    "bracken/S1_genus.outreport",
    "qstat_4242_1.txt",
}


class RecordingTransfer:
    def __init__(self):
        self.requests = []

    def dispatch(self, request):
        self.requests.append(request)
        return TransferResult(success=True, attempts=1)


def tool_invocations(tools) -> int:
    return len(tools.kneaddata.calls) + len(tools.kraken2.calls) + len(tools.bracken.calls)


def test_full_run_publishes_everything(build_pipeline, workspace, fake_tools, durable_listing):
    pipeline = build_pipeline(ALL_STAGES)
    result = pipeline.run()

    assert result.completed == list(ALL_STAGES)
    assert durable_listing() == EXPECTED_DURABLE
    with gzip.open(workspace.durable_root / "kneaddata" / "S1_R1_kneaddata_paired_1.fastq.gz", "rt") as handle:
        assert handle.read() == FASTQ_RECORD
    # Byproducts never reach durable storage
    assert not any("bowtie2" in name or "trimmed" in name for name in durable_listing())
    assert not workspace.working_dir.exists()
    assert pipeline.report.scratch_removed is True
    # Classification consumed the scratch copy produced in the same run
    assert fake_tools.kraken2.calls[0][1].parent == workspace.working_dir / "kneaddata"


def test_second_run_does_no_work(build_pipeline, workspace, fake_tools):
    build_pipeline(ALL_STAGES).run()
    first = tool_invocations(fake_tools)
    assert first == 5

    result = build_pipeline(ALL_STAGES).run()
    assert tool_invocations(fake_tools) == first
    assert result.skipped == list(ALL_STAGES)
    assert result.completed == []


def test_classification_alone_pulls_from_durable(build_pipeline, workspace, fake_tools, durable_listing):
    build_pipeline([Stage.DECONTAMINATION]).run()
    assert not workspace.working_dir.exists()
    fake_tools.pigz.calls.clear()

    result = build_pipeline([Stage.CLASSIFICATION]).run()
    assert result.completed == [Stage.CLASSIFICATION]
    decompressed = {c[1] for c in fake_tools.pigz.calls if c[0] == "decompress"}
    assert decompressed == {"S1_R1_kneaddata_paired_1.fastq.gz", "S1_R1_kneaddata_paired_2.fastq.gz"}
    assert "kraken2/S1.kraken2.report" in durable_listing()
    assert len([c for c in fake_tools.kneaddata.calls if c[0] == "decontaminate"]) == 1


def test_interrupt_leaves_no_partial_stage(build_pipeline, workspace, fake_tools, durable_listing):
    def interrupted(db, paired_1, paired_2, report, labels, confidence=0.5, use_names=True):
        Path(report).write_text("partial\n")
        raise KeyboardInterrupt("SIGTERM received")

    fake_tools.kraken2.classify = interrupted
    pipeline = build_pipeline(ALL_STAGES)
    with pytest.raises(KeyboardInterrupt) as excinfo:
        pipeline.run()

    assert exit_code_for(excinfo.value) == 143
    listing = durable_listing()
    assert not any(name.startswith("kraken2/") for name in listing)
    assert not any(name.startswith("bracken/") for name in listing)
    # The stage that finished before the signal stays published
    assert "kneaddata/S1_R1_kneaddata_paired_1.fastq.gz" in listing
    assert not workspace.working_dir.exists()
    assert fake_tools.qstat.calls == []


def test_interrupted_sample_resumes(build_pipeline, workspace, fake_tools):
    original = fake_tools.kraken2.classify

    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt("SIGINT received")

    fake_tools.kraken2.classify = interrupted
    with pytest.raises(KeyboardInterrupt):
        build_pipeline(ALL_STAGES).run()

    fake_tools.kraken2.classify = original
    result = build_pipeline(ALL_STAGES).run()
    assert result.skipped == [Stage.DECONTAMINATION]
    assert result.completed == [Stage.CLASSIFICATION, Stage.ABUNDANCE_ESTIMATION]
    assert len([c for c in fake_tools.kneaddata.calls if c[0] == "decontaminate"]) == 1


def test_zero_length_output_fails_stage(build_pipeline, workspace, fake_tools, durable_listing):
    fake_tools.kraken2.empty_report = True
    pipeline = build_pipeline(ALL_STAGES)
    with pytest.raises(StageOutputMissing) as excinfo:
        pipeline.run()

    assert exit_code_for(excinfo.value) == 7
    assert excinfo.value.missing == ["kraken_report"]
    assert not any(name.startswith("kraken2/") for name in durable_listing())
    assert fake_tools.bracken.calls == []


def test_tool_failure_discards_scratch(build_pipeline, workspace, fake_tools, durable_listing):
    fake_tools.kneaddata.fail = True
    with pytest.raises(ToolExecutionFailed) as excinfo:
        build_pipeline(ALL_STAGES).run()
    assert exit_code_for(excinfo.value) == 8
    assert durable_listing() == set()
    assert not workspace.working_dir.exists()


def test_transfer_runs_after_success(build_pipeline, workspace, fake_tools):
    workspace.cfg.transfer.dest_dir = "box/project/"
    transfer = RecordingTransfer()
    pipeline = build_pipeline(ALL_STAGES, transfer=True, transfer_dispatcher=transfer)
    pipeline.run()
    assert [r.dest for r in transfer.requests] == ["box/project/S1/"]
    assert pipeline.report.transfer.success is True


def test_no_transfer_after_failure(build_pipeline, workspace, fake_tools):
    workspace.cfg.transfer.dest_dir = "box/project/"
    fake_tools.kraken2.empty_report = True
    transfer = RecordingTransfer()
    with pytest.raises(StageOutputMissing):
        build_pipeline(ALL_STAGES, transfer=True, transfer_dispatcher=transfer).run()
    assert transfer.requests == []
