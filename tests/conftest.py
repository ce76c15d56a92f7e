"""Pytest configuration for metapipe tests."""

import gzip
import logging
import os
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add src directory to Python path
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from metapipe.config import Config
from metapipe.core.cleanup import CleanupDispatcher
from metapipe.core.context import build_run_context
from metapipe.core.manifest import resolve
from metapipe.core.pipeline import Pipeline
from metapipe.core.publisher import DurablePublisher
from metapipe.core.runner import StageRunner
from metapipe.core.staging import ScratchStager
from metapipe.exceptions import ExternalToolError


@pytest.fixture(autouse=True)
def reset_logging_after_test():
    """Reset metapipe logger state after each test.

    setup_logging() sets propagate=False, which breaks caplog in later tests.
    """
    yield
    app_logger = logging.getLogger("metapipe")
    for handler in list(app_logger.handlers):
        app_logger.removeHandler(handler)
        handler.close()
    app_logger.setLevel(logging.NOTSET)
    app_logger.propagate = True


FASTQ_RECORD = "@read1\nACGTACGTAC\n+\nIIIIIIIIII\n"


def write_gz(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with gzip.open(path, "wt") as handle:
        handle.write(text)
    return path


class FakePigz:
    """Stands in for pigz using the gzip module."""

    def __init__(self):
        self.calls = []

    def decompress(self, gz_path, threads=None):
        self.calls.append(("decompress", Path(gz_path).name, threads))
        target = Path(gz_path).with_suffix("")
        with gzip.open(gz_path, "rb") as src, open(target, "wb") as dst:
            dst.write(src.read())
        Path(gz_path).unlink()
        return target

    def compress_to(self, source, dest, threads=None):
        self.calls.append(("compress", Path(source).name, threads))
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
            dst.write(src.read())
        return Path(dest)


class FakeKneaddata:
    """Writes the files kneaddata leaves behind, byproducts included."""

    def __init__(self):
        self.calls = []
        self.fail = False

    def resolve_trimmomatic_dir(self):
        return Path("/opt/trimmomatic")

    def decontaminate(self, input1, input2, output_dir, reference_db, log_file, options):
        self.calls.append(("decontaminate", Path(input1), Path(input2), Path(reference_db)))
        if self.fail:
            raise ExternalToolError("kneaddata failed", command=["kneaddata"], returncode=1, stderr="boom")
        stem = Path(input1).name.split(".")[0]
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        for suffix in ("paired_1", "paired_2"):
            (out / f"{stem}_kneaddata_{suffix}.fastq").write_text(FASTQ_RECORD)
        (out / f"{stem}_kneaddata_unmatched_1.fastq").write_text(FASTQ_RECORD)
        (out / f"{stem}_kneaddata_unmatched_2.fastq").write_text("")
        (out / f"{stem}_kneaddata_mouse_bowtie2_paired_contam_1.fastq").write_text(FASTQ_RECORD)
        (out / f"{stem}_kneaddata.trimmed.1.fastq").write_text(FASTQ_RECORD)
        (out / f"{stem}_kneaddata.repeats.removed.1.fastq").write_text(FASTQ_RECORD)
        (out / "fastqc").mkdir(exist_ok=True)
        (out / "fastqc" / f"{stem}_fastqc.html").write_text("<html></html>")
        Path(log_file).write_text("kneaddata log\n")

    def read_count_table(self, input_dir, output_file):
        self.calls.append(("read_count_table", Path(input_dir)))
        Path(output_file).write_text("Sample\traw pair1\nS1\t1\n")


class FakeKraken2:
    def __init__(self):
        self.calls = []
        self.empty_report = False

    def classify(self, db, paired_1, paired_2, report, labels, confidence=0.5, use_names=True):
        self.calls.append(("classify", Path(paired_1), Path(paired_2), Path(db)))
        assert Path(paired_1).read_text() == FASTQ_RECORD
        Path(report).write_text("" if self.empty_report else "100.00\t1\t1\tU\t0\tunclassified\n")
        Path(labels).write_text("C\tread1\t9606\t10|10\t0:1\n")


class FakeBracken:
    def __init__(self):
        self.calls = []

    def estimate(self, db, report, output, output_report, level, read_length=100, threshold=10):
        self.calls.append(("estimate", level, Path(report)))
        Path(output).write_text(f"name\tlevel\n{level}\t1\n")
        Path(output_report).write_text("report\n")


class FakeQstat:
    def __init__(self):
        self.calls = []

    def snapshot(self, job_id, dest):
        self.calls.append(job_id)
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        Path(dest).write_text(f"job_number: {job_id}\n")
        return Path(dest)


@pytest.fixture
def fake_tools():
    return SimpleNamespace(
        pigz=FakePigz(),
        kneaddata=FakeKneaddata(),
        kraken2=FakeKraken2(),
        bracken=FakeBracken(),
        qstat=FakeQstat(),
    )


def tool_invocations(tools) -> int:
    return len(tools.kneaddata.calls) + len(tools.kraken2.calls) + len(tools.bracken.calls)


@pytest.fixture
def workspace(tmp_path):
    """Manifest, gzipped read pair, reference databases and a matching Config."""
    data = tmp_path / "data"
    input_a = write_gz(data / "S1_R1.fastq.gz", FASTQ_RECORD * 3)
    input_b = write_gz(data / "S1_R2.fastq.gz", FASTQ_RECORD * 3)

    manifest = tmp_path / "manifest.tsv"
    manifest.write_text(f"sample_id\tinput_a\tinput_b\nS1\t{input_a}\t{input_b}\n")

    host = tmp_path / "db" / "host"
    host.mkdir(parents=True)
    (host / "host.1.bt2").write_text("index")
    kraken_db = tmp_path / "db" / "kraken2"
    kraken_db.mkdir(parents=True)
    for name in ("hash.k2d", "opts.k2d", "taxo.k2d"):
        (kraken_db / name).write_text("k2d")
    bracken_db = tmp_path / "db" / "bracken"
    bracken_db.mkdir(parents=True)
    for name in ("database100mers.kmer_distrib", "database100mers.kraken"):
        (bracken_db / name).write_text("distrib")

    cfg = Config()
    cfg.paths.manifest = manifest
    cfg.paths.persistent_root = tmp_path / "home"
    cfg.paths.output_base_dir = "/study/out/"
    cfg.paths.study_name = "study"
    cfg.runtime.log_root = tmp_path / "logs"
    cfg.databases.host_index = host
    cfg.databases.kraken2_db = kraken_db
    cfg.databases.bracken_db = bracken_db
    cfg.transfer.slot_dir = tmp_path / "slots"

    scratch = tmp_path / "scratch"
    scratch.mkdir()
    env = {
        "TMPDIR": str(scratch),
        "SGE_TASK_ID": "1",
        "JOB_ID": "4242",
        "NSLOTS": "4",
        "USER": "tester",
        "PATH": os.environ.get("PATH", ""),
    }
    return SimpleNamespace(
        root=tmp_path,
        cfg=cfg,
        env=env,
        manifest=manifest,
        scratch=scratch,
        durable_root=tmp_path / "home" / "study" / "out" / "S1",
        working_dir=scratch / "S1",
        input_a=input_a,
        input_b=input_b,
    )


@pytest.fixture
def build_pipeline(workspace, fake_tools):
    """Factory: Pipeline for S1 wired to the stand-in tools."""

    def _build(stages, transfer=False, transfer_dispatcher=None):
        record = resolve(workspace.cfg.paths.manifest, 1)
        context = build_run_context(workspace.cfg, record, stages, workspace.env, transfer=transfer)
        runner = StageRunner(
            context,
            tools={
                "kneaddata": fake_tools.kneaddata,
                "kraken2": fake_tools.kraken2,
                "bracken": fake_tools.bracken,
                "pigz": fake_tools.pigz,
            },
        )
        stager = ScratchStager(threads=context.threads, pigz_factory=lambda: fake_tools.pigz)
        publisher = DurablePublisher(threads=context.threads, pigz_factory=lambda: fake_tools.pigz)
        dispatcher = CleanupDispatcher(
            context,
            publisher=publisher,
            transfer=transfer_dispatcher,
            accounting_factory=lambda: fake_tools.qstat,
        )
        return Pipeline(context, runner=runner, stager=stager, publisher=publisher, dispatcher=dispatcher)

    return _build
