"""Tests for run context resolution."""

from pathlib import Path
import sys
import tempfile

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from metapipe.config import Config, SchedulerConfig
from metapipe.core.context import (
    build_run_context,
    build_tool_env,
    durable_root_for,
    resolve_job_id,
    resolve_scratch_root,
    resolve_task_index,
    resolve_threads,
)
from metapipe.core.manifest import Record
from metapipe.core.stages import Stage
from metapipe.exceptions import ConfigurationError


class TestTaskIndex:
    """Test resolve_task_index()."""

    def test_override_variable_wins(self):
        env = {"TASK_INDEX": "3", "SGE_TASK_ID": "7"}
        assert resolve_task_index(env, SchedulerConfig()) == 3

    def test_scheduler_task_id(self):
        assert resolve_task_index({"SGE_TASK_ID": "7"}, SchedulerConfig()) == 7

    def test_slurm_task_id(self):
        assert resolve_task_index({"SLURM_ARRAY_TASK_ID": "5"}, SchedulerConfig()) == 5

    def test_undefined_counts_as_unset(self):
        env = {"TASK_INDEX": "", "SGE_TASK_ID": "undefined"}
        assert resolve_task_index(env, SchedulerConfig()) == 1

    def test_default(self):
        assert resolve_task_index({}, SchedulerConfig()) == 1

    def test_explicit_argument_beats_environment(self):
        assert resolve_task_index({"TASK_INDEX": "3"}, SchedulerConfig(), override=9) == 9

    def test_non_numeric_passed_through(self):
        assert resolve_task_index({"TASK_INDEX": "abc"}, SchedulerConfig()) == "abc"


class TestThreadsAndPaths:
    """Test thread, job id and path resolution."""

    def test_threads_from_nslots(self):
        assert resolve_threads({"NSLOTS": "12"}, Config()) == 12

    def test_threads_default(self):
        assert resolve_threads({}, Config()) == 1

    def test_threads_override(self):
        cfg = Config()
        cfg.threads = 2
        assert resolve_threads({"NSLOTS": "12"}, cfg) == 2

    def test_bad_nslots(self):
        with pytest.raises(ConfigurationError):
            resolve_threads({"NSLOTS": "many"}, Config())

    def test_job_id(self):
        assert resolve_job_id({"SLURM_JOB_ID": "88"}, SchedulerConfig()) == "88"
        assert resolve_job_id({}, SchedulerConfig()) is None

    def test_scratch_root(self, tmp_path):
        assert resolve_scratch_root({"TMPDIR": str(tmp_path)}, SchedulerConfig()) == tmp_path
        assert resolve_scratch_root({}, SchedulerConfig()) == Path(tempfile.gettempdir())

    def test_durable_root_home(self, tmp_path):
        cfg = Config()
        cfg.paths.persistent_root = tmp_path
        cfg.paths.output_base_dir = "/proj/out/"
        assert durable_root_for(cfg, {}, "S1") == tmp_path / "proj" / "out" / "S1"

    def test_durable_root_shared_scratch(self, tmp_path):
        cfg = Config()
        cfg.paths.shared_scratch_root = tmp_path
        cfg.paths.save_to_scratch = True
        cfg.paths.output_base_dir = "out"
        assert durable_root_for(cfg, {"USER": "ana"}, "S1") == tmp_path / "ana" / "out" / "S1"

    def test_tool_env(self, tmp_path):
        env = build_tool_env({"PATH": "/bin"}, 6, tmp_path)
        assert env["OMP_NUM_THREADS"] == "6"
        assert env["NUMEXPR_NUM_THREADS"] == "6"
        assert env["TMPDIR"] == str(tmp_path)
        assert env["_JAVA_OPTIONS"] == f"-Djava.io.tmpdir={tmp_path}"
        assert env["PATH"] == "/bin"


class TestBuildRunContext:
    """Test build_run_context()."""

    def make_record(self, tmp_path):
        return Record("S1", tmp_path / "a.fq.gz", tmp_path / "b.fq.gz", 2)

    def test_fields(self, tmp_path):
        cfg = Config()
        cfg.paths.persistent_root = tmp_path / "home"
        cfg.paths.study_name = "gut"
        cfg.runtime.log_root = tmp_path / "logs"
        env = {"TMPDIR": str(tmp_path / "tmp"), "NSLOTS": "3", "JOB_ID": "99"}
        ctx = build_run_context(
            cfg, self.make_record(tmp_path), [Stage.ABUNDANCE_ESTIMATION, Stage.DECONTAMINATION], env
        )
        assert ctx.stages == (Stage.DECONTAMINATION, Stage.ABUNDANCE_ESTIMATION)
        assert ctx.task_index == 2
        assert ctx.threads == 3
        assert ctx.job_id == "99"
        assert ctx.working_dir == tmp_path / "tmp" / "S1"
        assert ctx.log_dir == tmp_path / "logs" / "gut"
        assert ctx.tool_env["OMP_NUM_THREADS"] == "3"
        assert ctx.transfer is None

    def test_context_is_frozen(self, tmp_path):
        ctx = build_run_context(Config(), self.make_record(tmp_path), [Stage.DECONTAMINATION], {})
        with pytest.raises(Exception):
            ctx.threads = 5

    def test_transfer_request(self, tmp_path):
        cfg = Config()
        cfg.transfer.dest_dir = "box/project/"
        cfg.runtime.log_root = tmp_path / "logs"
        ctx = build_run_context(cfg, self.make_record(tmp_path), [Stage.DECONTAMINATION], {}, transfer=True)
        assert ctx.transfer.dest == "box/project/S1/"
        assert ctx.transfer.log_file == tmp_path / "logs" / "metagenomics" / "S1_transfer.log"
        assert ctx.transfer_settings.max_retries == 5

    def test_transfer_without_destination(self, tmp_path):
        with pytest.raises(ConfigurationError, match="transfer"):
            build_run_context(Config(), self.make_record(tmp_path), [Stage.DECONTAMINATION], {}, transfer=True)

    def test_no_stages(self, tmp_path):
        with pytest.raises(ConfigurationError):
            build_run_context(Config(), self.make_record(tmp_path), [], {})
