"""Tests for the logging and progress helpers."""

import logging
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from metapipe.utils.logging import LogTemplates, get_logger, level_from_name, setup_logging
from metapipe.utils.progress import iter_progress


class TestIterProgress:
    """Test iter_progress()."""

    def test_disabled_passes_items_through(self):
        assert list(iter_progress(["kneaddata", "kraken2"], enabled=False)) == ["kneaddata", "kraken2"]

    def test_enabled_preserves_order(self):
        data = [3, 1, 4, 1, 5]
        assert list(iter_progress(data, total=len(data), desc="S1")) == data

    def test_returns_iterator(self):
        progress = iter_progress((1, 2), enabled=False)
        assert next(progress) == 1
        assert list(progress) == [2]

    def test_empty(self):
        assert list(iter_progress([], total=0)) == []

    def test_no_bar_without_terminal(self, capsys):
        assert list(iter_progress(["kneaddata"], total=1, desc="S1")) == ["kneaddata"]
        assert capsys.readouterr().err == ""


class TestLogging:
    """Test setup_logging() and friends."""

    def test_level_from_name(self):
        assert level_from_name("debug") == logging.DEBUG
        assert level_from_name("WARNING") == logging.WARNING
        assert level_from_name("chatty") == logging.INFO

    def test_namespaced_logger(self):
        assert get_logger("pipeline").name == "metapipe.pipeline"

    def test_file_handler_gets_debug(self, tmp_path):
        log_file = tmp_path / "gut" / "S1_meta.log"
        setup_logging(level=logging.INFO, log_file=log_file)
        get_logger("pipeline").debug("detail for the file only")
        for handler in logging.getLogger("metapipe").handlers:
            handler.flush()
        assert "detail for the file only" in log_file.read_text()

    def test_setup_replaces_handlers(self, tmp_path):
        setup_logging(log_file=tmp_path / "a.log")
        setup_logging(log_file=tmp_path / "b.log")
        assert len(logging.getLogger("metapipe").handlers) == 2
        assert logging.getLogger("metapipe").propagate is False

    def test_templates(self):
        line = LogTemplates.STAGE_START.format(sample="S1", stage="kraken2", number=2, total=3)
        assert line == "[S1] Starting stage: kraken2 (#2/3)"
