"""Tests for configuration loading and validation."""

from pathlib import Path
import sys

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from metapipe.config import Config, load_config, save_config
from metapipe.exceptions import ConfigurationError
from metapipe.resources import get_default_config


class TestConfigDefaults:
    """Test default values."""

    def test_defaults_validate(self):
        Config().validate()

    def test_tool_defaults(self):
        cfg = Config()
        assert cfg.tools.kneaddata["trimmomatic_options"] == "SLIDINGWINDOW:4:20 MINLEN:50"
        assert cfg.tools.kraken2["confidence"] == 0.5
        assert "levels" not in cfg.tools.bracken

    def test_threads_property(self):
        cfg = Config()
        assert cfg.threads is None
        cfg.threads = 8
        assert cfg.performance.threads == 8


class TestValidate:
    """Test Config.validate()."""

    def test_zero_threads(self):
        cfg = Config()
        cfg.threads = 0
        with pytest.raises(ConfigurationError, match="Threads"):
            cfg.validate()

    def test_slash_only_output_base_dir(self):
        cfg = Config()
        cfg.paths.output_base_dir = "//"
        with pytest.raises(ConfigurationError):
            cfg.validate()

    def test_bad_transfer_mode(self):
        cfg = Config()
        cfg.transfer.mode = "carrier-pigeon"
        with pytest.raises(ConfigurationError, match="transfer.mode"):
            cfg.validate()

    def test_bracken_levels_rejected(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("tools:\n  bracken:\n    levels: [\"S\"]\n")
        cfg = load_config(path)
        with pytest.raises(ConfigurationError, match="species and genus"):
            cfg.validate()

    def test_confidence_out_of_range(self):
        cfg = Config()
        cfg.tools.kraken2["confidence"] = 1.5
        with pytest.raises(ConfigurationError):
            cfg.validate()

    def test_bracken_read_length(self):
        cfg = Config()
        cfg.tools.bracken["read_length"] = "100"
        with pytest.raises(ConfigurationError):
            cfg.validate()


class TestLoadConfig:
    """Test load_config()/save_config()."""

    def test_partial_file(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text(
            "paths:\n"
            "  study_name: mouse_gut\n"
            "  manifest: ~/m.tsv\n"
            "tools:\n"
            "  kraken2:\n"
            "    confidence: 0.1\n"
        )
        cfg = load_config(path)
        assert cfg.paths.study_name == "mouse_gut"
        assert cfg.paths.manifest == Path.home() / "m.tsv"
        assert cfg.tools.kraken2 == {"confidence": 0.1, "use_names": True}
        assert cfg.paths.output_base_dir == "metagenomics/out"

    def test_unknown_section(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("metaphlan:\n  db: x\n")
        with pytest.raises(ConfigurationError, match="metaphlan"):
            load_config(path)

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("transfer:\n  retries: 3\n")
        with pytest.raises(ConfigurationError, match="retries"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("paths: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "absent.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("")
        assert load_config(path).paths.study_name == "metagenomics"

    def test_round_trip(self, tmp_path):
        cfg = Config()
        cfg.paths.study_name = "round"
        cfg.transfer.max_retries = 2
        path = tmp_path / "out" / "cfg.yaml"
        save_config(cfg, path)
        loaded = load_config(path)
        assert loaded.paths.study_name == "round"
        assert loaded.transfer.max_retries == 2
        assert loaded.to_dict() == cfg.to_dict()

    def test_packaged_template_loads(self, tmp_path):
        path = tmp_path / "template.yaml"
        path.write_text(get_default_config())
        cfg = load_config(path)
        cfg.validate()
        assert cfg.paths.persistent_root == Path.home()
        assert cfg.transfer.mode == "inline"

    def test_template_covers_every_section(self):
        data = yaml.safe_load(get_default_config())
        assert set(data) == set(Config().to_dict())
