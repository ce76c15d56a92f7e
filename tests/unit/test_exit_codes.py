"""Tests for exception -> exit code mapping."""

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from metapipe.cli import exit_codes as ec
from metapipe.exceptions import (
    ConfigurationError,
    DependencyError,
    EmptyManifest,
    IndexOutOfRange,
    InputUnavailable,
    MalformedRecord,
    ManifestUnreadable,
    MissingUpstreamArtifact,
    PipelineError,
    PublishFailed,
    StageOutputMissing,
    StagingFailed,
    ToolExecutionFailed,
    TransferFailed,
)


@pytest.mark.parametrize(
    "exc, code",
    [
        (ManifestUnreadable("x"), ec.EXIT_MANIFEST),
        (EmptyManifest("x"), ec.EXIT_MANIFEST),
        (IndexOutOfRange("x"), ec.EXIT_MANIFEST),
        (MalformedRecord("x"), ec.EXIT_MALFORMED_RECORD),
        (InputUnavailable("x"), ec.EXIT_INPUT_UNAVAILABLE),
        (StagingFailed("x"), ec.EXIT_STAGING),
        (StageOutputMissing("x", missing=["kraken_report"]), ec.EXIT_STAGE_OUTPUT),
        (ToolExecutionFailed("x"), ec.EXIT_TOOL),
        (PublishFailed("x"), ec.EXIT_PUBLISH),
        (MissingUpstreamArtifact("x", stage="kraken2", upstream="kneaddata", flag="-k"), ec.EXIT_MISSING_UPSTREAM),
        (DependencyError("x"), ec.EXIT_DEPENDENCY),
        (ConfigurationError("x"), ec.EXIT_USAGE),
        (PipelineError("x"), ec.EXIT_ERROR),
        (RuntimeError("x"), ec.EXIT_ERROR),
    ],
)
def test_exit_code_for(exc, code):
    assert ec.exit_code_for(exc) == code


def test_codes_are_distinct():
    codes = [
        ec.EXIT_MANIFEST,
        ec.EXIT_MALFORMED_RECORD,
        ec.EXIT_INPUT_UNAVAILABLE,
        ec.EXIT_STAGING,
        ec.EXIT_STAGE_OUTPUT,
        ec.EXIT_TOOL,
        ec.EXIT_PUBLISH,
        ec.EXIT_MISSING_UPSTREAM,
        ec.EXIT_DEPENDENCY,
    ]
    assert len(set(codes)) == len(codes)
    assert ec.EXIT_SUCCESS not in codes


def test_signals():
    assert ec.exit_code_for(KeyboardInterrupt("SIGTERM received")) == 143
    assert ec.exit_code_for(KeyboardInterrupt("SIGINT received")) == 130
    assert ec.exit_code_for(KeyboardInterrupt()) == 130


def test_transfer_failure_is_not_a_run_category():
    assert ec.exit_code_for(TransferFailed("x")) == ec.EXIT_ERROR
