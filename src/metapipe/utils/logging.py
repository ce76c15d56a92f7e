"""Logging setup for metapipe.

Every module logs through ``get_logger(<component>)`` under the ``metapipe``
namespace. A run calls ``setup_logging`` twice: once with console output
only, and again with the per-sample log file once the manifest record is
resolved.
"""

from __future__ import annotations

import logging
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "[%(levelname)-7s] [%(asctime)s] - %(message)s"
CONSOLE_DATEFMT = "%m-%d %I:%M:%S %p"

# Sample logs rarely exceed a few MB; rotate well above that
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def level_from_name(name: str, default: int = logging.INFO) -> int:
    """Translate a config level name into a logging level."""
    return LEVELS.get(str(name).upper(), default)


def _file_handler(log_file: Path, max_bytes: int, backup_count: int) -> Optional[logging.Handler]:
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
    except OSError as exc:
        warnings.warn(f"Cannot write log file {log_file}: {exc}")
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> None:
    """(Re)configure the ``metapipe`` logger.

    Args:
        level: Console level
        log_file: Optional run log; always receives DEBUG records
        max_bytes: Size at which the run log rotates
        backup_count: Rotated run logs to keep

    The root logger stays at WARNING so library chatter stays out of the
    run log. Existing handlers are closed and replaced on every call.
    """
    logging.getLogger().setLevel(logging.WARNING)

    app_logger = logging.getLogger("metapipe")
    for old in list(app_logger.handlers):
        app_logger.removeHandler(old)
        old.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
    app_logger.addHandler(console)

    file_handler = _file_handler(Path(log_file), max_bytes, backup_count) if log_file else None
    if file_handler is not None:
        app_logger.addHandler(file_handler)
    app_logger.setLevel(logging.DEBUG if file_handler is not None else level)
    app_logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Return a namespaced logger under 'metapipe' root."""
    base = logging.getLogger("metapipe")
    return base.getChild(name)


class LogTemplates:
    """Standard log message templates for consistent logging across modules.

    Example usage:
        logger.info(LogTemplates.STAGE_START.format(
            stage="kraken2", sample="S1", number=2, total=3
        ))
    """

    # Stage lifecycle messages
    STAGE_START = "[{sample}] Starting stage: {stage} (#{number}/{total})"
    STAGE_SUCCESS = "[{sample}] Completed stage: {stage} in {duration:.1f}s"
    STAGE_FAILURE = "[{sample}] {category} at stage {stage}: {error}"
    STAGE_SKIPPED = "[{sample}] Skipping stage: {stage} - {reason}"

    # File operations
    FILE_COPIED = "Copied {src} -> {dest}"
    FILE_RESTORED = "[{sample}] Restored {name} from durable storage: {path}"

    # Durable storage
    PUBLISH_START = "[{sample}] Publishing {stage} outputs to {dest}"
    PUBLISH_SKIPPED = "[{sample}] {stage} outputs already in durable storage, not publishing"
    PUBLISH_SUCCESS = "[{sample}] Published {count} files for {stage}"

    # Transfer
    TRANSFER_START = "[{sample}] Transferring {src} to {dest} via {relay}"
    TRANSFER_FAILURE = "[{sample}] Transfer failed: {error}"
