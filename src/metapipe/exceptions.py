"""Custom exceptions for metapipe."""

from __future__ import annotations

from typing import Optional, Sequence


class MetaPipeError(Exception):
    """Base exception for all metapipe errors."""

    pass


class ConfigurationError(MetaPipeError):
    """Raised when configuration, flags or manifest addressing are invalid.

    Configuration errors are never retried; the operator has to fix the
    invocation and resubmit.
    """

    pass


class ManifestError(ConfigurationError):
    """Base class for manifest lookup failures."""

    pass


class ManifestUnreadable(ManifestError):
    """Raised when the manifest cannot be opened."""

    pass


class EmptyManifest(ManifestError):
    """Raised when the manifest holds a header and no samples."""

    pass


class IndexOutOfRange(ManifestError):
    """Raised when the task index does not address a manifest row."""

    pass


class MalformedRecord(ConfigurationError):
    """Raised when the selected manifest row is incomplete."""

    pass


class InputUnavailable(MalformedRecord):
    """Raised when an input file named by the manifest is missing or unreadable."""

    pass


class MissingUpstreamArtifact(ConfigurationError):
    """Raised when a requested stage has no usable upstream output."""

    def __init__(
        self,
        message: str = "",
        stage: Optional[str] = None,
        upstream: Optional[str] = None,
        flag: Optional[str] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.upstream = upstream
        self.flag = flag


class DependencyError(ConfigurationError):
    """Raised when required external executables are missing."""

    pass


class StagingFailed(MetaPipeError):
    """Raised when copying or decompressing inputs into scratch fails."""

    pass


class ExternalToolError(MetaPipeError):
    """Raised when an external tool execution fails."""

    def __init__(self, message="", command=None, returncode=None, stderr=None):
        """Initialize ExternalToolError with optional command details.

        Args:
            message: Error message
            command: Command that was executed (list of strings)
            returncode: Exit code from the command
            stderr: Standard error output from the command
        """
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class ToolExecutionFailed(ExternalToolError):
    """Raised when a stage tool exits non-zero."""

    pass


class StageOutputMissing(ToolExecutionFailed):
    """Raised when a stage finished but expected artifacts are absent or empty."""

    def __init__(self, message: str = "", missing: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class PublishFailed(MetaPipeError):
    """Raised when copying stage outputs into durable storage fails."""

    pass


class TransferFailed(MetaPipeError):
    """Raised when handing the durable directory to the relay host fails."""

    pass


class PipelineError(MetaPipeError):
    """Raised when a stage fails for a reason outside the categories above."""

    pass
