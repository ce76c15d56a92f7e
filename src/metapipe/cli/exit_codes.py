"""Standard exit codes for the metapipe CLI.

Following shell conventions:
- 0: Success
- 1: General error
- 2: Command line usage error
- 3-11: One code per failure category so array-job accounting can tell them apart
- 130: Terminated by SIGINT (128 + 2)
- 143: Terminated by SIGTERM (128 + 15)
"""

from __future__ import annotations

from metapipe.exceptions import (
    ConfigurationError,
    DependencyError,
    ExternalToolError,
    InputUnavailable,
    MalformedRecord,
    ManifestError,
    MissingUpstreamArtifact,
    PublishFailed,
    StageOutputMissing,
    StagingFailed,
)

EXIT_SUCCESS = 0
EXIT_ERROR = 1  # General error
EXIT_USAGE = 2  # Command line usage error
EXIT_MANIFEST = 3  # Manifest unreadable, empty, or bad task index
EXIT_MALFORMED_RECORD = 4
EXIT_INPUT_UNAVAILABLE = 5
EXIT_STAGING = 6
EXIT_STAGE_OUTPUT = 7  # Tool succeeded but outputs missing/empty
EXIT_TOOL = 8
EXIT_PUBLISH = 9
EXIT_MISSING_UPSTREAM = 10
EXIT_DEPENDENCY = 11
EXIT_SIGINT = 130  # 128 + SIGINT(2)
EXIT_SIGTERM = 143  # 128 + SIGTERM(15)

# Most specific first
_CATEGORY_CODES = (
    (ManifestError, EXIT_MANIFEST),
    (InputUnavailable, EXIT_INPUT_UNAVAILABLE),
    (MalformedRecord, EXIT_MALFORMED_RECORD),
    (MissingUpstreamArtifact, EXIT_MISSING_UPSTREAM),
    (DependencyError, EXIT_DEPENDENCY),
    (ConfigurationError, EXIT_USAGE),
    (StagingFailed, EXIT_STAGING),
    (StageOutputMissing, EXIT_STAGE_OUTPUT),
    (ExternalToolError, EXIT_TOOL),
    (PublishFailed, EXIT_PUBLISH),
)


def exit_code_for(exc: BaseException) -> int:
    """Map an exception that ended a run to its exit code."""
    if isinstance(exc, KeyboardInterrupt):
        return EXIT_SIGTERM if "SIGTERM" in str(exc) else EXIT_SIGINT
    for category, code in _CATEGORY_CODES:
        if isinstance(exc, category):
            return code
    return EXIT_ERROR
