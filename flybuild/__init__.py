"""Command-line client that runs builds on a remote orchestrator."""

from .client import FlyClient
from .errors import (
    ArchiveError,
    BuildConfigError,
    FlyError,
    StreamError,
    TransportError,
    UploadError,
)
from .models import (
    BuildRequest,
    BuildResult,
    BuildSpec,
    BuildStatus,
    Channel,
    SubmittedBuild,
    resolve_exit_code,
)

__all__ = [
    "ArchiveError",
    "BuildConfigError",
    "FlyError",
    "StreamError",
    "TransportError",
    "UploadError",
    "FlyClient",
    "BuildRequest",
    "BuildResult",
    "BuildSpec",
    "BuildStatus",
    "Channel",
    "SubmittedBuild",
    "resolve_exit_code",
]
