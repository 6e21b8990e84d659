from __future__ import annotations

"""Client-side failures.

None of these describe a build outcome; build outcomes are reported through
`BuildStatus`. Every error here ends the invocation with a client-fault exit
code and is never retried.
"""


class FlyError(RuntimeError):
    """Raised when the client cannot complete an invocation."""


class BuildConfigError(FlyError):
    """Raised when the build configuration file is missing or malformed."""


class ArchiveError(FlyError):
    """Raised when the input directory cannot be archived."""


class TransportError(FlyError):
    """Raised when an orchestrator request fails or is rejected."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__("%s: %s" % (operation, message))
        self.operation = operation


class UploadError(TransportError):
    """Raised when streaming the input archive to the bits pipe fails."""


class StreamError(FlyError):
    """Raised when the event stream ends before a terminal build status."""
