from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

EXIT_SUCCEEDED = 0
EXIT_FAILED = 1
EXIT_ERRORED = 2
EXIT_CLIENT_ERROR = 3

DEFAULT_BUILD_CONFIG = "build.yml"


class BuildStatus(str, Enum):
    """Build states reported by the orchestrator."""

    PENDING = "pending"
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERRORED = "errored"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = {
    BuildStatus.SUCCEEDED,
    BuildStatus.FAILED,
    BuildStatus.ERRORED,
    BuildStatus.ABORTED,
}

_EXIT_CODES = {
    BuildStatus.SUCCEEDED: EXIT_SUCCEEDED,
    BuildStatus.FAILED: EXIT_FAILED,
    BuildStatus.ERRORED: EXIT_ERRORED,
    BuildStatus.ABORTED: EXIT_ERRORED,
}


def resolve_exit_code(status: BuildStatus) -> int:
    """Map a terminal build status onto the process exit code."""
    try:
        return _EXIT_CODES[status]
    except KeyError:
        raise ValueError("status %s is not terminal" % status.value) from None


@dataclass(frozen=True)
class Channel:
    """Server-allocated bits pipe the input directory is uploaded through."""

    id: str
    peer_addr: str

    @property
    def fetch_uri(self) -> str:
        return "http://%s/api/v1/pipes/%s" % (self.peer_addr, self.id)


@dataclass(frozen=True)
class BuildInput:
    name: str
    source: Mapping[str, str]
    type: str = "archive"

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "source": dict(self.source)}


@dataclass(frozen=True)
class BuildSpec:
    """Declarative description of what the orchestrator should run."""

    image: str
    run_path: str
    run_args: tuple[str, ...] = ()
    params: Mapping[str, str] = field(default_factory=dict)
    inputs: tuple[BuildInput, ...] = ()
    privileged: bool = True

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON body accepted by `POST /api/v1/builds`."""
        return {
            "privileged": self.privileged,
            "config": {
                "image": self.image,
                "params": dict(self.params),
                "run": {"path": self.run_path, "args": list(self.run_args)},
            },
            "inputs": [build_input.to_payload() for build_input in self.inputs],
        }


@dataclass(frozen=True)
class SubmittedBuild:
    """Identity of a created build.

    `affinity_token` is the `Cookie` header value returned on creation; when
    present it must accompany every later request about this build.
    """

    id: int
    affinity_token: str | None = None


@dataclass
class BuildRequest:
    """Typed request data for one `fly` invocation."""

    input_dir: str
    config_path: str | None = None
    arguments: list[str] = field(default_factory=list)
    privileged: bool = True
    environment: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        if not str(self.input_dir).strip():
            raise ValueError("input_dir must be a non-empty path")
        self.input_dir = os.path.abspath(self.input_dir)
        if self.config_path is None:
            self.config_path = os.path.join(self.input_dir, DEFAULT_BUILD_CONFIG)
        if self.environment is None:
            self.environment = dict(os.environ)

    @property
    def input_name(self) -> str:
        return os.path.basename(os.path.normpath(self.input_dir))


@dataclass
class BuildResult:
    """Outcome of one invocation that reached a terminal build status."""

    build: SubmittedBuild
    status: BuildStatus
    exit_code: int
    abort_requested: bool = False
    upload_completed: bool = False
