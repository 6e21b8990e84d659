from __future__ import annotations

"""Consumption of a build's event stream.

`EventStreamConsumer` is the only component that decides a build's outcome.
It renders output as it arrives and stops at the first terminal status.
"""

import sys
from enum import Enum
from typing import Callable, TextIO

from .errors import StreamError
from .models import BuildStatus
from .wire import (
    ConnectionClosedError,
    ErrorEvent,
    Event,
    EventStreamConnection,
    LogEvent,
    OpaqueEvent,
    StatusEvent,
    VersionEvent,
    WireProtocolError,
)

SUPPORTED_PROTOCOL_MAJOR = "1"


class StreamState(str, Enum):
    CONNECTING = "connecting"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    STREAMING = "streaming"
    TERMINATED = "terminated"
    DISCONNECTED = "disconnected"


def _is_supported_version(version: str) -> bool:
    return version.split(".", 1)[0] == SUPPORTED_PROTOCOL_MAJOR


class EventStreamConsumer:
    """Read events for one build until it reaches a terminal status."""

    def __init__(
        self,
        connection: EventStreamConnection,
        *,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.connection = connection
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stderr = stderr if stderr is not None else sys.stderr
        self._log = log
        self.state = StreamState.CONNECTING
        self.status: BuildStatus | None = None

    def _trace(self, message: str) -> None:
        if self._log is not None:
            self._log(message)

    def run(self) -> BuildStatus:
        """Consume the stream; return the terminal status or raise StreamError."""
        try:
            self.connection.connect()
            self.state = StreamState.AWAITING_HANDSHAKE
            self._trace("event stream connected: %s" % self.connection.url)

            self._await_handshake()
            self.state = StreamState.STREAMING

            while self.status is None:
                self._dispatch(self.connection.receive_event())
        except ConnectionClosedError as exc:
            self.state = StreamState.DISCONNECTED
            raise StreamError(
                "event stream ended before the build finished: %s" % exc
            ) from exc
        except WireProtocolError as exc:
            self.state = StreamState.DISCONNECTED
            raise StreamError("event stream protocol error: %s" % exc) from exc
        finally:
            self.connection.close()

        self.state = StreamState.TERMINATED
        return self.status

    def _await_handshake(self) -> None:
        event = self.connection.receive_event()
        if not isinstance(event, VersionEvent):
            raise WireProtocolError("expected version handshake, got %r" % (event,))
        if not _is_supported_version(event.version):
            raise WireProtocolError(
                "unsupported event protocol version %s" % event.version
            )
        self._trace("event protocol version %s" % event.version)

    def _dispatch(self, event: Event) -> None:
        if isinstance(event, LogEvent):
            self.stdout.write(event.payload)
            self.stdout.flush()
        elif isinstance(event, ErrorEvent):
            self.stderr.write(event.message + "\n")
            self.stderr.flush()
        elif isinstance(event, StatusEvent):
            self._trace("build status: %s" % event.status.value)
            if event.status.is_terminal:
                self.status = event.status
        elif isinstance(event, OpaqueEvent):
            if event.type == "status":
                self._trace("ignoring build status: %s" % event.payload.get("status"))
            else:
                self._trace("ignoring %s event" % event.type)
        elif isinstance(event, VersionEvent):
            raise WireProtocolError("unexpected version handshake mid-stream")
        else:
            raise WireProtocolError("unhandled event %r" % (event,))
