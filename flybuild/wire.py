from __future__ import annotations

"""Event stream transport and event decoding.

The orchestrator sends one JSON text frame per event. The first frame is a
bare version handshake (`{"version": "1.0"}`); every later frame is an
envelope `{"type": <kind>, "event": {...}}`.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Union

import websocket

from .models import BuildStatus


class WireProtocolError(RuntimeError):
    """Raised when an event frame cannot be decoded."""


class ConnectionClosedError(RuntimeError):
    """Raised when the event stream closes or fails."""


@dataclass(frozen=True)
class VersionEvent:
    version: str


@dataclass(frozen=True)
class LogEvent:
    payload: str
    origin: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusEvent:
    status: BuildStatus


@dataclass(frozen=True)
class ErrorEvent:
    message: str


@dataclass(frozen=True)
class OpaqueEvent:
    """Any event kind this client does not interpret."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)


Event = Union[VersionEvent, LogEvent, StatusEvent, ErrorEvent, OpaqueEvent]


def decode_event(frame: str | bytes) -> Event:
    """Decode one event frame into its typed variant."""
    try:
        message = json.loads(frame)
    except (TypeError, ValueError) as exc:
        raise WireProtocolError("failed to decode event frame: %r" % (frame,)) from exc
    if not isinstance(message, dict):
        raise WireProtocolError("event frame is not an object: %r" % (message,))

    if "type" not in message and "version" in message:
        return VersionEvent(version=str(message["version"]))

    kind = message.get("type")
    if not isinstance(kind, str) or not kind:
        raise WireProtocolError("event frame missing type: %r" % (message,))
    body = message.get("event")
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise WireProtocolError("%s event body is not an object" % kind)

    if kind == "log":
        payload = body.get("payload")
        if not isinstance(payload, str):
            raise WireProtocolError("log event missing payload")
        origin = body.get("origin")
        return LogEvent(payload=payload, origin=origin if isinstance(origin, dict) else {})

    if kind == "status":
        value = body.get("status")
        if not isinstance(value, str) or not value:
            raise WireProtocolError("status event missing status")
        try:
            return StatusEvent(status=BuildStatus(value))
        except ValueError:
            # In-flight states this client does not know never decide the outcome.
            return OpaqueEvent(type=kind, payload=body)

    if kind == "error":
        return ErrorEvent(message=str(body.get("message", "")))

    return OpaqueEvent(type=kind, payload=body)


class EventStreamConnection:
    """Websocket transport for one build's event stream."""

    def __init__(
        self,
        *,
        url: str,
        affinity_token: str | None,
        connect_timeout: float,
    ) -> None:
        self.url = url
        self.affinity_token = affinity_token
        self.connect_timeout = connect_timeout

        self._ws: websocket.WebSocket | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def connect(self) -> None:
        options: dict[str, Any] = {"timeout": self.connect_timeout}
        if self.affinity_token:
            options["cookie"] = self.affinity_token
        try:
            self._ws = websocket.create_connection(self.url, **options)
        except (OSError, websocket.WebSocketException) as exc:
            raise ConnectionClosedError(
                "failed to connect to %s: %s" % (self.url, exc)
            ) from exc
        # Events may be arbitrarily far apart.
        self._ws.settimeout(None)

    def close(self) -> None:
        if self._ws is not None:
            try:
                self._ws.close()
            except (OSError, websocket.WebSocketException):
                pass
            finally:
                self._ws = None

    def receive_event(self) -> Event:
        if self._ws is None:
            raise ConnectionClosedError("connection is not open")
        try:
            frame = self._ws.recv()
        except (OSError, websocket.WebSocketException) as exc:
            raise ConnectionClosedError("event stream failed: %s" % exc) from exc
        if frame == "" or frame == b"":
            raise ConnectionClosedError("event stream closed by server")
        return decode_event(frame)
