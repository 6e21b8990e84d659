from __future__ import annotations

import json
import queue
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Iterator

import pytest
import websocket

import flybuild.wire as wire

PIPE_ID = "some-pipe-id"
PEER_ADDR = "127.0.0.1:1234"
BUILD_ID = 128
COOKIE_NAME = "Some-Cookie"
COOKIE_VALUE = "some-cookie-data"
AFFINITY_TOKEN = f"{COOKIE_NAME}={COOKIE_VALUE}"

BUILD_YML = """---
image: ubuntu

params:
  FOO: bar
  BAZ: buzz
  X: 1

run:
  path: find
  args: [.]
"""


def _read_chunked(rfile: Any) -> bytes:
    body = b""
    while True:
        size_line = rfile.readline()
        if not size_line:
            raise EOFError("connection closed inside chunked body")
        size = int(size_line.split(b";", 1)[0].strip(), 16)
        if size == 0:
            while rfile.readline() not in (b"\r\n", b"\n", b""):
                pass
            return body
        body += rfile.read(size)
        rfile.readline()


class FakeOrchestrator:
    """In-process stand-in for the orchestrator's HTTP endpoints."""

    def __init__(self) -> None:
        self.pipe_status = 201
        self.build_status = 201
        self.upload_status = 200
        self.abort_status = 200
        self.set_cookie = True
        self.upload_waits_for_abort = False
        self.abort_delay = 0.0

        self.build_payloads: list[dict[str, Any]] = []
        self.uploads: list[bytes] = []
        self.abort_cookies: list[str | None] = []
        self.upload_started = threading.Event()
        self.aborted = threading.Event()

        orchestrator = self

        class _Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
                pass

            def do_POST(self) -> None:
                orchestrator._handle(self)

            def do_PUT(self) -> None:
                orchestrator._handle(self)

        self._server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def url(self) -> str:
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}"

    def start(self) -> None:
        self._thread.start()

    def close(self) -> None:
        self._server.shutdown()
        self._server.server_close()

    def _respond(
        self,
        handler: BaseHTTPRequestHandler,
        status: int,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        handler.send_response(status)
        for key, value in (headers or {}).items():
            handler.send_header(key, value)
        handler.send_header("Content-Length", str(len(body)))
        handler.send_header("Connection", "close")
        handler.end_headers()
        handler.wfile.write(body)
        handler.close_connection = True

    def _read_body(self, handler: BaseHTTPRequestHandler) -> bytes:
        if handler.headers.get("Transfer-Encoding", "").lower() == "chunked":
            return _read_chunked(handler.rfile)
        length = int(handler.headers.get("Content-Length") or 0)
        return handler.rfile.read(length)

    def _handle(self, handler: BaseHTTPRequestHandler) -> None:
        method, path = handler.command, handler.path

        if method == "POST" and path == "/api/v1/pipes":
            self._read_body(handler)
            body = json.dumps({"id": PIPE_ID, "peer_addr": PEER_ADDR}).encode("utf-8")
            self._respond(handler, self.pipe_status, body)
            return

        if method == "POST" and path == "/api/v1/builds":
            self.build_payloads.append(json.loads(self._read_body(handler)))
            headers = {}
            if self.set_cookie:
                headers["Set-Cookie"] = f"{AFFINITY_TOKEN}; Path=/"
            body = json.dumps({"id": BUILD_ID}).encode("utf-8")
            self._respond(handler, self.build_status, body, headers)
            return

        if method == "PUT" and path == f"/api/v1/pipes/{PIPE_ID}":
            self.upload_started.set()
            self.uploads.append(self._read_body(handler))
            if self.upload_waits_for_abort:
                self.aborted.wait(5.0)
            self._respond(handler, self.upload_status)
            return

        if method == "POST" and path == f"/api/v1/builds/{BUILD_ID}/abort":
            self._read_body(handler)
            cookie = handler.headers.get("Cookie")
            self.abort_cookies.append(cookie)
            if self.set_cookie and cookie != AFFINITY_TOKEN:
                self._respond(handler, 403)
                return
            self.aborted.set()
            if self.abort_delay:
                time.sleep(self.abort_delay)
            self._respond(handler, self.abort_status)
            return

        self._read_body(handler)
        self._respond(handler, 404)


class FakeEventSocket:
    """Client side of one fake event stream; tests push frames into it."""

    def __init__(self, url: str, cookie: str | None) -> None:
        self.url = url
        self.cookie = cookie
        self.frames: queue.Queue[str | None] = queue.Queue()
        self.closed = threading.Event()

    def settimeout(self, timeout: float | None) -> None:  # noqa: ARG002
        pass

    def recv(self) -> str:
        try:
            frame = self.frames.get(timeout=10.0)
        except queue.Empty:
            raise websocket.WebSocketTimeoutException("no event within 10s") from None
        if frame is None:
            raise websocket.WebSocketConnectionClosedException("closed by test")
        return frame

    def close(self) -> None:
        self.closed.set()

    def push(self, kind: str, body: dict[str, Any]) -> None:
        self.frames.put(json.dumps({"type": kind, "event": body}))

    def push_raw(self, message: dict[str, Any]) -> None:
        self.frames.put(json.dumps(message))

    def hang_up(self) -> None:
        self.frames.put(None)


class FakeEventEndpoint:
    """Replacement for `websocket.create_connection` used by the client."""

    def __init__(self) -> None:
        self.expected_cookie: str | None = AFFINITY_TOKEN
        self.version = "1.0"
        self.connections: queue.Queue[FakeEventSocket] = queue.Queue()
        self.urls: list[str] = []

    def create_connection(self, url: str, **options: Any) -> FakeEventSocket:
        self.urls.append(url)
        cookie = options.get("cookie")
        if self.expected_cookie is not None and cookie != self.expected_cookie:
            raise websocket.WebSocketException(f"handshake rejected: cookie {cookie!r}")
        sock = FakeEventSocket(url, cookie)
        sock.push_raw({"version": self.version})
        self.connections.put(sock)
        return sock

    def next_connection(self, timeout: float = 5.0) -> FakeEventSocket:
        return self.connections.get(timeout=timeout)


@pytest.fixture
def orchestrator() -> Iterator[FakeOrchestrator]:
    server = FakeOrchestrator()
    server.start()
    try:
        yield server
    finally:
        server.close()


@pytest.fixture
def events(monkeypatch: pytest.MonkeyPatch) -> FakeEventEndpoint:
    endpoint = FakeEventEndpoint()
    monkeypatch.setattr(wire.websocket, "create_connection", endpoint.create_connection)
    return endpoint


@pytest.fixture
def build_dir(tmp_path: Any) -> Any:
    directory = tmp_path / "fly-build-dir"
    directory.mkdir()
    (directory / "build.yml").write_text(BUILD_YML, encoding="utf-8")
    return directory
