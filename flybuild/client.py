from __future__ import annotations

"""High-level build client implementation.

This module contains:
- the orchestrator HTTP calls (bits pipes, build creation, abort)
- `FlyClient.execute`, which submits a build, uploads its input while
  streaming its events, and turns interrupts into a remote abort
"""

import queue
import sys
import threading
from typing import Any, Callable, TextIO

import requests

from .archive import stream_archive
from .builder import BuildSpecBuilder
from .config import DEFAULT_CONFIG_PATH, FlyConfig, load_fly_config
from .errors import StreamError, TransportError, UploadError
from .events import EventStreamConsumer
from .interrupt import InterruptCoordinator
from .models import (
    BuildRequest,
    BuildResult,
    BuildSpec,
    BuildStatus,
    Channel,
    SubmittedBuild,
    resolve_exit_code,
)
from .wire import EventStreamConnection

_UPLOAD = "upload"
_EVENTS = "events"


def _affinity_token(response: requests.Response) -> str | None:
    """Render the cookies set by a response as a `Cookie` header value."""
    pairs = ["%s=%s" % (cookie.name, cookie.value) for cookie in response.cookies]
    if not pairs:
        return None
    return "; ".join(pairs)


def _describe_response(response: requests.Response) -> str:
    body = response.text.strip()
    if len(body) > 200:
        body = body[:197] + "..."
    if body:
        return "unexpected status %d: %s" % (response.status_code, body)
    return "unexpected status %d" % response.status_code


class FlyClient:
    """Client that runs one build against an orchestrator and streams its output."""

    def __init__(
        self,
        *,
        config_path: str = DEFAULT_CONFIG_PATH,
        atc_url: str | None = None,
        connect_timeout: float | None = None,
        chunk_size: int | None = None,
        verbose: bool = False,
        verbose_stream: TextIO | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        idle_timeout: float = 0.2,
    ) -> None:
        """Initialize a client with optional config overrides.

        - config/network settings come from ~/.flyrc and `ATC_URL` unless
          overridden here.
        - stdout/stderr receive build output; verbose diagnostics go to
          `verbose_stream` (stderr by default).
        """
        self.config_path = config_path
        self.atc_url_override = atc_url
        self.connect_timeout_override = connect_timeout
        self.chunk_size_override = chunk_size
        self.verbose = verbose
        self.verbose_stream = verbose_stream
        self.stdout = stdout
        self.stderr = stderr
        self.idle_timeout = idle_timeout
        self._config: FlyConfig | None = None

    @property
    def config(self) -> FlyConfig:
        if self._config is None:
            cfg = load_fly_config(self.config_path)
            if self.atc_url_override:
                cfg.atc_url = self.atc_url_override
            if self.connect_timeout_override is not None:
                cfg.connect_timeout = self.connect_timeout_override
            if self.chunk_size_override is not None:
                cfg.chunk_size = self.chunk_size_override
            self._config = cfg
        return self._config

    def _verbose_log(self, message: str) -> None:
        """Emit verbose diagnostic lines when `verbose=True`."""
        if not self.verbose:
            return
        stream = self.verbose_stream if self.verbose_stream is not None else sys.stderr
        try:
            stream.write(f"[flybuild] {message}\n")
            stream.flush()
        except (OSError, ValueError):
            pass

    def _warn(self, message: str) -> None:
        stream = self.stderr if self.stderr is not None else sys.stderr
        stream.write(f"warning: {message}\n")
        stream.flush()

    def _url(self, path: str) -> str:
        return self.config.atc_url.rstrip("/") + path

    def _request(
        self, operation: str, method: str, path: str, **kwargs: Any
    ) -> requests.Response:
        kwargs.setdefault("timeout", self.config.connect_timeout)
        url = self._url(path)
        self._verbose_log("-> %s %s" % (method, url))
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(operation, str(exc)) from exc
        self._verbose_log("<- %d %s %s" % (response.status_code, method, url))
        return response

    def open_channel(self) -> Channel:
        """Allocate a bits pipe for the input upload."""
        response = self._request("create pipe", "POST", "/api/v1/pipes")
        if response.status_code != 201:
            raise TransportError("create pipe", _describe_response(response))
        try:
            body = response.json()
            channel = Channel(id=str(body["id"]), peer_addr=str(body["peer_addr"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise TransportError("create pipe", "malformed response: %s" % exc) from exc
        self._verbose_log("pipe %s via %s" % (channel.id, channel.peer_addr))
        return channel

    def upload(self, channel: Channel, directory: str) -> None:
        """Stream `directory` into the pipe; blocks until the peer has read it.

        Only the connect phase is bounded; the orchestrator's peer may start
        reading arbitrarily late.
        """
        try:
            response = self._request(
                "upload bits",
                "PUT",
                "/api/v1/pipes/%s" % channel.id,
                data=stream_archive(directory, chunk_size=self.config.chunk_size),
                headers={"Content-Type": "application/octet-stream"},
                timeout=(self.config.connect_timeout, None),
            )
        except TransportError as exc:
            raise UploadError("upload bits", str(exc.__cause__ or exc)) from exc
        if response.status_code != 200:
            raise UploadError("upload bits", _describe_response(response))

    def submit_build(self, spec: BuildSpec) -> SubmittedBuild:
        """Create the build and capture its affinity token, if any."""
        response = self._request(
            "create build", "POST", "/api/v1/builds", json=spec.to_payload()
        )
        if response.status_code != 201:
            raise TransportError("create build", _describe_response(response))
        try:
            build_id = int(response.json()["id"])
        except (ValueError, KeyError, TypeError) as exc:
            raise TransportError("create build", "malformed response: %s" % exc) from exc
        build = SubmittedBuild(id=build_id, affinity_token=_affinity_token(response))
        self._verbose_log(
            "created build %d%s"
            % (build.id, " (session affinity)" if build.affinity_token else "")
        )
        return build

    def abort_build(self, build: SubmittedBuild) -> None:
        """Ask the orchestrator to abort `build`; the response body is ignored."""
        headers = {}
        if build.affinity_token:
            headers["Cookie"] = build.affinity_token
        response = self._request(
            "abort build",
            "POST",
            "/api/v1/builds/%d/abort" % build.id,
            headers=headers,
        )
        if not 200 <= response.status_code < 300:
            raise TransportError("abort build", _describe_response(response))

    def event_stream(self, build: SubmittedBuild) -> EventStreamConnection:
        return EventStreamConnection(
            url="%s/api/v1/builds/%d/events"
            % (self.config.websocket_url.rstrip("/"), build.id),
            affinity_token=build.affinity_token,
            connect_timeout=self.config.connect_timeout,
        )

    def execute(
        self, request: BuildRequest, *, handle_signals: bool = True
    ) -> BuildResult:
        """Run one build end to end.

        Raises `FlyError` for any client-side failure. Returns once the event
        stream reported a terminal status, even after an abort was requested.
        `handle_signals` must only be true on the main thread.
        """
        # Filled in once the build exists; the coordinator only starts after that,
        # so signals received earlier are queued and abort the new build.
        build_ref: list[SubmittedBuild] = []

        def _abort() -> None:
            self.abort_build(build_ref[0])
            self._verbose_log("abort requested for build %d" % build_ref[0].id)

        coordinator = InterruptCoordinator(
            _abort, log=self._verbose_log, warn=self._warn
        )
        if handle_signals:
            with coordinator.listening():
                return self._execute(request, coordinator, build_ref)
        return self._execute(request, coordinator, build_ref)

    def _execute(
        self,
        request: BuildRequest,
        coordinator: InterruptCoordinator,
        build_ref: list[SubmittedBuild],
    ) -> BuildResult:
        channel = self.open_channel()
        spec = BuildSpecBuilder.build(request, channel)
        build = self.submit_build(spec)
        build_ref.append(build)
        coordinator.start()

        outcomes: queue.Queue[tuple[str, Any]] = queue.Queue()
        consumer = EventStreamConsumer(
            self.event_stream(build),
            stdout=self.stdout,
            stderr=self.stderr,
            log=self._verbose_log,
        )

        def _run_upload() -> None:
            try:
                self.upload(channel, request.input_dir)
            except Exception as exc:
                outcomes.put((_UPLOAD, exc))
            else:
                outcomes.put((_UPLOAD, None))

        def _run_events() -> None:
            try:
                outcomes.put((_EVENTS, consumer.run()))
            except Exception as exc:
                outcomes.put((_EVENTS, exc))

        workers = [
            threading.Thread(target=_run_upload, name="bits-upload", daemon=True),
            threading.Thread(target=_run_events, name="event-stream", daemon=True),
        ]
        for worker in workers:
            worker.start()

        upload_completed = False
        try:
            while True:
                try:
                    source, outcome = outcomes.get(timeout=self.idle_timeout)
                except queue.Empty:
                    continue

                if source == _UPLOAD:
                    if isinstance(outcome, Exception):
                        if not coordinator.abort_requested:
                            raise outcome
                        # The abort tears down the pipe; the event stream decides.
                        self._verbose_log("upload ended after abort: %s" % outcome)
                        continue
                    upload_completed = True
                    self._verbose_log("upload of %s complete" % request.input_dir)
                    continue

                if isinstance(outcome, Exception):
                    if coordinator.abort_requested:
                        raise StreamError(
                            "build %d was aborted but no final status arrived: %s"
                            % (build.id, outcome)
                        ) from outcome
                    raise outcome

                status: BuildStatus = outcome
                break
        finally:
            coordinator.stop()
            coordinator.join(self.config.connect_timeout)
            if coordinator.is_alive():
                self._verbose_log("abort request still in flight")

        # The event stream has its final answer; a pending upload no longer matters.
        workers[1].join()
        if not upload_completed:
            self._verbose_log("abandoning unfinished upload")

        result = BuildResult(
            build=build,
            status=status,
            exit_code=resolve_exit_code(status),
            abort_requested=coordinator.abort_requested,
            upload_completed=upload_completed,
        )
        self._verbose_log(
            "finished build=%d status=%s returncode=%d"
            % (build.id, status.value, result.exit_code)
        )
        return result
