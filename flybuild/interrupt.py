from __future__ import annotations

"""Bridge from local interrupt signals to a single remote abort."""

import contextlib
import queue
import signal
import threading
from typing import Any, Callable, Iterator

from .errors import FlyError

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

_STOP = object()


class InterruptCoordinator(threading.Thread):
    """Issue at most one abort request, on the first interrupt received.

    Signal handlers only enqueue the signal number; the abort runs on this
    thread. The coordinator never ends the invocation itself: the caller keeps
    waiting for the event stream to report a terminal status.
    """

    def __init__(
        self,
        abort: Callable[[], None],
        *,
        log: Callable[[str], None] | None = None,
        warn: Callable[[str], None] | None = None,
    ) -> None:
        super().__init__(name="interrupt-coordinator", daemon=True)
        self._abort = abort
        self._log = log
        self._warn = warn
        self._notifications: queue.Queue[Any] = queue.Queue()
        self._abort_requested = threading.Event()
        self.abort_error: FlyError | None = None

    @property
    def abort_requested(self) -> bool:
        return self._abort_requested.is_set()

    def notify(self, signum: int) -> None:
        """Record an interrupt. Safe to call from a signal handler."""
        self._notifications.put_nowait(signum)

    def stop(self) -> None:
        self._notifications.put_nowait(_STOP)

    @contextlib.contextmanager
    def listening(self) -> Iterator["InterruptCoordinator"]:
        """Route SIGINT and SIGTERM to `notify` while the block runs.

        Must be entered from the main thread; previous handlers are restored
        on exit.
        """

        def _handler(signum: int, _frame: Any) -> None:
            self.notify(signum)

        previous = {}
        try:
            for signum in INTERRUPT_SIGNALS:
                previous[signum] = signal.signal(signum, _handler)
            yield self
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

    def run(self) -> None:
        while True:
            item = self._notifications.get()
            if item is _STOP:
                return
            if self._abort_requested.is_set():
                self._trace("abort already requested; ignoring signal %s" % item)
                continue

            self._abort_requested.set()
            self._trace("received signal %s; aborting build" % item)
            try:
                self._abort()
            except FlyError as exc:
                self.abort_error = exc
                if self._warn is not None:
                    self._warn("failed to abort build: %s" % exc)

    def _trace(self, message: str) -> None:
        if self._log is not None:
            self._log(message)
