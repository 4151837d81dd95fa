"""Process shutdown and cancellation.

:class:`ShutdownCoordinator` owns the single cancellation event that the
lifecycle manager, the authority client and the repository fan-out all
observe.  Foreground work (the ``issue`` command, a running issuance)
registers itself with :meth:`ShutdownCoordinator.track` so shutdown can
let it reach a consistent point before the process exits.

Usage::

    from certkeeper.app.shutdown import ShutdownCoordinator

    shutdown = ShutdownCoordinator(graceful_timeout=30)
    shutdown.register_signals()
    manager.start(shutdown.cancel_event)

    with shutdown.track("issue"):
        manager.ensure_issued(shutdown.cancel_event)

    shutdown.initiate()  # sets the event, drains tracked work
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections import Counter
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import FrameType

log = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Cancellation event plus a registry of running operations.

    Parameters
    ----------
    graceful_timeout:
        Seconds :meth:`initiate` waits for tracked operations to finish
        after the cancellation event is set.

    """

    def __init__(self, graceful_timeout: float = 30) -> None:
        self._graceful_timeout = graceful_timeout
        self._cancel = threading.Event()
        self._running: Counter[str] = Counter()
        self._cond = threading.Condition()

    @property
    def cancel_event(self) -> threading.Event:
        """The cancellation signal; set once shutdown begins."""
        return self._cancel

    @property
    def is_shutting_down(self) -> bool:
        return self._cancel.is_set()

    @property
    def in_flight_count(self) -> int:
        with self._cond:
            return sum(self._running.values())

    @contextmanager
    def track(self, name: str) -> Iterator[None]:
        """Register *name* as running for the duration of the block.

        Work started after shutdown began is still tracked so it can
        finish cleanly; it is expected to notice the cancelled event.
        """
        if self._cancel.is_set():
            log.warning("'%s' started after shutdown was requested", name)
        with self._cond:
            self._running[name] += 1
        try:
            yield
        finally:
            with self._cond:
                self._running[name] -= 1
                if self._running[name] <= 0:
                    del self._running[name]
                if not self._running:
                    self._cond.notify_all()

    def initiate(self) -> None:
        """Set the cancellation event and drain tracked operations.

        Returns once nothing is tracked or ``graceful_timeout`` has
        elapsed.  Calling it again is a no-op.
        """
        if self._cancel.is_set():
            return
        self._cancel.set()
        log.info("Shutdown requested; cancelling background work")

        leftover = self._drain(self._graceful_timeout)
        if leftover:
            log.warning(
                "Gave up waiting after %.0fs; still running: %s",
                self._graceful_timeout,
                ", ".join(sorted(leftover)),
            )
        else:
            log.info("No operations left running")

    def _drain(self, timeout: float) -> list[str]:
        """Wait up to *timeout* seconds; return the names still running."""
        deadline = time.monotonic() + timeout
        with self._cond:
            while self._running:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(timeout=remaining)
            return list(self._running)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown begins; returns True if it has."""
        return self._cancel.wait(timeout=timeout)

    # -- signals -------------------------------------------------------------

    def register_signals(self) -> None:
        """Route SIGTERM and SIGINT to :meth:`initiate`.

        Only possible on the main thread; elsewhere the call is logged
        and ignored.
        """
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                signal.signal(signum, self._signal_handler)
            except (ValueError, OSError) as exc:
                log.debug("Signal handler for %s not installed: %s", signum, exc)

    def _signal_handler(self, signum: int, frame: FrameType | None) -> None:  # noqa: ARG002
        log.info("%s received", signal.Signals(signum).name)
        # initiate() blocks while draining; keep the handler itself short.
        threading.Thread(target=self.initiate, name="certkeeper-shutdown", daemon=True).start()
