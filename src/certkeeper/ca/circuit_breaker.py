"""Circuit breaker for authority calls.

Wraps a :class:`CertificateAuthority` so that an authority which keeps
failing with transient errors is not hammered on every renewal tick.
Implements the standard closed/open/half-open state machine.

States:
    **closed**: requests pass through normally.  Unreachable failures
    are counted.
    **open**: requests fail immediately with ``AuthorityUnreachable``.
    **half-open**: one probe request is allowed through; success resets
    to closed, failure reopens.

Usage::

    from certkeeper.ca.circuit_breaker import CircuitBreakerAuthority

    protected = CircuitBreakerAuthority(real_authority, settings)
    cert = protected.create_certificate(["example.com"], cancel)
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from certkeeper.ca.base import CertificateAuthority
from certkeeper.core.errors import AuthorityError, AuthorityUnreachable, OperationCancelled

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from certkeeper.config.settings import AuthoritySettings
    from certkeeper.models.account import Account
    from certkeeper.models.certificate import ManagedCertificate

log = logging.getLogger(__name__)

_T = TypeVar("_T")


class _State(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerAuthority(CertificateAuthority):
    """Transparent circuit breaker wrapper around a real authority client.

    Parameters
    ----------
    authority:
        The real authority client to protect.
    settings:
        Authority configuration (passed to the base class).
    failure_threshold:
        Number of consecutive unreachable failures before opening.
    recovery_timeout:
        Seconds to wait in the open state before allowing a probe.
    half_open_max_calls:
        Maximum concurrent probe calls in half-open state.

    """

    def __init__(
        self,
        authority: CertificateAuthority,
        settings: AuthoritySettings,
        failure_threshold: int = 5,
        recovery_timeout: float = 300.0,
        half_open_max_calls: int = 1,
    ) -> None:
        super().__init__(settings)
        self._authority = authority
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max_calls = half_open_max_calls

        self._lock = threading.Lock()
        self._state = _State.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0
        self._half_open_calls = 0

    @property
    def state(self) -> str:
        """Current circuit state as a string."""
        with self._lock:
            return self._state.value

    @property
    def wrapped(self) -> CertificateAuthority:
        return self._authority

    def get_or_create_account(self, cancel: threading.Event) -> Account:
        return self._call(lambda: self._authority.get_or_create_account(cancel))

    def create_certificate(
        self,
        domains: Sequence[str],
        cancel: threading.Event,
    ) -> ManagedCertificate:
        return self._call(lambda: self._authority.create_certificate(domains, cancel))

    def startup_check(self) -> None:
        self._authority.startup_check()

    def _call(self, fn: Callable[[], _T]) -> _T:
        self._check_state()
        try:
            result = fn()
        except OperationCancelled:
            self._release_probe()
            raise
        except AuthorityError as exc:
            self._on_failure(exc)
            raise
        except Exception as exc:
            self._on_failure(exc)
            raise AuthorityUnreachable(str(exc)) from exc
        self._on_success()
        return result

    def _check_state(self) -> None:
        """Raise immediately if the circuit is open (fail-fast)."""
        with self._lock:
            if self._state == _State.CLOSED:
                return

            if self._state == _State.OPEN:
                elapsed = time.monotonic() - self._last_failure_time
                if elapsed >= self._recovery_timeout:
                    self._state = _State.HALF_OPEN
                    self._half_open_calls = 0
                    log.info(
                        "Authority circuit breaker: open -> half_open "
                        "(recovery timeout %.1fs elapsed)",
                        elapsed,
                    )
                else:
                    msg = (
                        "Authority circuit breaker is open; "
                        f"failing fast (retry in {self._recovery_timeout - elapsed:.0f}s)"
                    )
                    raise AuthorityUnreachable(msg)

            if self._state == _State.HALF_OPEN:
                if self._half_open_calls >= self._half_open_max_calls:
                    msg = (
                        "Authority circuit breaker is half-open; "
                        "probe in progress, rejecting additional calls"
                    )
                    raise AuthorityUnreachable(msg)
                self._half_open_calls += 1

    def _release_probe(self) -> None:
        with self._lock:
            if self._state == _State.HALF_OPEN and self._half_open_calls:
                self._half_open_calls -= 1

    def _on_success(self) -> None:
        with self._lock:
            if self._state == _State.HALF_OPEN:
                log.info("Authority circuit breaker: half_open -> closed (probe succeeded)")
            self._state = _State.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0

    def _on_failure(self, exc: Exception) -> None:
        with self._lock:
            if self._state == _State.HALF_OPEN:
                self._state = _State.OPEN
                self._last_failure_time = time.monotonic()
                self._half_open_calls = 0
                log.warning(
                    "Authority circuit breaker: half_open -> open (probe failed: %s)",
                    exc,
                )
                return

            # Only unreachable (retryable) errors count toward the threshold
            if isinstance(exc, AuthorityError) and not exc.retryable:
                return

            self._failure_count += 1
            if self._failure_count >= self._failure_threshold:
                self._state = _State.OPEN
                self._last_failure_time = time.monotonic()
                log.warning(
                    "Authority circuit breaker: closed -> open (threshold %d reached: %s)",
                    self._failure_threshold,
                    exc,
                )
