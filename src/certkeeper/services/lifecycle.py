"""Certificate lifecycle manager.

Background worker that makes sure every configured domain has a
current certificate in the selector and that every repository receives
a copy.  Runs as a daemon thread; the state machine is::

    INIT -> CHECK_HOST_SUPPORT -> CHECK_DOMAINS_CONFIGURED
         -> ISSUE_IF_MISSING -> RENEWAL_LOOP (until cancelled)

with a transition to STOPPED when the host cannot bind certificates
dynamically, when no domains are configured, when no renewal policy is
set, or when the cancellation event is set.

The whole domain set is always issued as a single multi-domain
certificate.  When any one domain is due, the entire set is reissued.

Usage::

    manager = CertificateLifecycleManager(...)
    manager.start()
    ...
    manager.stop()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from certkeeper.core.domains import domains_configured
from certkeeper.core.errors import (
    HostUnsupported,
    IssuanceAggregateFailure,
    NotConfigured,
    OperationCancelled,
)
from certkeeper.core.types import LifecycleState, StopReason
from certkeeper.logging.setup import issuance_context

if TYPE_CHECKING:
    from collections.abc import Sequence

    from certkeeper.app.host import HostInfo
    from certkeeper.ca.base import CertificateAuthority
    from certkeeper.config.settings import RenewalSettings
    from certkeeper.core.clock import Clock
    from certkeeper.metrics.collector import MetricsCollector
    from certkeeper.models.certificate import ManagedCertificate
    from certkeeper.services.persistence import RepositoryFanout
    from certkeeper.services.selector import CertificateSelector
    from certkeeper.services.startup_loader import StartupCertificateLoader

log = logging.getLogger(__name__)


class CertificateLifecycleManager:
    """Drives initial issuance and periodic renewal.

    Parameters
    ----------
    domains:
        The normalized Domain Set.
    selector:
        Where issued certificates become live.
    authority:
        Certificate authority client.
    fanout:
        Concurrent repository persistence.
    clock:
        Time source for expiry comparisons.
    host:
        Hosting transport description.
    renewal:
        Renewal policy; when either value is unset the manager stops
        after the initial issuance.
    startup_loader:
        Optional loader run once before the first issuance check.
    metrics:
        Optional collector.

    """

    def __init__(
        self,
        *,
        domains: Sequence[str],
        selector: CertificateSelector,
        authority: CertificateAuthority,
        fanout: RepositoryFanout,
        clock: Clock,
        host: HostInfo,
        renewal: RenewalSettings,
        startup_loader: StartupCertificateLoader | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._domains = tuple(domains)
        self._selector = selector
        self._authority = authority
        self._fanout = fanout
        self._clock = clock
        self._host = host
        self._renewal = renewal
        self._startup_loader = startup_loader
        self._metrics = metrics

        self._state = LifecycleState.INIT
        self._stop_reason: StopReason | None = None
        self._last_error: BaseException | None = None
        self._consecutive_failures = 0

        self._stop_event = threading.Event()
        self._cancel: threading.Event = self._stop_event
        self._thread: threading.Thread | None = None

    # -- observable state ----------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def stop_reason(self) -> StopReason | None:
        return self._stop_reason

    @property
    def last_error(self) -> BaseException | None:
        """The most recent issuance failure, cleared by a later success."""
        return self._last_error

    @property
    def domains(self) -> tuple[str, ...]:
        return self._domains

    # -- thread management ---------------------------------------------------

    def start(self, cancel: threading.Event | None = None) -> None:
        """Start the background worker thread.

        Parameters
        ----------
        cancel:
            Cancellation event shared with the host.  When omitted the
            manager's own event is used and :meth:`stop` sets it.

        """
        if self._thread is not None and self._thread.is_alive():
            return
        self._cancel = cancel if cancel is not None else self._stop_event
        self._thread = threading.Thread(
            target=self.run,
            args=(self._cancel,),
            name="certkeeper-lifecycle",
            daemon=True,
        )
        self._thread.start()
        log.info("Lifecycle manager started for %s", ", ".join(self._domains) or "(no domains)")

    def stop(self, timeout: float = 30.0) -> None:
        """Signal the worker to stop and wait for it."""
        self._cancel.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            log.info("Lifecycle manager stopped")

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    # -- state machine -------------------------------------------------------

    def run(self, cancel: threading.Event) -> None:
        """Run the state machine to completion on the calling thread.

        Never raises: every failure is logged and recorded.
        """
        try:
            self._run(cancel)
        except OperationCancelled:
            self._stop(StopReason.CANCELLED)
        except Exception as exc:
            # Last line of defence; individual steps already guard themselves.
            log.exception("Lifecycle manager terminated unexpectedly")
            self._last_error = exc
            self._stop(StopReason.CANCELLED if cancel.is_set() else None)

    def _run(self, cancel: threading.Event) -> None:
        self._transition(LifecycleState.INIT)
        if self._startup_loader is not None:
            self._startup_loader.load(cancel)
        if cancel.is_set():
            self._stop(StopReason.CANCELLED)
            return

        self._transition(LifecycleState.CHECK_HOST_SUPPORT)
        if not self._host.supports_dynamic_binding:
            log.warning(
                "%s",
                HostUnsupported(
                    f"Host '{self._host.name}' does not support dynamic certificate "
                    "binding; automatic certificates are disabled",
                ),
            )
            self._stop(StopReason.HOST_UNSUPPORTED)
            return

        self._transition(LifecycleState.CHECK_DOMAINS_CONFIGURED)
        if not domains_configured(self._domains):
            log.info(
                "%s",
                NotConfigured(
                    "No domain names other than 'localhost' are configured; "
                    "automatic certificates are disabled",
                ),
            )
            self._stop(StopReason.NOT_CONFIGURED)
            return

        self._transition(LifecycleState.ISSUE_IF_MISSING)
        try:
            self.ensure_issued(cancel)
        except IssuanceAggregateFailure as exc:
            log.error("Initial certificate issuance failed: %s", exc)  # noqa: TRY400

        if not self._renewal.enabled:
            log.info("No renewal policy configured; lifecycle manager will not renew")
            self._stop(StopReason.RENEWAL_DISABLED)
            return

        self._transition(LifecycleState.RENEWAL_LOOP)
        period = self._renewal.check_period_seconds
        log.info(
            "Renewal loop running (check every %ds, renew %d day(s) before expiry)",
            period,
            self._renewal.renew_days_in_advance,
        )
        while not cancel.wait(timeout=period):
            try:
                self.renewal_tick(cancel)
            except OperationCancelled:
                raise
            except Exception:
                log.exception("Renewal check failed; will retry next period")
        self._stop(StopReason.CANCELLED)

    # -- operations ----------------------------------------------------------

    def ensure_issued(self, cancel: threading.Event) -> ManagedCertificate | None:
        """Issue a certificate for the Domain Set unless every domain already has one.

        Returns
        -------
        ManagedCertificate or None
            The newly issued certificate, or ``None`` when issuance was
            skipped.

        Raises
        ------
        IssuanceAggregateFailure
            The authority failed, or one or more repositories failed to
            save.  In the latter case the certificate is already live in
            the selector and is available as ``exc.certificate``.
        OperationCancelled
            *cancel* was set before the certificate became live.

        """
        missing = [d for d in self._domains if not self._selector.has_cert_for_domain(d)]
        if not missing:
            log.info("Certificates already present for all %d domain(s)", len(self._domains))
            return None
        log.info("No certificate for %s; requesting one", ", ".join(missing))
        return self._issue(cancel, reason="missing")

    def renewal_tick(self, cancel: threading.Event) -> bool:
        """Check every domain once and reissue the whole set if any is due.

        Returns True when a reissuance was attempted.  Issuance failures
        are logged, not raised.
        """
        if self._metrics:
            self._metrics.increment("renewal_ticks_total")
        now = self._clock.now()
        lead_time = self._renewal.lead_time
        for domain in self._domains:
            cert = self._selector.try_get(domain)
            if cert is None:
                log.info("No certificate for %s; reissuing domain set", domain)
            elif lead_time is not None and cert.is_due_for_renewal(now, lead_time):
                log.info(
                    "Certificate for %s expires %s; reissuing domain set",
                    domain,
                    cert.not_after.isoformat(),
                )
            else:
                continue

            try:
                self._issue(cancel, reason="renewal")
            except IssuanceAggregateFailure as exc:
                log.error("Certificate renewal failed: %s", exc)  # noqa: TRY400
            return True
        log.debug("No certificates due for renewal")
        return False

    def _issue(self, cancel: threading.Event, *, reason: str) -> ManagedCertificate:
        with issuance_context(self._domains):
            try:
                cert = self._acquire(cancel)
            except OperationCancelled:
                raise
            except Exception as exc:
                self._record_failure(exc, reason)
                msg = "Certificate issuance failed"
                raise IssuanceAggregateFailure(msg, [exc]) from exc

            if cancel.is_set():
                msg = "Issuance cancelled before the certificate was made live"
                raise OperationCancelled(msg)

            # Selector first: a repository failure must never un-select a live cert.
            self._selector.add(cert)
            self._record_expiry(cert)

            errors = self._fanout.save_all(cert, cancel)
            if errors:
                failure = IssuanceAggregateFailure(
                    f"Certificate {cert.fingerprint[:16]} is live but "
                    f"{len(errors)} repository save(s) failed",
                    errors,
                    certificate=cert,
                )
                self._record_failure(failure, reason)
                raise failure

            self._last_error = None
            self._consecutive_failures = 0
            if self._metrics:
                self._metrics.increment("issuances_total", labels={"reason": reason, "outcome": "success"})
            log.info(
                "Certificate issued for %s (expires %s)",
                ", ".join(self._domains),
                cert.not_after.isoformat(),
            )
            return cert

    def _acquire(self, cancel: threading.Event) -> ManagedCertificate:
        account = self._authority.get_or_create_account(cancel)
        log.info("Using account %s", account.id)
        return self._authority.create_certificate(self._domains, cancel)

    # -- helpers -------------------------------------------------------------

    def _transition(self, state: LifecycleState) -> None:
        log.debug("Lifecycle state: %s -> %s", self._state, state)
        self._state = state

    def _stop(self, reason: StopReason | None) -> None:
        self._stop_reason = reason
        self._transition(LifecycleState.STOPPED)

    def _record_failure(self, exc: BaseException, reason: str) -> None:
        self._last_error = exc
        self._consecutive_failures += 1
        if self._metrics:
            self._metrics.increment("issuances_total", labels={"reason": reason, "outcome": "failure"})
        log.debug("Consecutive issuance failures: %d", self._consecutive_failures)

    def _record_expiry(self, cert: ManagedCertificate) -> None:
        if not self._metrics:
            return
        for domain in self._domains:
            self._metrics.set_gauge(
                "certificate_not_after_timestamp_seconds",
                cert.not_after.timestamp(),
                labels={"domain": domain},
            )
