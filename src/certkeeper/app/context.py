"""Composition root for certkeeper.

:func:`build_container` wires concrete instances of every collaborator
together from the typed settings.  The resulting :class:`Container` is
passed explicitly to whoever needs it; there is no global accessor.

Usage::

    from certkeeper.app.context import build_container

    container = build_container(cfg.settings)
    container.manager.start(container.shutdown.cancel_event)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from certkeeper.app.host import build_host_info
from certkeeper.app.shutdown import ShutdownCoordinator
from certkeeper.ca.registry import load_authority
from certkeeper.challenge.coordinator import ChallengeCoordinator
from certkeeper.core.clock import SystemClock
from certkeeper.metrics.collector import MetricsCollector
from certkeeper.repositories.developer import read_local_certificate
from certkeeper.repositories.registry import load_repositories
from certkeeper.services.lifecycle import CertificateLifecycleManager
from certkeeper.services.persistence import RepositoryFanout
from certkeeper.services.selector import CertificateSelector
from certkeeper.services.startup_loader import StartupCertificateLoader

if TYPE_CHECKING:
    from certkeeper.app.host import HostInfo
    from certkeeper.ca.base import CertificateAuthority
    from certkeeper.config.settings import CertkeeperSettings
    from certkeeper.core.clock import Clock
    from certkeeper.repositories.base import CertificateRepository, CertificateSource

log = logging.getLogger(__name__)


class Container:
    """Every wired collaborator, built once at startup."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: CertkeeperSettings,
        clock: Clock,
        selector: CertificateSelector,
        coordinator: ChallengeCoordinator,
        authority: CertificateAuthority,
        repositories: list[CertificateRepository],
        sources: list[CertificateSource],
        fanout: RepositoryFanout,
        startup_loader: StartupCertificateLoader,
        host: HostInfo,
        metrics: MetricsCollector,
        shutdown: ShutdownCoordinator,
        manager: CertificateLifecycleManager,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.selector = selector
        self.coordinator = coordinator
        self.authority = authority
        self.repositories = repositories
        self.sources = sources
        self.fanout = fanout
        self.startup_loader = startup_loader
        self.host = host
        self.metrics = metrics
        self.shutdown = shutdown
        self.manager = manager

    def close(self) -> None:
        """Stop the manager and release the save pool."""
        self.shutdown.initiate()
        self.manager.stop()
        self.fanout.shutdown(wait=False)


def build_container(
    settings: CertkeeperSettings,
    *,
    clock: Clock | None = None,
    authority: CertificateAuthority | None = None,
    shutdown: ShutdownCoordinator | None = None,
) -> Container:
    """Build the object graph described by *settings*.

    Parameters
    ----------
    settings:
        Fully-typed settings tree.
    clock:
        Time source; defaults to :class:`SystemClock`.
    authority:
        Pre-built authority client.  When omitted the configured one is
        loaded and its :meth:`startup_check` is run.
    shutdown:
        Shutdown coordinator owning the cancellation event.

    Raises
    ------
    AuthorityError
        If the configured authority client cannot be loaded.
    ValueError
        If a repository entry is invalid.
    OSError
        If the fallback certificate cannot be read.

    """
    clock = clock or SystemClock()
    shutdown = shutdown or ShutdownCoordinator()
    metrics = MetricsCollector()

    fallback = read_local_certificate(settings.fallback_certificate)
    if fallback is not None:
        log.info("Fallback certificate: %r", fallback)
    selector = CertificateSelector(fallback=fallback)
    coordinator = ChallengeCoordinator()

    if authority is None:
        authority = load_authority(settings, coordinator)
        authority.startup_check()

    repositories, sources = load_repositories(settings)
    fanout = RepositoryFanout(
        repositories,
        max_workers=settings.repositories.max_workers,
        metrics=metrics,
    )
    startup_loader = StartupCertificateLoader(sources, selector)
    host = build_host_info(settings.host)

    manager = CertificateLifecycleManager(
        domains=settings.domains,
        selector=selector,
        authority=authority,
        fanout=fanout,
        clock=clock,
        host=host,
        renewal=settings.renewal,
        startup_loader=startup_loader,
        metrics=metrics,
    )

    return Container(
        settings=settings,
        clock=clock,
        selector=selector,
        coordinator=coordinator,
        authority=authority,
        repositories=repositories,
        sources=sources,
        fanout=fanout,
        startup_loader=startup_loader,
        host=host,
        metrics=metrics,
        shutdown=shutdown,
        manager=manager,
    )
