"""Concurrent fan-out of a certificate to every repository.

Each repository save runs on a shared
:class:`~concurrent.futures.ThreadPoolExecutor`.  One repository
failing, raising synchronously or hanging never prevents the others
from being attempted.  Failures are returned, not raised, so the caller
decides how to surface them.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

from certkeeper.core.errors import OperationCancelled, RepositorySaveFailed

if TYPE_CHECKING:
    from collections.abc import Sequence

    from certkeeper.metrics.collector import MetricsCollector
    from certkeeper.models.certificate import ManagedCertificate
    from certkeeper.repositories.base import CertificateRepository

log = logging.getLogger(__name__)

# How often a waiting fan-out re-checks the cancellation event.
_CANCEL_POLL_SECONDS = 0.5


class RepositoryFanout:
    """Saves certificates to a fixed set of repositories concurrently.

    Parameters
    ----------
    repositories:
        Persistence targets.
    max_workers:
        Thread pool size.
    metrics:
        Optional collector for save outcome counters.

    """

    def __init__(
        self,
        repositories: Sequence[CertificateRepository],
        max_workers: int = 4,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._repositories = tuple(repositories)
        self._max_workers = max_workers
        self._metrics = metrics
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    @property
    def repositories(self) -> tuple[CertificateRepository, ...]:
        return self._repositories

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="certkeeper-save",
                )
            return self._executor

    def save_all(
        self,
        certificate: ManagedCertificate,
        cancel: threading.Event,
    ) -> list[BaseException]:
        """Save *certificate* to every repository and wait for all of them.

        Returns
        -------
        list
            One :class:`RepositorySaveFailed` per failing repository, in
            repository order.  Empty when every save succeeded.

        Raises
        ------
        OperationCancelled
            If *cancel* is set while saves are still outstanding.

        """
        if not self._repositories:
            log.debug("No repositories registered; nothing to persist")
            return []

        executor = self._get_executor()
        futures: dict[Future, CertificateRepository] = {
            executor.submit(self._save_one, repo, certificate, cancel): repo
            for repo in self._repositories
        }

        pending = set(futures)
        while pending:
            if cancel.is_set():
                for fut in pending:
                    fut.cancel()
                msg = f"Repository fan-out cancelled with {len(pending)} save(s) outstanding"
                raise OperationCancelled(msg)
            _done, pending = wait(pending, timeout=_CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)

        errors: list[BaseException] = []
        for fut, repo in futures.items():
            exc = fut.exception()
            if exc is None:
                continue
            errors.append(exc if isinstance(exc, RepositorySaveFailed) else RepositorySaveFailed(repo.name, exc))
        return errors

    def _save_one(
        self,
        repo: CertificateRepository,
        certificate: ManagedCertificate,
        cancel: threading.Event,
    ) -> None:
        start = time.monotonic()
        try:
            repo.save(certificate, cancel)
        except Exception as exc:
            duration_ms = (time.monotonic() - start) * 1000
            log.exception(
                "Repository '%s' failed to save certificate %s (%.1fms)",
                repo.name,
                certificate.fingerprint[:16],
                duration_ms,
            )
            if self._metrics:
                self._metrics.increment("repository_save_failures_total", labels={"repository": repo.name})
            raise RepositorySaveFailed(repo.name, exc) from exc

        duration_ms = (time.monotonic() - start) * 1000
        log.debug("Repository '%s' saved certificate in %.1fms", repo.name, duration_ms)
        if self._metrics:
            self._metrics.increment("repository_saves_total", labels={"repository": repo.name})

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None
