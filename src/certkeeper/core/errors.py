"""Error taxonomy shared by the authority, repository and lifecycle layers.

Authority failures mirror a structured ``detail`` / ``retryable`` pair so
callers can distinguish a transient outage from a refusal.  Repository
failures are never raised one at a time: the lifecycle manager collects
them and raises a single :class:`IssuanceAggregateFailure` once every
repository has been attempted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from certkeeper.models.certificate import ManagedCertificate


class CertkeeperError(Exception):
    """Base class for every error raised by certkeeper."""


# ---------------------------------------------------------------------------
# Feature-disabling conditions (logged, never propagated from the worker)
# ---------------------------------------------------------------------------


class HostUnsupported(CertkeeperError):
    """The hosting transport cannot bind certificates dynamically."""


class NotConfigured(CertkeeperError):
    """No domain names (other than ``localhost``) were configured."""


# ---------------------------------------------------------------------------
# Authority
# ---------------------------------------------------------------------------


class AuthorityError(CertkeeperError):
    """Raised by certificate authority clients.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and a later attempt may succeed.

    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class AuthorityUnreachable(AuthorityError):
    """The authority could not be contacted (network, timeout, 5xx)."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, retryable=True)


class AuthorityRejected(AuthorityError):
    """The authority refused the request (bad domain, terms, rate limit)."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, retryable=False)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class RepositorySaveFailed(CertkeeperError):
    """A single repository failed to persist a certificate."""

    def __init__(self, repository: str, cause: BaseException) -> None:
        self.repository = repository
        self.cause = cause
        super().__init__(f"Repository '{repository}' failed to save certificate: {cause}")


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


class IssuanceAggregateFailure(CertkeeperError):
    """One issuance attempt failed for one or more reasons.

    Attributes
    ----------
    errors:
        The underlying failures, in the order they were observed.
    certificate:
        The certificate that was issued and made selectable, when the
        failure happened during persistence.  ``None`` when the authority
        itself failed.

    """

    def __init__(
        self,
        message: str,
        errors: Iterable[BaseException],
        certificate: ManagedCertificate | None = None,
    ) -> None:
        self.errors: tuple[BaseException, ...] = tuple(errors)
        self.certificate = certificate
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{message}: {details}" if details else message)


class OperationCancelled(CertkeeperError):
    """A cancellable operation observed the cancellation signal."""
