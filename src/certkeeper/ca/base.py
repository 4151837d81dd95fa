"""Abstract base class for certificate authority clients.

All authority clients (built-in and custom) must inherit from
:class:`CertificateAuthority` and implement
:meth:`~CertificateAuthority.get_or_create_account` and
:meth:`~CertificateAuthority.create_certificate`.

Both operations receive the process cancellation event.  An
implementation that blocks for long periods should check it and raise
:class:`~certkeeper.core.errors.OperationCancelled` once it is set.
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import threading
    from collections.abc import Sequence

    from certkeeper.config.settings import AuthoritySettings
    from certkeeper.models.account import Account
    from certkeeper.models.certificate import ManagedCertificate

log = logging.getLogger(__name__)


class CertificateAuthority(abc.ABC):
    """Base class for all certificate authority clients.

    Parameters
    ----------
    settings:
        The ``authority`` configuration section.

    """

    def __init__(self, settings: AuthoritySettings) -> None:
        self._settings = settings

    @abc.abstractmethod
    def get_or_create_account(self, cancel: threading.Event) -> Account:
        """Return the registered account, registering one if necessary.

        Idempotent: repeated calls return the same account.

        Raises
        ------
        AuthorityUnreachable
            The authority could not be contacted.
        AuthorityRejected
            The authority refused registration.

        """

    @abc.abstractmethod
    def create_certificate(
        self,
        domains: Sequence[str],
        cancel: threading.Event,
    ) -> ManagedCertificate:
        """Obtain one certificate whose names cover every entry in *domains*.

        Raises
        ------
        AuthorityUnreachable
            The authority could not be contacted.
        AuthorityRejected
            The authority refused the request.

        """

    def startup_check(self) -> None:
        """Optional startup health check.

        Called during container construction to verify the client is
        correctly configured.  Default implementation is a no-op.

        Raises
        ------
        AuthorityError
            If the client is misconfigured.

        """
