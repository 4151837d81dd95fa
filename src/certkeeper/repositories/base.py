"""Abstract base classes for certificate repositories and sources.

A :class:`CertificateRepository` persists newly issued certificates.
A :class:`CertificateSource` supplies previously persisted certificates
at startup.  A durable store usually implements both.

Usage::

    from certkeeper.repositories import CertificateRepository

    class VaultRepository(CertificateRepository):
        @classmethod
        def validate_config(cls, config: dict) -> None:
            if "mount" not in config:
                raise ValueError("mount is required")

        def save(self, certificate, cancel) -> None:
            vault.write(self.config["mount"], certificate.to_pkcs12())
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterable

    from certkeeper.models.certificate import ManagedCertificate


class _Configurable:
    """Shared ``config`` plumbing for repositories and sources.

    Parameters
    ----------
    config:
        Optional passthrough configuration from the entry's ``config``
        dict in the certkeeper config file.
    name:
        Label used in logs and :class:`RepositorySaveFailed`.

    """

    def __init__(self, config: dict | None = None, *, name: str | None = None) -> None:
        self.config = config or {}
        self._name = name

    @property
    def name(self) -> str:
        return self._name or type(self).__name__

    @classmethod
    def validate_config(cls, config: dict) -> None:
        """Validate store-specific configuration at load time.

        Override in subclasses to reject invalid config before the
        store is instantiated.  Raise :class:`ValueError` if *config*
        is not acceptable.

        The default implementation is a no-op.
        """


class CertificateRepository(_Configurable, abc.ABC):
    """A durable target for issued certificates."""

    @abc.abstractmethod
    def save(self, certificate: ManagedCertificate, cancel: threading.Event) -> None:
        """Persist *certificate*.

        Raising any exception marks this repository's save as failed;
        other repositories are unaffected.
        """


class CertificateSource(_Configurable, abc.ABC):
    """A supplier of previously persisted certificates."""

    @abc.abstractmethod
    def load(self, cancel: threading.Event) -> Iterable[ManagedCertificate]:
        """Return every certificate this source holds."""
