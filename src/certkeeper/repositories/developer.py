"""Locally provisioned certificates.

:func:`read_local_certificate` reads a certificate configured by path
(PEM chain plus key, or a PKCS#12 bundle).  It backs both the fallback
certificate and :class:`DeveloperCertificateSource`, which contributes
a development certificate to the selector only when running in the
``development`` environment.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from certkeeper.core.types import Environment
from certkeeper.models.certificate import ManagedCertificate
from certkeeper.repositories.base import CertificateSource

if TYPE_CHECKING:
    import threading

    from certkeeper.config.settings import LocalCertificateSettings

log = logging.getLogger(__name__)

_PKCS12_SUFFIXES = frozenset({".pfx", ".p12"})


def read_local_certificate(settings: LocalCertificateSettings) -> ManagedCertificate | None:
    """Read the certificate described by *settings*, or ``None`` if no path is set.

    Raises
    ------
    OSError
        If a configured file cannot be read.
    ValueError
        If the file contents cannot be parsed.

    """
    if not settings.path:
        return None
    path = Path(settings.path).expanduser()
    if path.suffix.lower() in _PKCS12_SUFFIXES:
        return ManagedCertificate.from_pkcs12(path.read_bytes(), settings.password)

    cert_pem = path.read_bytes()
    key_pem = Path(settings.key_path).expanduser().read_bytes() if settings.key_path else None
    password = settings.password.encode() if settings.password else None
    return ManagedCertificate.from_pem(cert_pem, key_pem, password=password)


class DeveloperCertificateSource(CertificateSource):
    """Supplies a local development certificate in development environments.

    Parameters
    ----------
    settings:
        The ``developer_certificate`` configuration section.
    environment:
        The configured environment name.

    """

    def __init__(
        self,
        settings: LocalCertificateSettings,
        environment: str,
        *,
        name: str | None = "developer",
    ) -> None:
        super().__init__(None, name=name)
        self._settings = settings
        self._environment = environment

    def load(self, cancel: threading.Event) -> list[ManagedCertificate]:  # noqa: ARG002
        if self._environment != Environment.DEVELOPMENT:
            return []
        if not self._settings.path:
            log.debug("No developer certificate configured")
            return []
        cert = read_local_certificate(self._settings)
        if cert is None:
            return []
        log.info("Loaded developer certificate for %s", ", ".join(cert.domain_names))
        return [cert]
