"""Certificate selector.

Maps a requested server name to the certificate that should be
presented for it.  Selection sits on the TLS handshake path, so it is
a plain dictionary lookup: readers take no lock, and writers only ever
add or replace single entries (each assignment is atomic on its own).
A multi-domain :meth:`CertificateSelector.add` is therefore a batch of
independent writes, and a concurrent reader may briefly see some names
pointing at the new certificate and others at the old one.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from certkeeper.core.domains import normalize_domain

if TYPE_CHECKING:
    from certkeeper.models.certificate import ManagedCertificate

log = logging.getLogger(__name__)


class CertificateSelector:
    """Case-insensitive index of domain name → active certificate.

    Parameters
    ----------
    fallback:
        Certificate returned by :meth:`select` for names with no entry.

    """

    def __init__(self, fallback: ManagedCertificate | None = None) -> None:
        self._certs: dict[str, ManagedCertificate] = {}
        self._fallback = fallback
        # Serialises writers only; readers never take it.
        self._write_lock = threading.Lock()

    @property
    def fallback(self) -> ManagedCertificate | None:
        return self._fallback

    def add(self, certificate: ManagedCertificate) -> None:
        """Register *certificate* under its subject name and every SAN DNS name.

        Existing entries for those names are replaced.  A certificate
        with no names registers nothing.
        """
        names = certificate.domain_names
        if not names:
            log.debug("Certificate %r has no domain names; not indexed", certificate)
            return
        with self._write_lock:
            for name in names:
                self._certs[normalize_domain(name)] = certificate
        log.info(
            "Selector updated: %s -> %s (expires %s)",
            ", ".join(names),
            certificate.fingerprint[:16],
            certificate.not_after.isoformat(),
        )

    def has_cert_for_domain(self, domain: str) -> bool:
        return normalize_domain(domain) in self._certs

    def try_get(self, domain: str) -> ManagedCertificate | None:
        return self._certs.get(normalize_domain(domain))

    def select(self, connection: Any, domain: str | None) -> ManagedCertificate | None:  # noqa: ARG002, ANN401
        """Certificate to present for *domain* on *connection*.

        Falls back to the fallback certificate, then ``None``.  Never
        blocks and never triggers issuance.
        """
        if domain:
            cert = self._certs.get(normalize_domain(domain))
            if cert is not None:
                return cert
        return self._fallback

    @property
    def supported_domains(self) -> tuple[str, ...]:
        """Every name currently indexed."""
        return tuple(self._certs)
