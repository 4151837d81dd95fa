"""SNI certificate binding for :mod:`ssl` servers.

:class:`SniCertificateBinder` produces a server :class:`ssl.SSLContext`
whose ``sni_callback`` asks the :class:`CertificateSelector` which
certificate to present and switches the handshake onto a per-certificate
context.  Contexts are cached by fingerprint in a small LRU, so a renewal
makes the next handshake build (once) and use a new one while the
superseded context ages out.

Usage::

    binder = SniCertificateBinder(container.selector, container.coordinator)
    server_socket = binder.server_context().wrap_socket(sock, server_side=True)
"""

from __future__ import annotations

import contextlib
import logging
import os
import ssl
import tempfile
import threading
from collections import OrderedDict
from typing import TYPE_CHECKING

from certkeeper.challenge.tls_alpn import ACME_TLS_ALPN

if TYPE_CHECKING:
    from certkeeper.challenge.coordinator import ChallengeCoordinator
    from certkeeper.models.certificate import ManagedCertificate
    from certkeeper.services.selector import CertificateSelector

log = logging.getLogger(__name__)


class SniCertificateBinder:
    """Chooses the server certificate per TLS handshake.

    Parameters
    ----------
    selector:
        Source of the certificate for each requested server name.
    coordinator:
        Optional challenge coordinator; a pending TLS-ALPN-01 response
        for the requested name takes precedence over the selector.
    alpn_protocols:
        ALPN protocols offered on ordinary connections.
    max_contexts:
        Number of per-certificate contexts kept; the least recently
        used one is dropped beyond that.

    """

    def __init__(
        self,
        selector: CertificateSelector,
        coordinator: ChallengeCoordinator | None = None,
        alpn_protocols: tuple[str, ...] = ("h2", "http/1.1"),
        max_contexts: int = 8,
    ) -> None:
        self._selector = selector
        self._coordinator = coordinator
        self._alpn_protocols = alpn_protocols
        self._contexts: OrderedDict[str, ssl.SSLContext] = OrderedDict()
        self._max_contexts = max(1, max_contexts)
        self._lock = threading.Lock()

    def server_context(self) -> ssl.SSLContext:
        """Base server context to wrap listening sockets with."""
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        ctx.set_alpn_protocols(list(self._alpn_protocols))
        ctx.sni_callback = self._on_sni
        return ctx

    def _on_sni(
        self,
        sslobj: ssl.SSLObject | ssl.SSLSocket,
        server_name: str | None,
        _ctx: ssl.SSLContext,
    ) -> int | None:
        challenge = None
        if self._coordinator is not None and server_name:
            challenge = self._coordinator.tls_alpn_certificate(server_name)

        if challenge is not None:
            sslobj.context = self._context_for(challenge, alpn=(ACME_TLS_ALPN,))
            return None

        cert = self._selector.select(sslobj, server_name)
        if cert is None:
            log.debug("No certificate for server name %r; rejecting handshake", server_name)
            return ssl.ALERT_DESCRIPTION_HANDSHAKE_FAILURE
        try:
            sslobj.context = self._context_for(cert, alpn=self._alpn_protocols)
        except (ssl.SSLError, OSError, ValueError):
            log.exception("Could not load certificate %r for %r", cert, server_name)
            return ssl.ALERT_DESCRIPTION_INTERNAL_ERROR
        return None

    def _context_for(self, cert: ManagedCertificate, alpn: tuple[str, ...]) -> ssl.SSLContext:
        key = f"{cert.fingerprint}:{','.join(alpn)}"
        with self._lock:
            ctx = self._contexts.get(key)
            if ctx is not None:
                self._contexts.move_to_end(key)
                return ctx

        ctx = _build_context(cert, alpn)
        with self._lock:
            self._contexts[key] = ctx
            self._contexts.move_to_end(key)
            while len(self._contexts) > self._max_contexts:
                evicted, _ = self._contexts.popitem(last=False)
                log.debug("Dropped TLS context %s", evicted[:16])
        return ctx


def _build_context(cert: ManagedCertificate, alpn: tuple[str, ...]) -> ssl.SSLContext:
    """Load *cert* into a fresh server context.

    :meth:`ssl.SSLContext.load_cert_chain` only accepts file paths, so
    the PEM material is written to a private temp file for the duration
    of the call.
    """
    key_pem = cert.private_key_pem()
    if key_pem is None:
        msg = f"Certificate {cert.fingerprint[:16]} has no private key"
        raise ValueError(msg)

    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.set_alpn_protocols(list(alpn))

    fd, path = tempfile.mkstemp(suffix=".pem")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(cert.cert_chain_pem())
            fh.write(key_pem)
        ctx.load_cert_chain(path)
    finally:
        with contextlib.suppress(OSError):
            os.unlink(path)
    return ctx
