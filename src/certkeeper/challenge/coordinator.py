"""In-memory store of pending challenge responses.

The authority client deposits a response here while the certificate
authority validates a domain; the host's HTTP and TLS layers read from
it to answer the validation request.  Responses are removed once the
issuance attempt concludes, whether it succeeded or not.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from certkeeper.core.domains import normalize_domain
from certkeeper.core.types import ChallengeType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from certkeeper.models.certificate import ManagedCertificate

log = logging.getLogger(__name__)

HTTP01_PATH_PREFIX = "/.well-known/acme-challenge/"


@dataclass(frozen=True)
class ChallengeResponse:
    """A response the host must serve for one pending challenge.

    Attributes
    ----------
    domain:
        The domain under validation (normalized).
    challenge_type:
        ``http-01`` or ``tls-alpn-01``.
    token:
        Challenge token from the authority.
    key_authorization:
        ``token.thumbprint`` string; the HTTP-01 response body.  Empty
        for TLS-ALPN-01, where it is folded into the certificate.
    certificate:
        The self-signed ``acmeIdentifier`` certificate served for
        TLS-ALPN-01, ``None`` for HTTP-01.

    """

    domain: str
    challenge_type: ChallengeType
    token: str
    key_authorization: str
    certificate: ManagedCertificate | None = None


class ChallengeCoordinator:
    """Thread-safe registry of in-flight challenge responses."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_token: dict[str, ChallengeResponse] = {}
        self._tls_by_domain: dict[str, ChallengeResponse] = {}

    def add(self, response: ChallengeResponse) -> None:
        """Publish *response* so the host can answer the authority."""
        with self._lock:
            self._by_token[response.token] = response
            if response.challenge_type == ChallengeType.TLS_ALPN_01:
                self._tls_by_domain[normalize_domain(response.domain)] = response
        log.debug(
            "Challenge published: %s %s token=%s",
            response.challenge_type,
            response.domain,
            response.token,
        )

    def remove(self, token: str) -> None:
        """Withdraw the response for *token*.  Unknown tokens are ignored."""
        with self._lock:
            response = self._by_token.pop(token, None)
            if response is None:
                return
            key = normalize_domain(response.domain)
            if self._tls_by_domain.get(key) is response:
                del self._tls_by_domain[key]

    def clear_domains(self, domains: Iterable[str]) -> int:
        """Withdraw every response for *domains*; returns how many were removed."""
        keys = {normalize_domain(d) for d in domains}
        with self._lock:
            stale = [
                token
                for token, resp in self._by_token.items()
                if normalize_domain(resp.domain) in keys
            ]
            for token in stale:
                del self._by_token[token]
            for key in keys:
                self._tls_by_domain.pop(key, None)
        if stale:
            log.debug("Cleared %d pending challenge(s)", len(stale))
        return len(stale)

    # -- host read path ----------------------------------------------------

    def http_response(self, token: str) -> str | None:
        """Key authorization for a pending HTTP-01 *token*, else ``None``."""
        response = self._by_token.get(token)
        if response is None or response.challenge_type != ChallengeType.HTTP_01:
            return None
        return response.key_authorization

    def http_response_for_path(self, path: str) -> str | None:
        """Resolve a request path under ``/.well-known/acme-challenge/``."""
        if not path.startswith(HTTP01_PATH_PREFIX):
            return None
        token = path[len(HTTP01_PATH_PREFIX):]
        if not token or "/" in token:
            return None
        return self.http_response(token)

    def tls_alpn_certificate(self, domain: str) -> ManagedCertificate | None:
        """The ``acme-tls/1`` certificate for *domain*, if one is pending."""
        response = self._tls_by_domain.get(normalize_domain(domain))
        if response is None:
            return None
        return response.certificate

    @property
    def pending_domains(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted({r.domain for r in self._by_token.values()}))
