"""TLS-ALPN-01 challenge responses (RFC 8737).

ACMEOW generates the self-signed ``acmeIdentifier`` certificate and
hands it over as PEM; this module turns it into a
:class:`~certkeeper.challenge.coordinator.ChallengeResponse` the SNI
binder can present on the ``acme-tls/1`` ALPN protocol.

The handler callbacks only see the domain, never the challenge token,
so TLS-ALPN-01 responses are keyed by domain in the coordinator.
"""

from __future__ import annotations

from cryptography.x509.oid import ObjectIdentifier

from certkeeper.challenge.coordinator import ChallengeResponse
from certkeeper.core.domains import normalize_domain
from certkeeper.core.types import ChallengeType
from certkeeper.models.certificate import ManagedCertificate

# OID for the acmeIdentifier extension (RFC 8737 §3)
ACME_IDENTIFIER_OID = ObjectIdentifier("1.3.6.1.5.5.7.1.31")

# ALPN protocol identifier
ACME_TLS_ALPN = "acme-tls/1"


def tls_alpn_token(domain: str) -> str:
    """Coordinator key for the TLS-ALPN-01 response of *domain*."""
    return f"{ACME_TLS_ALPN}:{normalize_domain(domain)}"


def tls_alpn_response(domain: str, cert_pem: bytes, key_pem: bytes) -> ChallengeResponse:
    """Wrap the validation certificate ACMEOW generated for *domain*."""
    return ChallengeResponse(
        domain=normalize_domain(domain),
        challenge_type=ChallengeType.TLS_ALPN_01,
        token=tls_alpn_token(domain),
        key_authorization="",
        certificate=ManagedCertificate.from_pem(cert_pem, key_pem),
    )
