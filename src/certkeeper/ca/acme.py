"""ACME authority client.

Obtains certificates from an ACME certificate authority (Let's Encrypt
by default) via ACMEOW.  Challenge responses are published to the
:class:`~certkeeper.challenge.ChallengeCoordinator` so the host can
answer the authority's validation requests, and are withdrawn when the
issuance attempt concludes.

The private key is generated locally and the order is finalised with a
CSR built from it, so key material never leaves the process.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from certkeeper.ca.base import CertificateAuthority
from certkeeper.challenge.coordinator import ChallengeResponse
from certkeeper.challenge.tls_alpn import tls_alpn_response, tls_alpn_token
from certkeeper.core.errors import (
    AuthorityError,
    AuthorityRejected,
    AuthorityUnreachable,
    OperationCancelled,
)
from certkeeper.core.types import ChallengeType
from certkeeper.models.account import Account
from certkeeper.models.certificate import ManagedCertificate

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
    )

    from certkeeper.challenge.coordinator import ChallengeCoordinator
    from certkeeper.config.settings import AuthoritySettings

log = logging.getLogger(__name__)

_EC_CURVES = {
    "ec256": ec.SECP256R1,
    "ec384": ec.SECP384R1,
}
_RSA_SIZES = {
    "rsa2048": 2048,
    "rsa3072": 3072,
    "rsa4096": 4096,
}


def generate_private_key(key_type: str) -> CertificateIssuerPrivateKeyTypes:
    """Generate a fresh certificate key for *key_type* (``ec256``, ``rsa2048``, ...)."""
    if key_type in _EC_CURVES:
        return ec.generate_private_key(_EC_CURVES[key_type]())
    if key_type in _RSA_SIZES:
        return rsa.generate_private_key(public_exponent=65537, key_size=_RSA_SIZES[key_type])
    msg = f"Unsupported key type '{key_type}'"
    raise AuthorityRejected(msg)


def build_csr(
    domains: Sequence[str],
    key: CertificateIssuerPrivateKeyTypes,
) -> x509.CertificateSigningRequest:
    """CSR with the first domain as CN and every domain as a SAN."""
    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
            critical=False,
        )
    )
    return builder.sign(key, hashes.SHA256())


class AcmeAuthority(CertificateAuthority):
    """Certificate authority client speaking ACME through ACMEOW.

    The ACMEOW client is stateful, so all operations are serialised
    with a lock.

    Parameters
    ----------
    settings:
        The ``authority`` configuration section.
    coordinator:
        Where pending challenge responses are published.
    directory_url:
        Resolved ACME directory URL.

    """

    def __init__(
        self,
        settings: AuthoritySettings,
        coordinator: ChallengeCoordinator,
        directory_url: str,
    ) -> None:
        super().__init__(settings)
        self._coordinator = coordinator
        self._directory_url = directory_url
        self._client: Any = None
        self._account: Account | None = None
        self._lock = threading.Lock()

    @property
    def directory_url(self) -> str:
        return self._directory_url

    def startup_check(self) -> None:
        """Validate configuration and create the account storage directory.

        Raises
        ------
        AuthorityError
            If required fields are missing or storage cannot be created.

        """
        if not self._settings.email:
            msg = "authority.email is required"
            raise AuthorityError(msg)

        storage = Path(self._settings.storage_path)
        try:
            storage.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create storage directory '{storage}': {exc}"
            raise AuthorityError(msg) from exc

    # -- account -----------------------------------------------------------

    def get_or_create_account(self, cancel: threading.Event) -> Account:
        _check_cancelled(cancel)
        if not self._settings.accept_terms_of_service:
            msg = (
                f"Terms of service of {self._directory_url} have not been accepted; "
                "set authority.accept_terms_of_service to register an account"
            )
            raise AuthorityRejected(msg)

        with self._lock:
            if self._account is not None:
                return self._account
            acmeow = _import_acmeow()
            client = self._ensure_client()

            try:
                result = client.create_account(terms_agreed=True)
            except (acmeow.AcmeError, OSError) as exc:
                raise _classify(exc, "account registration") from exc

            account_id = getattr(result, "uri", None) or self._settings.email or ""
            self._account = Account(
                id=str(account_id),
                directory_url=self._directory_url,
                email=self._settings.email,
            )
            log.info("Using ACME account %s at %s", self._account.id, self._directory_url)
            return self._account

    # -- issuance ----------------------------------------------------------

    def create_certificate(
        self,
        domains: Sequence[str],
        cancel: threading.Event,
    ) -> ManagedCertificate:
        """Run the full order, challenge, finalise flow for *domains*."""
        if not domains:
            msg = "Cannot request a certificate for an empty domain set"
            raise AuthorityRejected(msg)
        self.get_or_create_account(cancel)
        acmeow = _import_acmeow()

        with self._lock:
            try:
                return self._execute_flow(acmeow, list(domains), cancel)
            except (acmeow.AcmeError, OSError) as exc:
                raise _classify(exc, "issuance") from exc
            finally:
                self._coordinator.clear_domains(domains)

    def _execute_flow(
        self,
        acmeow: Any,  # noqa: ANN401
        domains: list[str],
        cancel: threading.Event,
    ) -> ManagedCertificate:
        client = self._ensure_client()
        key = generate_private_key(self._settings.key_type)
        csr_der = build_csr(domains, key).public_bytes(Encoding.DER)

        # 1. Create order
        log.info("Creating ACME order for %d domain(s)", len(domains))
        client.create_order([acmeow.Identifier.dns(d) for d in domains])
        _check_cancelled(cancel)

        # 2. Complete challenges through the coordinator
        log.info("Completing %s challenges", self._settings.challenge_type)
        client.complete_challenges(
            self._make_handler(),
            challenge_type=acmeow.ChallengeType(str(self._settings.challenge_type)),
        )
        _check_cancelled(cancel)

        # 3. Finalise with our CSR
        log.info("Finalising ACME order")
        client.finalize_order(csr=csr_der)

        # 4. Retrieve the chain; no key comes back for an external CSR
        cert_pem, _ = client.get_certificate()
        _check_cancelled(cancel)

        issued = replace(ManagedCertificate.from_pem(cert_pem), private_key=key)
        log.info(
            "Certificate issued: serial=%s not_after=%s",
            issued.serial_number,
            issued.not_after.isoformat(),
        )
        return issued

    # -- ACMEOW plumbing ---------------------------------------------------

    def _ensure_client(self) -> Any:  # noqa: ANN401
        if self._client is not None:
            return self._client
        acmeow = _import_acmeow()

        client_kwargs: dict[str, Any] = {
            "server_url": self._directory_url,
            "email": self._settings.email or "",
            "storage_path": Path(self._settings.storage_path),
            "timeout": self._settings.timeout_seconds,
        }
        if self._settings.proxy_url:
            client_kwargs["proxy_url"] = self._settings.proxy_url
        if not self._settings.verify_ssl:
            client_kwargs["verify_ssl"] = False

        try:
            client = acmeow.AcmeClient(**client_kwargs)
        except acmeow.AcmeError as exc:
            raise _classify(exc, "client initialisation") from exc
        if self._settings.eab_kid and self._settings.eab_hmac_key:
            client.set_external_account_binding(
                self._settings.eab_kid,
                self._settings.eab_hmac_key,
            )
        self._client = client
        return client

    def _make_handler(self) -> Any:  # noqa: ANN401
        """Build an ACMEOW challenge handler that publishes to the coordinator."""
        coordinator = self._coordinator

        if self._settings.challenge_type == ChallengeType.TLS_ALPN_01:
            from acmeow.handlers import CallbackTlsAlpnHandler  # noqa: PLC0415

            def deploy_tls(domain: str, cert_pem: bytes, key_pem: bytes) -> None:
                coordinator.add(tls_alpn_response(domain, cert_pem, key_pem))

            def cleanup_tls(domain: str) -> None:
                coordinator.remove(tls_alpn_token(domain))

            return CallbackTlsAlpnHandler(deploy_tls, cleanup_tls)

        from acmeow.handlers import CallbackHttpHandler  # noqa: PLC0415

        def deploy_http(domain: str, token: str, key_authorization: str) -> None:
            coordinator.add(
                ChallengeResponse(
                    domain=domain,
                    challenge_type=ChallengeType.HTTP_01,
                    token=token,
                    key_authorization=key_authorization,
                ),
            )

        def cleanup_http(domain: str, token: str) -> None:  # noqa: ARG001
            coordinator.remove(token)

        return CallbackHttpHandler(deploy_http, cleanup_http)


def _import_acmeow() -> Any:  # noqa: ANN401
    try:
        import acmeow  # noqa: PLC0415
    except ImportError as exc:
        msg = "ACMEOW is not installed. Install with: pip install acmeow"
        raise AuthorityError(msg) from exc
    return acmeow


def _check_cancelled(cancel: threading.Event) -> None:
    if cancel.is_set():
        msg = "ACME operation cancelled"
        raise OperationCancelled(msg)


def _classify(exc: Exception, stage: str) -> AuthorityError:
    """Map an ACMEOW or transport exception onto the authority error taxonomy.

    Only ACMEOW errors and ``OSError`` (which covers connection and
    timeout errors) reach this point; anything else is a bug and
    propagates unchanged.
    """
    detail = f"ACME {stage} failed ({type(exc).__name__}): {exc}"
    if _is_retryable(exc):
        return AuthorityUnreachable(detail)
    return AuthorityRejected(detail)


def _is_retryable(exc: Exception) -> bool:
    """Transport failures, timeouts and 5xx answers are worth retrying."""
    if isinstance(exc, OSError):
        return True
    from acmeow.exceptions import (  # noqa: PLC0415
        AcmeNetworkError,
        AcmeServerError,
        AcmeTimeoutError,
    )

    if isinstance(exc, (AcmeNetworkError, AcmeTimeoutError)):
        return True
    return isinstance(exc, AcmeServerError) and exc.status_code >= 500
