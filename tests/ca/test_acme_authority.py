"""Tests for certkeeper.ca.acme.AcmeAuthority against an autospecced ACMEOW client."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import acmeow
import pytest
from acmeow.exceptions import (
    AcmeAuthorizationError,
    AcmeNetworkError,
    AcmeRateLimitError,
    AcmeServerError,
    AcmeTimeoutError,
)
from acmeow.handlers import CallbackHttpHandler, CallbackTlsAlpnHandler
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtensionOID

from certkeeper.ca.acme import AcmeAuthority, _is_retryable, build_csr, generate_private_key
from certkeeper.challenge.coordinator import ChallengeCoordinator
from certkeeper.challenge.tls_alpn import ACME_IDENTIFIER_OID
from certkeeper.config.settings import build_settings
from certkeeper.core.errors import (
    AuthorityError,
    AuthorityRejected,
    AuthorityUnreachable,
    OperationCancelled,
)

DIRECTORY = "https://acme.test/directory"

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_settings(tmp_path, **overrides):
    authority = {
        "email": "admin@example.com",
        "accept_terms_of_service": True,
        "storage_path": str(tmp_path / "acme"),
    }
    authority.update(overrides)
    return build_settings({"domains": ["example.com"], "authority": authority}).authority


@pytest.fixture()
def acme_client():
    """Patch ``acmeow.AcmeClient`` with an autospec; yield (class, instance)."""
    with patch("acmeow.AcmeClient", autospec=True) as client_cls:
        client = client_cls.return_value
        client.create_account.return_value = MagicMock(uri="https://acme.test/acct/42")
        yield client_cls, client


def _make_authority(tmp_path, coordinator=None, **overrides) -> AcmeAuthority:
    return AcmeAuthority(
        _make_settings(tmp_path, **overrides),
        coordinator or ChallengeCoordinator(),
        DIRECTORY,
    )


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


class TestAccount:
    def test_registers_once_and_reuses(self, tmp_path, acme_client):
        client_cls, client = acme_client
        authority = _make_authority(tmp_path)

        first = authority.get_or_create_account(threading.Event())
        second = authority.get_or_create_account(threading.Event())

        assert first is second
        assert first.id == "https://acme.test/acct/42"
        assert first.directory_url == DIRECTORY
        client.create_account.assert_called_once_with(terms_agreed=True)
        client_cls.assert_called_once_with(
            server_url=DIRECTORY,
            email="admin@example.com",
            storage_path=Path(tmp_path / "acme"),
            timeout=30,
        )

    def test_transport_options_are_passed(self, tmp_path, acme_client):
        client_cls, _ = acme_client
        authority = _make_authority(tmp_path, proxy_url="http://proxy:3128", verify_ssl=False)

        authority.get_or_create_account(threading.Event())

        kwargs = client_cls.call_args.kwargs
        assert kwargs["proxy_url"] == "http://proxy:3128"
        assert kwargs["verify_ssl"] is False

    def test_eab_credentials_are_configured_on_client(self, tmp_path, acme_client):
        _, client = acme_client
        authority = _make_authority(tmp_path, eab_kid="kid", eab_hmac_key="hmac")

        authority.get_or_create_account(threading.Event())

        client.set_external_account_binding.assert_called_once_with("kid", "hmac")
        client.create_account.assert_called_once_with(terms_agreed=True)

    def test_no_eab_without_both_credentials(self, tmp_path, acme_client):
        _, client = acme_client

        _make_authority(tmp_path, eab_kid="kid").get_or_create_account(threading.Event())

        client.set_external_account_binding.assert_not_called()

    def test_terms_not_accepted_is_rejected_without_network(self, tmp_path, acme_client):
        client_cls, _ = acme_client
        authority = _make_authority(tmp_path, accept_terms_of_service=False)

        with pytest.raises(AuthorityRejected, match="Terms of service"):
            authority.get_or_create_account(threading.Event())
        client_cls.assert_not_called()

    @pytest.mark.parametrize(
        "exc",
        [ConnectionError("connection refused"), AcmeNetworkError("connection refused")],
    )
    def test_network_failure_is_unreachable(self, tmp_path, acme_client, exc):
        _, client = acme_client
        client.create_account.side_effect = exc

        with pytest.raises(AuthorityUnreachable):
            _make_authority(tmp_path).get_or_create_account(threading.Event())

    def test_acme_problem_is_rejected(self, tmp_path, acme_client):
        _, client = acme_client
        client.create_account.side_effect = AcmeServerError(
            400,
            "urn:ietf:params:acme:error:invalidContact",
            "bad contact",
        )

        with pytest.raises(AuthorityRejected, match="invalidContact"):
            _make_authority(tmp_path).get_or_create_account(threading.Event())

    def test_programming_errors_are_not_disguised(self, tmp_path, acme_client):
        _, client = acme_client
        client.create_account.side_effect = TypeError("unexpected keyword argument")

        with pytest.raises(TypeError):
            _make_authority(tmp_path).get_or_create_account(threading.Event())

    def test_account_id_falls_back_to_email(self, tmp_path, acme_client):
        _, client = acme_client
        client.create_account.return_value = MagicMock(uri=None)

        account = _make_authority(tmp_path).get_or_create_account(threading.Event())

        assert account.id == "admin@example.com"


# ---------------------------------------------------------------------------
# Challenge handlers
# ---------------------------------------------------------------------------


class TestHandlers:
    def test_http_handler_is_acmeow_callback_handler(self, tmp_path):
        assert isinstance(_make_authority(tmp_path)._make_handler(), CallbackHttpHandler)

    def test_tls_alpn_handler_is_acmeow_callback_handler(self, tmp_path):
        authority = _make_authority(tmp_path, challenge_type="tls-alpn-01")

        assert isinstance(authority._make_handler(), CallbackTlsAlpnHandler)

    def test_http_handler_publishes_and_withdraws(self, tmp_path):
        coordinator = ChallengeCoordinator()
        handler = _make_authority(tmp_path, coordinator)._make_handler()

        handler.setup("example.com", "tok123", "tok123.thumb")
        served = coordinator.http_response_for_path("/.well-known/acme-challenge/tok123")
        handler.cleanup("example.com", "tok123")

        assert served == "tok123.thumb"
        assert coordinator.http_response("tok123") is None

    def test_tls_alpn_handler_publishes_generated_certificate(self, tmp_path):
        coordinator = ChallengeCoordinator()
        handler = _make_authority(tmp_path, coordinator, challenge_type="tls-alpn-01")._make_handler()

        handler.setup("example.com", "tok", "tok.thumb")
        published = coordinator.tls_alpn_certificate("EXAMPLE.com")
        handler.cleanup("example.com", "tok")

        ext = published.certificate.extensions.get_extension_for_oid(ACME_IDENTIFIER_OID)
        assert ext.critical
        assert published.private_key is not None
        assert coordinator.tls_alpn_certificate("example.com") is None


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


class TestCreateCertificate:
    def test_full_flow(self, tmp_path, acme_client, make_cert):
        _, client = acme_client
        issued = make_cert("example.com", ["example.com", "www.example.com"])
        client.get_certificate.return_value = (issued.cert_chain_pem().decode(), None)
        authority = _make_authority(tmp_path)

        cert = authority.create_certificate(["example.com", "www.example.com"], threading.Event())

        client.create_order.assert_called_once_with(
            [acmeow.Identifier.dns("example.com"), acmeow.Identifier.dns("www.example.com")],
        )
        handler = client.complete_challenges.call_args.args[0]
        assert isinstance(handler, CallbackHttpHandler)
        assert client.complete_challenges.call_args.kwargs["challenge_type"] is acmeow.ChallengeType.HTTP
        csr = x509.load_der_x509_csr(client.finalize_order.call_args.kwargs["csr"])
        san = csr.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        assert san.value.get_values_for_type(x509.DNSName) == ["example.com", "www.example.com"]
        assert cert.fingerprint == issued.fingerprint
        assert isinstance(cert.private_key, ec.EllipticCurvePrivateKey)

    def test_http_challenges_flow_through_coordinator(self, tmp_path, acme_client, make_cert):
        _, client = acme_client
        coordinator = ChallengeCoordinator()
        observed: list[str | None] = []

        def _complete(handler, challenge_type, **_):
            handler.setup("example.com", "tok123", "tok123.thumb")
            observed.append(coordinator.http_response_for_path("/.well-known/acme-challenge/tok123"))

        client.complete_challenges.side_effect = _complete
        client.get_certificate.return_value = (make_cert().cert_chain_pem().decode(), None)
        authority = _make_authority(tmp_path, coordinator)

        authority.create_certificate(["example.com"], threading.Event())

        assert observed == ["tok123.thumb"]
        assert coordinator.pending_domains == ()

    def test_tls_alpn_challenges_publish_certificate(self, tmp_path, acme_client, make_cert):
        _, client = acme_client
        coordinator = ChallengeCoordinator()
        observed = []

        def _complete(handler, challenge_type, **_):
            assert challenge_type is acmeow.ChallengeType.TLS_ALPN
            handler.setup("example.com", "tok", "tok.thumb")
            observed.append(coordinator.tls_alpn_certificate("EXAMPLE.com"))

        client.complete_challenges.side_effect = _complete
        client.get_certificate.return_value = (make_cert().cert_chain_pem().decode(), None)
        authority = _make_authority(tmp_path, coordinator, challenge_type="tls-alpn-01")

        authority.create_certificate(["example.com"], threading.Event())

        ext = observed[0].certificate.extensions.get_extension_for_oid(ACME_IDENTIFIER_OID)
        assert ext.critical
        assert coordinator.tls_alpn_certificate("example.com") is None

    def test_failure_clears_challenges_and_classifies(self, tmp_path, acme_client):
        _, client = acme_client
        coordinator = ChallengeCoordinator()

        def _complete(handler, challenge_type, **_):
            handler.setup("example.com", "tok", "tok.thumb")
            raise AcmeAuthorizationError("example.com", "unauthorized")

        client.complete_challenges.side_effect = _complete
        authority = _make_authority(tmp_path, coordinator)

        with pytest.raises(AuthorityRejected, match="unauthorized"):
            authority.create_certificate(["example.com"], threading.Event())
        assert coordinator.http_response("tok") is None

    @pytest.mark.parametrize(
        "exc",
        [AcmeTimeoutError("order not ready"), TimeoutError("read timed out")],
    )
    def test_timeout_is_unreachable(self, tmp_path, acme_client, exc):
        _, client = acme_client
        client.create_order.side_effect = exc

        with pytest.raises(AuthorityUnreachable):
            _make_authority(tmp_path).create_certificate(["example.com"], threading.Event())

    def test_programming_error_propagates_and_still_clears(self, tmp_path, acme_client):
        _, client = acme_client
        coordinator = ChallengeCoordinator()

        def _complete(handler, challenge_type, **_):
            handler.setup("example.com", "tok", "tok.thumb")
            msg = "bad argument"
            raise TypeError(msg)

        client.complete_challenges.side_effect = _complete

        with pytest.raises(TypeError):
            _make_authority(tmp_path, coordinator).create_certificate(["example.com"], threading.Event())
        assert coordinator.pending_domains == ()

    def test_cancellation_between_steps(self, tmp_path, acme_client):
        _, client = acme_client
        cancel = threading.Event()
        client.create_order.side_effect = lambda *args, **kwargs: cancel.set()

        with pytest.raises(OperationCancelled):
            _make_authority(tmp_path).create_certificate(["example.com"], cancel)
        client.finalize_order.assert_not_called()

    def test_empty_domain_set_is_rejected(self, tmp_path, acme_client):
        with pytest.raises(AuthorityRejected):
            _make_authority(tmp_path).create_certificate([], threading.Event())

    def test_issued_certificate_carries_generated_key(self, tmp_path, acme_client, make_cert):
        _, client = acme_client
        client.get_certificate.return_value = (make_cert().cert_chain_pem().decode(), None)

        cert = _make_authority(tmp_path, key_type="ec384").create_certificate(
            ["example.com"],
            threading.Event(),
        )

        assert cert.private_key.curve.name == "secp384r1"


# ---------------------------------------------------------------------------
# Startup / helpers
# ---------------------------------------------------------------------------


class TestStartupCheck:
    def test_creates_storage_directory(self, tmp_path):
        authority = _make_authority(tmp_path)

        authority.startup_check()

        assert (tmp_path / "acme").is_dir()

    def test_email_required(self, tmp_path):
        authority = _make_authority(tmp_path, email=None)

        with pytest.raises(AuthorityError, match="email"):
            authority.startup_check()

    def test_missing_acmeow_is_reported(self, tmp_path):
        with patch.dict("sys.modules", {"acmeow": None}):
            with pytest.raises(AuthorityError, match="ACMEOW is not installed"):
                _make_authority(tmp_path).get_or_create_account(threading.Event())


class TestHelpers:
    @pytest.mark.parametrize(
        ("key_type", "expected"),
        [("ec256", ec.EllipticCurvePrivateKey), ("rsa2048", rsa.RSAPrivateKey)],
    )
    def test_generate_private_key(self, key_type, expected):
        assert isinstance(generate_private_key(key_type), expected)

    def test_unknown_key_type(self):
        with pytest.raises(AuthorityRejected):
            generate_private_key("dsa1024")

    def test_csr_subject_is_first_domain(self):
        csr = build_csr(["a.example.com", "b.example.com"], generate_private_key("ec256"))

        assert csr.subject.rfc4514_string() == "CN=a.example.com"

    @pytest.mark.parametrize(
        ("exc", "retryable"),
        [
            (ConnectionError("reset"), True),
            (TimeoutError("slow"), True),
            (AcmeNetworkError("reset"), True),
            (AcmeTimeoutError("order not ready"), True),
            (AcmeServerError(503, "urn:ietf:params:acme:error:serverInternal", "down"), True),
            (AcmeServerError(400, "urn:ietf:params:acme:error:rejectedIdentifier", "no"), False),
            (AcmeRateLimitError("too many certificates", retry_after=3600), False),
            (AcmeAuthorizationError("example.com", "unauthorized"), False),
        ],
    )
    def test_is_retryable(self, exc, retryable):
        assert _is_retryable(exc) is retryable
