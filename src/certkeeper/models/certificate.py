"""Managed certificate entity.

Wraps a parsed :class:`cryptography.x509.Certificate` together with its
private key and issuer chain.  Instances are immutable; a renewal
produces a new instance that supersedes the old one in the selector.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtensionOID, NameOID

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from cryptography.hazmat.primitives.asymmetric.types import (
        PrivateKeyTypes,
    )


@dataclass(frozen=True)
class ManagedCertificate:
    """An issued certificate plus exportable key material.

    Attributes
    ----------
    certificate:
        The leaf certificate.
    private_key:
        The leaf's private key, or ``None`` for certificates loaded
        without key material.
    chain:
        Intermediate certificates, leaf excluded.

    """

    certificate: x509.Certificate
    private_key: PrivateKeyTypes | None = None
    chain: tuple[x509.Certificate, ...] = field(default_factory=tuple)

    # -- identity ----------------------------------------------------------

    @property
    def subject_name(self) -> str | None:
        """The subject common name, if present."""
        attrs = self.certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        if not attrs:
            return None
        value = attrs[0].value
        return value if isinstance(value, str) else value.decode()

    @property
    def alternate_names(self) -> tuple[str, ...]:
        """DNS names from the Subject Alternative Name extension."""
        try:
            san = self.certificate.extensions.get_extension_for_oid(
                ExtensionOID.SUBJECT_ALTERNATIVE_NAME,
            )
        except x509.ExtensionNotFound:
            return ()
        return tuple(san.value.get_values_for_type(x509.DNSName))

    @property
    def domain_names(self) -> tuple[str, ...]:
        """Every name this certificate covers: subject first, then SANs."""
        names: list[str] = []
        seen: set[str] = set()
        candidates = [self.subject_name, *self.alternate_names]
        for name in candidates:
            if not name:
                continue
            key = name.casefold()
            if key in seen:
                continue
            seen.add(key)
            names.append(name)
        return tuple(names)

    @property
    def fingerprint(self) -> str:
        """SHA-256 hex digest of the leaf certificate's DER encoding."""
        der = self.certificate.public_bytes(serialization.Encoding.DER)
        return hashlib.sha256(der).hexdigest()

    @property
    def serial_number(self) -> str:
        return format(self.certificate.serial_number, "x")

    # -- validity ----------------------------------------------------------

    @property
    def not_before(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    def is_due_for_renewal(self, now: datetime, lead_time: timedelta) -> bool:
        """True once ``not_after - lead_time`` is at or before *now*."""
        return self.not_after - lead_time <= now

    # -- import / export ---------------------------------------------------

    @classmethod
    def from_pem(
        cls,
        cert_pem: str | bytes,
        key_pem: str | bytes | None = None,
        *,
        password: bytes | None = None,
    ) -> ManagedCertificate:
        """Parse a PEM chain (leaf first) and an optional PEM private key."""
        if isinstance(cert_pem, str):
            cert_pem = cert_pem.encode()
        certs = x509.load_pem_x509_certificates(cert_pem)
        key = None
        if key_pem:
            if isinstance(key_pem, str):
                key_pem = key_pem.encode()
            key = serialization.load_pem_private_key(key_pem, password=password)
        return cls(certificate=certs[0], private_key=key, chain=tuple(certs[1:]))

    @classmethod
    def from_pkcs12(cls, data: bytes, password: str | None = None) -> ManagedCertificate:
        """Load a PKCS#12 (``.pfx``) bundle."""
        pw = password.encode() if password else None
        key, cert, additional = pkcs12.load_key_and_certificates(data, pw)
        if cert is None:
            msg = "PKCS#12 bundle contains no certificate"
            raise ValueError(msg)
        return cls(certificate=cert, private_key=key, chain=tuple(additional or ()))

    def to_pkcs12(self, password: str | None = None) -> bytes:
        """Serialise to a PKCS#12 bundle, encrypted when *password* is set."""
        encryption: serialization.KeySerializationEncryption
        if password:
            encryption = serialization.BestAvailableEncryption(password.encode())
        else:
            encryption = serialization.NoEncryption()
        return pkcs12.serialize_key_and_certificates(
            name=(self.subject_name or self.fingerprint).encode(),
            key=self.private_key,
            cert=self.certificate,
            cas=list(self.chain) or None,
            encryption_algorithm=encryption,
        )

    def cert_chain_pem(self) -> bytes:
        """Leaf followed by the chain, PEM-encoded."""
        return b"".join(
            c.public_bytes(serialization.Encoding.PEM)
            for c in (self.certificate, *self.chain)
        )

    def private_key_pem(self) -> bytes | None:
        """Unencrypted PKCS#8 PEM of the private key, if present."""
        if self.private_key is None:
            return None
        return self.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )

    def __repr__(self) -> str:
        return (
            f"ManagedCertificate(subject={self.subject_name!r}, "
            f"fingerprint={self.fingerprint[:16]}..., not_after={self.not_after.isoformat()})"
        )
