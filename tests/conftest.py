"""Root conftest for the certkeeper test suite."""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from certkeeper.core.clock import Clock  # noqa: E402
from certkeeper.models.certificate import ManagedCertificate  # noqa: E402

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


class FixedClock(Clock):
    """Clock frozen at a settable instant."""

    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current


def _build_certificate(
    common_name: str | None = "example.com",
    sans: list[str] | None = None,
    *,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
) -> ManagedCertificate:
    key = ec.generate_private_key(ec.SECP256R1())
    attrs = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)] if common_name else []
    subject = x509.Name(attrs)
    not_before = not_before or NOW - timedelta(days=1)
    not_after = not_after or NOW + timedelta(days=90)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(s) for s in sans]),
            critical=False,
        )
    cert = builder.sign(key, hashes.SHA256())
    return ManagedCertificate(certificate=cert, private_key=key)


@pytest.fixture()
def make_cert():
    """Factory for real self-signed :class:`ManagedCertificate` objects."""
    return _build_certificate


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data(tmp_path: Path) -> dict:
    """Return a dict containing a complete, valid configuration."""
    return {
        "domains": ["example.com", "www.example.com"],
        "environment": "production",
        "authority": {
            "email": "admin@example.com",
            "accept_terms_of_service": True,
            "storage_path": str(tmp_path / "acme"),
        },
        "renewal": {"check_period_seconds": 3600, "renew_days_in_advance": 30},
        "repositories": {
            "registered": [
                {"backend": "filesystem", "config": {"directory": str(tmp_path / "store")}},
            ],
        },
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


@pytest.fixture(autouse=True)
def _restore_certkeeper_logger():
    """Undo ``configure_logging`` side effects between tests."""
    logger = logging.getLogger("certkeeper")
    saved = (list(logger.handlers), logger.propagate, logger.level)
    yield
    logger.handlers[:] = saved[0]
    logger.propagate = saved[1]
    logger.setLevel(saved[2])
