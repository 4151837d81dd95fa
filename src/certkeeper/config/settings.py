"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from certkeeper.config import CertkeeperConfig

    cfg = CertkeeperConfig(config_file="certkeeper.yaml")
    print(cfg.settings.renewal.check_period_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from certkeeper.core.domains import normalize_domains
from certkeeper.core.types import Environment

LETS_ENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

# ---------------------------------------------------------------------------
# Authority
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthoritySettings:
    """Certificate authority client settings (ACME directory, account)."""

    backend: str
    directory_url: str | None
    use_staging_server: bool | None
    email: str | None
    accept_terms_of_service: bool
    storage_path: str
    challenge_type: str
    key_type: str
    eab_kid: str | None
    eab_hmac_key: str | None
    proxy_url: str | None
    verify_ssl: bool
    timeout_seconds: int
    circuit_breaker_failure_threshold: int
    circuit_breaker_recovery_timeout: float
    config: dict[str, Any] = field(default_factory=dict)


def _build_authority(data: dict | None) -> AuthoritySettings:
    d = data or {}
    return AuthoritySettings(
        backend=d.get("backend", "acme"),
        directory_url=d.get("directory_url"),
        use_staging_server=d.get("use_staging_server"),
        email=d.get("email"),
        accept_terms_of_service=d.get("accept_terms_of_service", False),
        storage_path=d.get("storage_path", "./certkeeper-data/acme"),
        challenge_type=d.get("challenge_type", "http-01"),
        key_type=d.get("key_type", "ec256"),
        eab_kid=d.get("eab_kid"),
        eab_hmac_key=d.get("eab_hmac_key"),
        proxy_url=d.get("proxy_url"),
        verify_ssl=d.get("verify_ssl", True),
        timeout_seconds=d.get("timeout_seconds", 30),
        circuit_breaker_failure_threshold=d.get("circuit_breaker_failure_threshold", 5),
        circuit_breaker_recovery_timeout=d.get("circuit_breaker_recovery_timeout", 300.0),
        config=dict(d.get("config") or {}),
    )


def resolve_directory_url(authority: AuthoritySettings, environment: str) -> str:
    """Pick the ACME directory for *authority* in *environment*.

    An explicit ``directory_url`` always wins.  Otherwise
    ``use_staging_server`` selects Let's Encrypt staging or production;
    when it is unset, development environments default to staging.
    """
    if authority.directory_url:
        return authority.directory_url
    if authority.use_staging_server is True:
        return LETS_ENCRYPT_STAGING
    if authority.use_staging_server is False:
        return LETS_ENCRYPT_PRODUCTION
    if environment == Environment.DEVELOPMENT:
        return LETS_ENCRYPT_STAGING
    return LETS_ENCRYPT_PRODUCTION


# ---------------------------------------------------------------------------
# Renewal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewalSettings:
    """Renewal policy.  Both values are required for the background loop."""

    check_period_seconds: int | None
    renew_days_in_advance: int | None

    @property
    def enabled(self) -> bool:
        return self.check_period_seconds is not None and self.renew_days_in_advance is not None

    @property
    def check_period(self) -> timedelta | None:
        if self.check_period_seconds is None:
            return None
        return timedelta(seconds=self.check_period_seconds)

    @property
    def lead_time(self) -> timedelta | None:
        if self.renew_days_in_advance is None:
            return None
        return timedelta(days=self.renew_days_in_advance)


def _build_renewal(data: dict | None) -> RenewalSettings:
    d = data or {}
    return RenewalSettings(
        check_period_seconds=d.get("check_period_seconds", 86400),
        renew_days_in_advance=d.get("renew_days_in_advance", 30),
    )


# ---------------------------------------------------------------------------
# Local certificates (fallback, development)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LocalCertificateSettings:
    """A certificate read from disk (PEM chain + key, or PKCS#12)."""

    path: str | None
    key_path: str | None
    password: str | None


def _build_local_certificate(data: dict | None) -> LocalCertificateSettings:
    d = data or {}
    return LocalCertificateSettings(
        path=d.get("path"),
        key_path=d.get("key_path"),
        password=d.get("password"),
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RepositoryEntrySettings:
    """A single registered certificate repository."""

    backend: str
    enabled: bool
    name: str | None
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RepositorySettings:
    """Repository fan-out configuration."""

    registered: tuple[RepositoryEntrySettings, ...]
    max_workers: int


def _build_repositories(data: dict | None) -> RepositorySettings:
    d = data or {}
    entries = []
    for raw in d.get("registered") or []:
        entries.append(
            RepositoryEntrySettings(
                backend=raw["backend"],
                enabled=raw.get("enabled", True),
                name=raw.get("name"),
                config=dict(raw.get("config") or {}),
            ),
        )
    return RepositorySettings(
        registered=tuple(entries),
        max_workers=d.get("max_workers", 4),
    )


# ---------------------------------------------------------------------------
# Host
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HostSettings:
    """Hosting transport description used by the host-support check."""

    server: str
    static_binding: bool


def _build_host(data: dict | None) -> HostSettings:
    d = data or {}
    return HostSettings(
        server=d.get("server", "sni"),
        static_binding=d.get("static_binding", False),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertkeeperSettings:
    """Root settings tree."""

    domains: tuple[str, ...]
    environment: str
    authority: AuthoritySettings
    renewal: RenewalSettings
    fallback_certificate: LocalCertificateSettings
    developer_certificate: LocalCertificateSettings
    repositories: RepositorySettings
    host: HostSettings
    logging: LoggingSettings

    @property
    def directory_url(self) -> str:
        return resolve_directory_url(self.authority, self.environment)


def build_settings(data: dict) -> CertkeeperSettings:
    """Build the full typed settings tree from raw config data.

    Called by :class:`~certkeeper.config.loader.CertkeeperConfig` after
    schema validation and environment-variable resolution.
    """
    return CertkeeperSettings(
        domains=normalize_domains(data.get("domains") or ()),
        environment=data.get("environment", Environment.PRODUCTION.value),
        authority=_build_authority(data.get("authority")),
        renewal=_build_renewal(data.get("renewal")),
        fallback_certificate=_build_local_certificate(data.get("fallback_certificate")),
        developer_certificate=_build_local_certificate(data.get("developer_certificate")),
        repositories=_build_repositories(data.get("repositories")),
        host=_build_host(data.get("host")),
        logging=_build_logging(data.get("logging")),
    )
