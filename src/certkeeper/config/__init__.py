"""Configuration subsystem for certkeeper.

Public API::

    from certkeeper.config import CertkeeperConfig

    cfg = CertkeeperConfig(config_file="certkeeper.yaml")
    domains = cfg.settings.domains          # typed access
    email = cfg.get("authority.email")      # dynamic dot-path
"""

from certkeeper.config.loader import CertkeeperConfig, ConfigValidationError
from certkeeper.config.settings import (
    AuthoritySettings,
    CertkeeperSettings,
    HostSettings,
    LocalCertificateSettings,
    LoggingSettings,
    RenewalSettings,
    RepositoryEntrySettings,
    RepositorySettings,
    build_settings,
    resolve_directory_url,
)

__all__ = [
    "AuthoritySettings",
    "CertkeeperConfig",
    "CertkeeperSettings",
    "ConfigValidationError",
    "HostSettings",
    "LocalCertificateSettings",
    "LoggingSettings",
    "RenewalSettings",
    "RepositoryEntrySettings",
    "RepositorySettings",
    "build_settings",
    "resolve_directory_url",
]
