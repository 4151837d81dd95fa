"""Authority client registry.

Loads the configured authority client by name and returns an
initialised :class:`CertificateAuthority`, wrapped in a circuit
breaker.  Supports the built-in ``acme`` client and custom clients via
the ``ext:`` prefix.

Usage::

    from certkeeper.ca.registry import load_authority

    authority = load_authority(settings, coordinator)
    cert = authority.create_certificate(settings.domains, cancel)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from certkeeper.ca.base import CertificateAuthority
from certkeeper.ca.circuit_breaker import CircuitBreakerAuthority
from certkeeper.core.errors import AuthorityError

if TYPE_CHECKING:
    from certkeeper.challenge.coordinator import ChallengeCoordinator
    from certkeeper.config.settings import CertkeeperSettings

log = logging.getLogger(__name__)

# Maps config string → (module_path, class_name)
_BUILTIN_AUTHORITIES: dict[str, tuple[str, str]] = {
    "acme": ("certkeeper.ca.acme", "AcmeAuthority"),
}


def load_authority(
    settings: CertkeeperSettings,
    coordinator: ChallengeCoordinator,
) -> CertificateAuthority:
    """Load the configured authority client and wrap it in a circuit breaker.

    Built-in clients are constructed with the authority settings, the
    challenge coordinator and the resolved directory URL.  External
    (``ext:``) classes receive the authority settings only.

    Raises
    ------
    AuthorityError
        If the client cannot be loaded.

    """
    authority_settings = settings.authority
    backend_name = authority_settings.backend

    if backend_name in _BUILTIN_AUTHORITIES:
        cls = _import_class(*_BUILTIN_AUTHORITIES[backend_name], label=backend_name)
        _validate_class(cls, backend_name)
        authority = cls(authority_settings, coordinator, settings.directory_url)
        log.info("Loaded authority client: %s (%s)", backend_name, settings.directory_url)
    elif backend_name.startswith("ext:"):
        fqn = backend_name[4:]
        module_path, _, cls_name = fqn.rpartition(".")
        if not module_path:
            msg = (
                f"Invalid external authority '{fqn}': must be fully "
                "qualified (e.g. 'mypackage.module.ClassName')"
            )
            raise AuthorityError(msg)
        cls = _import_class(module_path, cls_name, label=backend_name)
        _validate_class(cls, backend_name)
        authority = cls(authority_settings)
        log.info("Loaded external authority client: %s", fqn)
    else:
        msg = (
            f"Unknown authority backend '{backend_name}'; "
            f"built-in options: {sorted(_BUILTIN_AUTHORITIES)}. "
            f"Use 'ext:mypackage.module.ClassName' for custom clients."
        )
        raise AuthorityError(msg)

    return CircuitBreakerAuthority(
        authority,
        authority_settings,
        failure_threshold=authority_settings.circuit_breaker_failure_threshold,
        recovery_timeout=authority_settings.circuit_breaker_recovery_timeout,
    )


def _import_class(module_path: str, cls_name: str, *, label: str) -> type:
    try:
        module = importlib.import_module(module_path)
        return getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load authority client '{label}': {exc}"
        raise AuthorityError(msg) from exc


def _validate_class(cls: type, label: str) -> None:
    """Verify that an authority class has the required methods."""
    if not (isinstance(cls, type) and issubclass(cls, CertificateAuthority)):
        msg = f"Authority client '{label}' is not a subclass of CertificateAuthority"
        raise AuthorityError(msg)

    for method_name in ("get_or_create_account", "create_certificate"):
        method = getattr(cls, method_name, None)
        if method is None or getattr(method, "__isabstractmethod__", False):
            msg = f"Authority client '{label}' does not implement '{method_name}()'"
            raise AuthorityError(msg)
