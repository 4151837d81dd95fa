"""Configuration loader: YAML/JSON file + JSON Schema + cross-field checks.

Lifecycle::

    cfg = CertkeeperConfig(config_file="/etc/certkeeper/config.yaml")
    cfg.settings.domains        # typed access
    cfg.get("authority.email")  # dynamic dot-path

There is deliberately no module-level instance: the CLI builds one and
hands ``cfg.settings`` to :func:`certkeeper.app.context.build_container`.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from certkeeper.config.settings import CertkeeperSettings, build_settings
from certkeeper.core.domains import domains_configured

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_CLASS_PATH_RE = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$",
)

_BUILTIN_AUTHORITIES = frozenset({"acme"})
_BUILTIN_REPOSITORIES = frozenset({"filesystem"})

log = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when schema or cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with the env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(data: Any, path: str = "") -> None:  # noqa: ANN401
    """Walk *data* in place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class CertkeeperConfig:
    """Loaded, validated configuration.

    Parameters
    ----------
    config_file:
        Path to a YAML or JSON file.  JSON is accepted because it is a
        subset of YAML.

    Raises
    ------
    ConfigValidationError
        If the file is unreadable, fails the bundled schema, or fails
        the cross-field checks.

    """

    def __init__(self, *, config_file: str | Path) -> None:
        self._path = Path(config_file)
        self._data = self._load()
        self._validate_schema()
        self.additional_checks()
        self._settings = build_settings(self._data)

    @classmethod
    def from_dict(cls, data: dict) -> CertkeeperConfig:
        """Build a config from an in-memory mapping (tests, embedding)."""
        obj = cls.__new__(cls)
        obj._path = None  # type: ignore[assignment]
        obj._data = json.loads(json.dumps(data))
        _resolve_env_vars(obj._data)
        obj._validate_schema()
        obj.additional_checks()
        obj._settings = build_settings(obj._data)
        return obj

    # -- loading -----------------------------------------------------------

    def _load(self) -> dict:
        """Read the file and resolve env-var references before validation."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigValidationError([f"Cannot read {self._path}: {exc}"]) from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigValidationError([f"Cannot parse {self._path}: {exc}"]) from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigValidationError(
                [f"Top level of {self._path} must be a mapping, got {type(data).__name__}"],
            )
        _resolve_env_vars(data)
        return data

    def _validate_schema(self) -> None:
        schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
        validator = Draft202012Validator(schema)
        errors = [
            f"{'.'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
            for err in sorted(validator.iter_errors(self._data), key=lambda e: list(e.path))
        ]
        if errors:
            raise ConfigValidationError(errors)

    # -- typed / dynamic access ---------------------------------------------

    @property
    def settings(self) -> CertkeeperSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict:
        return self._data

    def get(self, dotted: str, default: Any = None) -> Any:  # noqa: ANN401
        """Look up a raw value by dot-path (``"authority.email"``)."""
        node: Any = self._data
        for part in dotted.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:  # noqa: C901, PLR0912
        """Semantic & cross-field validation run after the schema check."""
        errors: list[str] = []
        warnings: list[str] = []

        authority = self._data.get("authority") or {}
        renewal = self._data.get("renewal") or {}
        repositories = self._data.get("repositories") or {}
        fallback = self._data.get("fallback_certificate") or {}
        domains = self._data.get("domains") or []

        # -- domains --
        if not domains_configured(domains):
            warnings.append(
                "no domain names other than 'localhost' configured; "
                "automatic certificates are disabled",
            )

        # -- authority --
        backend = authority.get("backend", "acme")
        if backend in _BUILTIN_AUTHORITIES:
            if domains_configured(domains) and not authority.get("email"):
                errors.append("authority.email is required when authority.backend is 'acme'")
            if domains_configured(domains) and not authority.get("accept_terms_of_service"):
                warnings.append(
                    "authority.accept_terms_of_service is false; "
                    "account registration will be refused",
                )
        elif backend.startswith("ext:"):
            if not _CLASS_PATH_RE.match(backend[4:]):
                errors.append(
                    f"authority.backend '{backend}' must be 'ext:package.module.ClassName'",
                )
        else:
            errors.append(
                f"authority.backend '{backend}' is unknown; "
                f"built-in options: {sorted(_BUILTIN_AUTHORITIES)} or 'ext:...'",
            )

        if bool(authority.get("eab_kid")) != bool(authority.get("eab_hmac_key")):
            errors.append("authority.eab_kid and authority.eab_hmac_key must be set together")

        # -- renewal --
        has_period = renewal.get("check_period_seconds", 86400) is not None
        has_lead = renewal.get("renew_days_in_advance", 30) is not None
        if has_period != has_lead:
            warnings.append(
                "only one of renewal.check_period_seconds / renewal.renew_days_in_advance "
                "is set; automatic renewal is disabled",
            )

        # -- fallback --
        if fallback.get("key_path") and not fallback.get("path"):
            errors.append("fallback_certificate.key_path requires fallback_certificate.path")

        # -- repositories --
        for idx, entry in enumerate(repositories.get("registered") or []):
            repo_backend = entry.get("backend", "")
            if repo_backend.startswith("ext:"):
                if not _CLASS_PATH_RE.match(repo_backend[4:]):
                    errors.append(
                        f"repositories.registered[{idx}].backend '{repo_backend}' "
                        "must be 'ext:package.module.ClassName'",
                    )
            elif repo_backend not in _BUILTIN_REPOSITORIES:
                errors.append(
                    f"repositories.registered[{idx}].backend '{repo_backend}' is unknown; "
                    f"built-in options: {sorted(_BUILTIN_REPOSITORIES)} or 'ext:...'",
                )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)
