"""Repository registry.

Builds the configured :class:`CertificateRepository` instances and the
:class:`CertificateSource` list read at startup.  Supports the built-in
``filesystem`` store and custom stores via the ``ext:`` prefix.

Loading is fail-loud: a broken repository entry stops startup rather
than silently dropping a persistence target.

Usage::

    from certkeeper.repositories.registry import load_repositories

    repositories, sources = load_repositories(settings)
"""

from __future__ import annotations

import importlib
import logging
import re
from typing import TYPE_CHECKING

from certkeeper.repositories.base import CertificateRepository, CertificateSource
from certkeeper.repositories.developer import DeveloperCertificateSource
from certkeeper.repositories.filesystem import FileSystemCertificateRepository

if TYPE_CHECKING:
    from certkeeper.config.settings import CertkeeperSettings, RepositoryEntrySettings

log = logging.getLogger(__name__)

_CLASS_PATH_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$")

_BUILTIN_REPOSITORIES: dict[str, type[CertificateRepository]] = {
    "filesystem": FileSystemCertificateRepository,
}


def load_repositories(
    settings: CertkeeperSettings,
) -> tuple[list[CertificateRepository], list[CertificateSource]]:
    """Instantiate every enabled repository and collect startup sources.

    Two ``filesystem`` entries pointing at the same directory collapse
    into one when their passwords agree.

    Returns
    -------
    tuple
        ``(repositories, sources)``.  Sources are every repository that
        is also a :class:`CertificateSource`, followed by the developer
        certificate source.

    Raises
    ------
    ValueError
        If an entry is invalid, or two ``filesystem`` entries share a
        directory with different passwords.

    """
    repositories: list[CertificateRepository] = []
    by_directory: dict[str, FileSystemCertificateRepository] = {}

    for entry in settings.repositories.registered:
        if not entry.enabled:
            log.debug("Repository '%s' is disabled, skipping", entry.name or entry.backend)
            continue
        try:
            repo = _load_repository(entry)
        except Exception:
            log.critical(
                "Failed to load repository '%s'; refusing to start",
                entry.name or entry.backend,
                exc_info=True,
            )
            raise

        if isinstance(repo, FileSystemCertificateRepository):
            key = str(repo.directory)
            existing = by_directory.get(key)
            if existing is not None:
                if existing.password != repo.password:
                    msg = (
                        f"Two filesystem repositories use directory '{key}' "
                        "with different passwords"
                    )
                    raise ValueError(msg)
                log.debug("Filesystem repository for %s already registered", key)
                continue
            by_directory[key] = repo

        repositories.append(repo)

    sources: list[CertificateSource] = [r for r in repositories if isinstance(r, CertificateSource)]
    sources.append(
        DeveloperCertificateSource(settings.developer_certificate, settings.environment),
    )
    log.info(
        "Loaded %d repository(ies), %d startup source(s)",
        len(repositories),
        len(sources),
    )
    return repositories, sources


def _load_repository(entry: RepositoryEntrySettings) -> CertificateRepository:
    """Import, validate, and instantiate a single repository."""
    backend = entry.backend
    if backend in _BUILTIN_REPOSITORIES:
        cls: type = _BUILTIN_REPOSITORIES[backend]
    elif backend.startswith("ext:"):
        cls = _import_external(backend[4:])
    else:
        msg = (
            f"Unknown repository backend '{backend}'; "
            f"built-in options: {sorted(_BUILTIN_REPOSITORIES)}. "
            "Use 'ext:mypackage.module.ClassName' for custom repositories."
        )
        raise ValueError(msg)

    cls.validate_config(entry.config)
    repo = cls(entry.config, name=entry.name or backend)
    log.info("Loaded repository: %s (%s)", repo.name, cls.__name__)
    return repo


def _import_external(class_path: str) -> type:
    # Validate class_path format before touching importlib
    if not _CLASS_PATH_RE.match(class_path):
        msg = (
            f"Invalid repository class path '{class_path}': must match "
            "'package.module.ClassName' (only alphanumerics and underscores)"
        )
        raise ValueError(msg)

    module_path, _, cls_name = class_path.rpartition(".")
    module = importlib.import_module(module_path)
    cls = getattr(module, cls_name, None)
    if cls is None:
        msg = f"Module '{module_path}' has no class '{cls_name}'"
        raise ValueError(msg)
    if not (isinstance(cls, type) and issubclass(cls, CertificateRepository)):
        msg = f"Class '{class_path}' is not a subclass of CertificateRepository"
        raise ValueError(msg)
    return cls
