"""PKCS#12 file-system repository.

Certificates are written as ``<directory>/certs/<fingerprint>.pfx``,
optionally password-protected.  The same directory is read back at
startup, so this store is both a repository and a source.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from certkeeper.core.errors import OperationCancelled
from certkeeper.models.certificate import ManagedCertificate
from certkeeper.repositories.base import CertificateRepository, CertificateSource

if TYPE_CHECKING:
    import threading

log = logging.getLogger(__name__)

_SUFFIX = ".pfx"


class FileSystemCertificateRepository(CertificateRepository, CertificateSource):
    """Stores each certificate as a PKCS#12 bundle on local disk.

    Config keys:

    - ``directory`` (required): base directory; files go under ``certs/``
    - ``password`` (optional): PKCS#12 encryption password
    """

    def __init__(self, config: dict | None = None, *, name: str | None = None) -> None:
        super().__init__(config, name=name)
        self.directory = Path(self.config["directory"]).expanduser().resolve()
        self.password: str | None = self.config.get("password") or None

    @classmethod
    def validate_config(cls, config: dict) -> None:
        directory = config.get("directory")
        if not directory or not isinstance(directory, str):
            msg = "filesystem repository requires 'directory' in config"
            raise ValueError(msg)
        password = config.get("password")
        if password is not None and not isinstance(password, str):
            msg = "filesystem repository 'password' must be a string"
            raise ValueError(msg)

    @property
    def certs_dir(self) -> Path:
        return self.directory / "certs"

    def save(self, certificate: ManagedCertificate, cancel: threading.Event) -> None:
        if cancel.is_set():
            msg = "save cancelled"
            raise OperationCancelled(msg)

        self.certs_dir.mkdir(parents=True, exist_ok=True)
        target = self.certs_dir / f"{certificate.fingerprint}{_SUFFIX}"
        data = certificate.to_pkcs12(self.password)

        # Write to a sibling temp file then rename, so readers never see
        # a partially written bundle.
        fd, tmp_name = tempfile.mkstemp(dir=self.certs_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        log.info("Saved certificate %s to %s", certificate.fingerprint[:16], target)

    def load(self, cancel: threading.Event) -> list[ManagedCertificate]:
        if not self.certs_dir.is_dir():
            log.debug("Certificate directory %s does not exist yet", self.certs_dir)
            return []

        loaded: list[ManagedCertificate] = []
        for path in sorted(self.certs_dir.glob(f"*{_SUFFIX}")):
            if cancel.is_set():
                break
            try:
                loaded.append(ManagedCertificate.from_pkcs12(path.read_bytes(), self.password))
            except (OSError, ValueError) as exc:
                log.warning("Skipping unreadable certificate file %s: %s", path, exc)
        log.info("Loaded %d certificate(s) from %s", len(loaded), self.certs_dir)
        return loaded
