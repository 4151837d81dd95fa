"""Certificate repositories and startup sources.

Public API::

    from certkeeper.repositories import CertificateRepository, CertificateSource
"""

from certkeeper.repositories.base import CertificateRepository, CertificateSource
from certkeeper.repositories.developer import DeveloperCertificateSource, read_local_certificate
from certkeeper.repositories.filesystem import FileSystemCertificateRepository
from certkeeper.repositories.registry import load_repositories

__all__ = [
    "CertificateRepository",
    "CertificateSource",
    "DeveloperCertificateSource",
    "FileSystemCertificateRepository",
    "load_repositories",
    "read_local_certificate",
]
