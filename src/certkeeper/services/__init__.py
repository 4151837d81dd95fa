"""Core services: selection, persistence fan-out and the lifecycle manager."""

from certkeeper.services.lifecycle import CertificateLifecycleManager
from certkeeper.services.persistence import RepositoryFanout
from certkeeper.services.selector import CertificateSelector
from certkeeper.services.startup_loader import StartupCertificateLoader

__all__ = [
    "CertificateLifecycleManager",
    "CertificateSelector",
    "RepositoryFanout",
    "StartupCertificateLoader",
]
