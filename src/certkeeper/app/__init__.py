"""Host integration: composition root, SNI binding and shutdown."""

from certkeeper.app.context import Container, build_container
from certkeeper.app.host import HostInfo, build_host_info
from certkeeper.app.shutdown import ShutdownCoordinator
from certkeeper.app.sni import SniCertificateBinder

__all__ = [
    "Container",
    "HostInfo",
    "ShutdownCoordinator",
    "SniCertificateBinder",
    "build_container",
    "build_host_info",
]
