"""Description of the hosting transport."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from certkeeper.config.settings import HostSettings

# Transports that choose a certificate per handshake.
DYNAMIC_BINDING_SERVERS = frozenset({"sni"})


@dataclass(frozen=True)
class HostInfo:
    """What the lifecycle manager needs to know about the host.

    Attributes
    ----------
    name:
        The configured server kind (``sni``, ``static``, ...).
    supports_dynamic_binding:
        Whether certificates can be swapped at handshake time.  Hosts
        with static certificate binding do not need automated issuance.

    """

    name: str
    supports_dynamic_binding: bool


def build_host_info(settings: HostSettings) -> HostInfo:
    supported = settings.server in DYNAMIC_BINDING_SERVERS and not settings.static_binding
    return HostInfo(name=settings.server, supports_dynamic_binding=supported)
