"""Certificate authority clients.

Public API::

    from certkeeper.ca import CertificateAuthority, load_authority
"""

from certkeeper.ca.base import CertificateAuthority
from certkeeper.ca.registry import load_authority

__all__ = ["CertificateAuthority", "load_authority"]
