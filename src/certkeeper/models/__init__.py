"""Domain models for certkeeper.

All models are frozen dataclasses.
"""

from certkeeper.models.account import Account
from certkeeper.models.certificate import ManagedCertificate

__all__ = ["Account", "ManagedCertificate"]
