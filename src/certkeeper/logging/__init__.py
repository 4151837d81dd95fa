"""Logging subsystem for certkeeper.

Public API::

    from certkeeper.logging import configure_logging, issuance_context

    configure_logging(settings.logging)
"""

from certkeeper.logging.setup import configure_logging, issuance_context

__all__ = ["configure_logging", "issuance_context"]
