"""Pre-populates the selector from persisted certificates.

Runs once before the first issuance check, so a restart picks up the
certificates saved by the previous run instead of asking the authority
for new ones.

A store may hold several certificates for the same names (the
file-system repository keeps every bundle it ever saved).  They are
added in order of expiry, so for each name the selector ends up with
the one that stays valid longest.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import threading
    from collections.abc import Sequence

    from certkeeper.models.certificate import ManagedCertificate
    from certkeeper.repositories.base import CertificateSource
    from certkeeper.services.selector import CertificateSelector

log = logging.getLogger(__name__)


class StartupCertificateLoader:
    """Reads every source and adds each certificate to the selector.

    A source that raises is logged and skipped; the others still load.
    Certificates are added soonest-expiring first, so a later-expiring
    certificate always wins a name over an older one.
    """

    def __init__(
        self,
        sources: Sequence[CertificateSource],
        selector: CertificateSelector,
    ) -> None:
        self._sources = tuple(sources)
        self._selector = selector

    def load(self, cancel: threading.Event) -> int:
        """Load all sources; returns the number of certificates added."""
        loaded: list[ManagedCertificate] = []
        for source in self._sources:
            if cancel.is_set():
                break
            try:
                certificates = list(source.load(cancel))
            except Exception:
                log.exception("Certificate source '%s' failed to load", source.name)
                continue
            loaded.extend(certificates)
            log.debug("Source '%s' supplied %d certificate(s)", source.name, len(certificates))

        # sorted() is stable: equal expiry keeps source order
        for cert in sorted(loaded, key=lambda c: c.not_after):
            self._selector.add(cert)
        if loaded:
            log.info("Loaded %d certificate(s) from %d source(s)", len(loaded), len(self._sources))
        return len(loaded)
