"""Domain Set helpers.

A Domain Set is the ordered list of names the operator wants covered by
one certificate.  Names are normalized to lower case without a trailing
dot; after that, the first occurrence keeps its position and later
duplicates are dropped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

LOOPBACK_NAME = "localhost"


def normalize_domain(name: str) -> str:
    """Return the lookup key for *name* (stripped, trailing dot removed, casefolded)."""
    return name.strip().rstrip(".").casefold()


def normalize_domains(names: Iterable[str]) -> tuple[str, ...]:
    """Normalize and deduplicate *names*, preserving first-seen order.

    Every entry comes back in its :func:`normalize_domain` form, not the
    spelling it was given in.  Blank entries are dropped.
    """
    seen: set[str] = set()
    result: list[str] = []
    for raw in names:
        key = normalize_domain(raw)
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(key)
    return tuple(result)


def domains_configured(names: Iterable[str]) -> bool:
    """True if *names* contains at least one name other than ``localhost``."""
    return any(normalize_domain(n) not in ("", LOOPBACK_NAME) for n in names)
