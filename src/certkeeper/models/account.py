"""Authority account entity."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Account:
    id: str
    directory_url: str
    email: str | None = None
