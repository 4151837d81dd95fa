"""Structured logging configuration for certkeeper.

Provides JSON and text formatters, an issuance-context filter that
stamps every record emitted during an issuance attempt with the
attempt's id and domain set, and a one-call ``configure_logging``
function driven by config settings.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from certkeeper.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Context attributes (handled explicitly):
        "issuance_id",
        "domains",
    }
)

_issuance_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "certkeeper_issuance_id",
    default=None,
)
_issuance_domains: contextvars.ContextVar[tuple[str, ...] | None] = contextvars.ContextVar(
    "certkeeper_issuance_domains",
    default=None,
)


# ---------------------------------------------------------------------------
# Issuance context
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def issuance_context(domains: Iterable[str]) -> Iterator[str]:
    """Bind a fresh issuance id and *domains* for the duration of the block.

    Yields the generated id.  Nested blocks restore the outer binding on
    exit.
    """
    issuance_id = uuid.uuid4().hex[:12]
    id_token = _issuance_id.set(issuance_id)
    domains_token = _issuance_domains.set(tuple(domains))
    try:
        yield issuance_id
    finally:
        _issuance_domains.reset(domains_token)
        _issuance_id.reset(id_token)


def current_issuance_id() -> str | None:
    return _issuance_id.get()


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for production logging.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        issuance_id = getattr(record, "issuance_id", None)
        if issuance_id not in (None, "-"):
            data["issuance_id"] = issuance_id

        domains = getattr(record, "domains", None)
        if domains not in (None, "-"):
            data["domains"] = domains

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development / console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(issuance_id)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class IssuanceContextFilter(logging.Filter):
    """Inject the active issuance context into every log record.

    Adds ``issuance_id`` and ``domains`` from the context variables bound
    by :func:`issuance_context`, otherwise falls back to ``"-"``.
    """

    CONTEXT_ATTRS = frozenset({"issuance_id", "domains"})

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "issuance_id"):
            record.issuance_id = _issuance_id.get() or "-"  # type: ignore[attr-defined]
        if not hasattr(record, "domains"):
            bound = _issuance_domains.get()
            record.domains = list(bound) if bound is not None else "-"  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``certkeeper`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output.

    Returns the root ``certkeeper`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("certkeeper")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(IssuanceContextFilter())
    root.addHandler(console)

    # ── Quieten noisy third-party loggers ───────────────────────────
    for lib in ("acmeow", "urllib3", "requests"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
