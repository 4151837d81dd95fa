"""Enumerated types for certkeeper.

All enums inherit from ``StrEnum`` so their values round-trip through
configuration files and log records as plain strings.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Lifecycle manager
# ---------------------------------------------------------------------------


class LifecycleState(StrEnum):
    INIT = "init"
    CHECK_HOST_SUPPORT = "check_host_support"
    CHECK_DOMAINS_CONFIGURED = "check_domains_configured"
    ISSUE_IF_MISSING = "issue_if_missing"
    RENEWAL_LOOP = "renewal_loop"
    STOPPED = "stopped"


class StopReason(StrEnum):
    HOST_UNSUPPORTED = "host_unsupported"
    NOT_CONFIGURED = "not_configured"
    RENEWAL_DISABLED = "renewal_disabled"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class Environment(StrEnum):
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class ChallengeType(StrEnum):
    HTTP_01 = "http-01"
    TLS_ALPN_01 = "tls-alpn-01"
