"""certkeeper command-line entry point.

Usage::

    certkeeper -c /etc/certkeeper/config.yaml
    certkeeper -c config.yaml --validate-only
    certkeeper -c config.yaml run
    certkeeper -c config.yaml issue
    certkeeper -c config.yaml status
    python -m certkeeper -c config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from certkeeper.app.context import Container
    from certkeeper.config import CertkeeperConfig

log = logging.getLogger(__name__)


def _get_version() -> str:
    from certkeeper import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certkeeper",
        description="certkeeper: automatic TLS certificate lifecycle management",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run the lifecycle manager until interrupted")
    subparsers.add_parser("issue", help="Issue a certificate now if one is missing")
    subparsers.add_parser("status", help="Show the certificate held for each domain")
    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    sys.stderr.write(f"certkeeper: error: {message}\n")


def _out(message: str = "") -> None:
    sys.stdout.write(f"{message}\n")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from certkeeper.config import CertkeeperConfig, ConfigValidationError

    try:
        config = CertkeeperConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)

    # -- replace bootstrap logging with structured logging ---
    from certkeeper.logging import configure_logging

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("certkeeper").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    try:
        container = _build(config)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"startup failed: {exc}")
        sys.exit(1)

    command = args.command or "run"
    if command == "issue":
        sys.exit(_run_issue(container))
    elif command == "status":
        sys.exit(_run_status(container))
    else:
        _print_settings_summary(config)
        _run_service(container)


def _build(config: CertkeeperConfig) -> Container:
    from certkeeper.app.context import build_container

    return build_container(config.settings)


def _run_service(container: Container) -> None:
    """Run the lifecycle manager until SIGTERM/SIGINT."""
    shutdown = container.shutdown
    shutdown.register_signals()
    container.manager.start(shutdown.cancel_event)
    try:
        shutdown.wait()
    except KeyboardInterrupt:
        log.info("Interrupted")
    finally:
        container.close()


def _run_issue(container: Container) -> int:
    """Load persisted certificates, then issue once if anything is missing."""
    from certkeeper.core.errors import IssuanceAggregateFailure, OperationCancelled

    cancel = container.shutdown.cancel_event
    container.shutdown.register_signals()
    container.startup_loader.load(cancel)
    try:
        with container.shutdown.track("issue"):
            cert = container.manager.ensure_issued(cancel)
    except IssuanceAggregateFailure as exc:
        _print_error(str(exc))
        return 1
    except OperationCancelled:
        _print_error("cancelled")
        return 130
    finally:
        container.fanout.shutdown(wait=False)

    if cert is None:
        _out("All domains already have a certificate; nothing issued.")
    else:
        _out(f"Issued {cert.fingerprint} for {', '.join(cert.domain_names)}")
        _out(f"  expires {cert.not_after.isoformat()}")
    return 0


def _run_status(container: Container) -> int:
    """Print each configured domain with the certificate currently held for it."""
    container.startup_loader.load(container.shutdown.cancel_event)
    settings = container.settings
    now = container.clock.now()
    lead_time = settings.renewal.lead_time

    missing = 0
    for domain in settings.domains:
        cert = container.selector.try_get(domain)
        if cert is None:
            missing += 1
            _out(f"{domain}: no certificate")
            continue
        due = lead_time is not None and cert.is_due_for_renewal(now, lead_time)
        _out(
            f"{domain}: {cert.fingerprint[:16]} expires {cert.not_after.isoformat()}"
            f"{' (renewal due)' if due else ''}",
        )
    if container.selector.fallback is not None:
        _out(f"fallback: {container.selector.fallback.fingerprint[:16]}")
    return 1 if missing else 0


def _print_settings_summary(config: CertkeeperConfig) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    _out(f"domains:      {', '.join(s.domains) or '(none)'}")
    _out(f"environment:  {s.environment}")
    _out(f"authority:    {s.authority.backend} ({s.directory_url})")
    if s.renewal.enabled:
        _out(
            f"renewal:      every {s.renewal.check_period_seconds}s, "
            f"{s.renewal.renew_days_in_advance} day(s) before expiry",
        )
    else:
        _out("renewal:      disabled")
    _out(f"repositories: {len(s.repositories.registered)}")
