"""Tests for certkeeper.services.startup_loader.StartupCertificateLoader."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from certkeeper.repositories.base import CertificateSource
from certkeeper.repositories.filesystem import FileSystemCertificateRepository
from certkeeper.services.selector import CertificateSelector
from certkeeper.services.startup_loader import StartupCertificateLoader

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def _make_source(name: str, certs=(), side_effect=None) -> MagicMock:
    source = MagicMock(spec=CertificateSource)
    source.name = name
    if side_effect is not None:
        source.load.side_effect = side_effect
    else:
        source.load.return_value = list(certs)
    return source


class TestStartupCertificateLoader:
    def test_adds_every_certificate(self, make_cert):
        a = make_cert("a.example.com")
        b = make_cert("b.example.com")
        selector = CertificateSelector()
        loader = StartupCertificateLoader([_make_source("disk", [a, b])], selector)

        assert loader.load(threading.Event()) == 2
        assert selector.try_get("a.example.com") is a
        assert selector.try_get("b.example.com") is b

    def test_failing_source_is_skipped(self, make_cert):
        cert = make_cert("ok.example.com")
        selector = CertificateSelector()
        loader = StartupCertificateLoader(
            [
                _make_source("broken", side_effect=OSError("unreadable")),
                _make_source("disk", [cert]),
            ],
            selector,
        )

        assert loader.load(threading.Event()) == 1
        assert selector.has_cert_for_domain("ok.example.com")

    def test_cancelled_loads_nothing(self, make_cert):
        source = _make_source("disk", [make_cert()])
        cancel = threading.Event()
        cancel.set()

        assert StartupCertificateLoader([source], CertificateSelector()).load(cancel) == 0
        source.load.assert_not_called()


class TestExpiryOrdering:
    @pytest.fixture()
    def fresh_and_expired(self, make_cert):
        fresh = make_cert(
            "example.com",
            ["example.com"],
            not_before=NOW - timedelta(days=10),
            not_after=NOW + timedelta(days=80),
        )
        expired = make_cert(
            "example.com",
            ["example.com"],
            not_before=NOW - timedelta(days=100),
            not_after=NOW - timedelta(days=10),
        )
        return fresh, expired

    @pytest.mark.parametrize("expired_first", [True, False])
    def test_later_expiry_wins_regardless_of_source_order(self, fresh_and_expired, expired_first):
        fresh, expired = fresh_and_expired
        certs = [expired, fresh] if expired_first else [fresh, expired]
        selector = CertificateSelector()

        StartupCertificateLoader([_make_source("disk", certs)], selector).load(threading.Event())

        assert selector.try_get("example.com") is fresh

    def test_later_expiry_wins_across_sources(self, fresh_and_expired):
        fresh, expired = fresh_and_expired
        selector = CertificateSelector()
        loader = StartupCertificateLoader(
            [_make_source("new", [fresh]), _make_source("old", [expired])],
            selector,
        )

        assert loader.load(threading.Event()) == 2
        assert selector.try_get("example.com") is fresh

    def test_two_bundles_on_disk(self, tmp_path, fresh_and_expired):
        fresh, expired = fresh_and_expired
        repo = FileSystemCertificateRepository({"directory": str(tmp_path / "store")}, name="disk")
        repo.save(fresh, threading.Event())
        repo.save(expired, threading.Event())
        selector = CertificateSelector()

        StartupCertificateLoader([repo], selector).load(threading.Event())

        assert selector.try_get("example.com").fingerprint == fresh.fingerprint

    def test_newer_certificate_only_takes_its_own_names(self, make_cert):
        old = make_cert(
            "example.com",
            ["example.com", "www.example.com"],
            not_after=NOW + timedelta(days=10),
        )
        new = make_cert("example.com", ["example.com"], not_after=NOW + timedelta(days=80))
        selector = CertificateSelector()

        StartupCertificateLoader([_make_source("disk", [new, old])], selector).load(threading.Event())

        assert selector.try_get("example.com") is new
        assert selector.try_get("www.example.com") is old
