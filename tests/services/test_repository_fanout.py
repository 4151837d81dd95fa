"""Tests for certkeeper.services.persistence.RepositoryFanout."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from certkeeper.core.errors import OperationCancelled, RepositorySaveFailed
from certkeeper.metrics.collector import MetricsCollector
from certkeeper.repositories.base import CertificateRepository
from certkeeper.services.persistence import RepositoryFanout

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_repo(name: str, side_effect=None) -> MagicMock:
    repo = MagicMock(spec=CertificateRepository)
    repo.name = name
    if side_effect is not None:
        repo.save.side_effect = side_effect
    return repo


class TestSaveAll:
    def test_no_repositories_is_a_no_op(self, make_cert):
        fanout = RepositoryFanout([])

        assert fanout.save_all(make_cert(), threading.Event()) == []

    def test_all_succeed(self, make_cert):
        cert = make_cert()
        repos = [_make_repo("a"), _make_repo("b"), _make_repo("c")]
        metrics = MetricsCollector()
        fanout = RepositoryFanout(repos, metrics=metrics)

        errors = fanout.save_all(cert, threading.Event())

        assert errors == []
        for repo in repos:
            repo.save.assert_called_once()
            assert repo.save.call_args.args[0] is cert
        assert metrics.get("repository_saves_total", {"repository": "b"}) == 1
        fanout.shutdown()

    def test_failures_are_returned_in_repository_order(self, make_cert):
        repos = [
            _make_repo("a", side_effect=ValueError("bad")),
            _make_repo("b"),
            _make_repo("c", side_effect=PermissionError("denied")),
        ]
        metrics = MetricsCollector()
        fanout = RepositoryFanout(repos, metrics=metrics)

        errors = fanout.save_all(make_cert(), threading.Event())

        assert [type(e) for e in errors] == [RepositorySaveFailed, RepositorySaveFailed]
        assert [e.repository for e in errors] == ["a", "c"]
        assert isinstance(errors[1].cause, PermissionError)
        repos[1].save.assert_called_once()
        assert metrics.get("repository_save_failures_total", {"repository": "a"}) == 1
        fanout.shutdown()

    def test_slow_repository_does_not_block_others_from_starting(self, make_cert):
        release = threading.Event()
        fast_started = threading.Event()

        def _slow(certificate, cancel):
            assert fast_started.wait(timeout=5)
            release.set()

        repos = [_make_repo("slow", side_effect=_slow), _make_repo("fast", side_effect=lambda c, e: fast_started.set())]
        fanout = RepositoryFanout(repos, max_workers=2)

        errors = fanout.save_all(make_cert(), threading.Event())

        assert errors == []
        assert release.is_set()
        fanout.shutdown()

    def test_cancellation_while_waiting(self, make_cert):
        cancel = threading.Event()
        unblock = threading.Event()

        def _hang(certificate, event):
            event.set()
            unblock.wait(timeout=5)

        fanout = RepositoryFanout([_make_repo("hang", side_effect=_hang)])

        with pytest.raises(OperationCancelled):
            fanout.save_all(make_cert(), cancel)
        unblock.set()
        fanout.shutdown()
