"""Tests for certkeeper.repositories.registry.load_repositories."""

from __future__ import annotations

import sys
import threading
import types

import pytest

from certkeeper.config.settings import build_settings
from certkeeper.repositories.base import CertificateRepository
from certkeeper.repositories.developer import DeveloperCertificateSource
from certkeeper.repositories.filesystem import FileSystemCertificateRepository
from certkeeper.repositories.registry import load_repositories

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _MemoryRepository(CertificateRepository):
    """Custom repository loaded through the ``ext:`` prefix."""

    @classmethod
    def validate_config(cls, config: dict) -> None:
        if config.get("reject"):
            msg = "rejected"
            raise ValueError(msg)

    def save(self, certificate, cancel) -> None:
        self.config.setdefault("saved", []).append(certificate)


class _NotARepository:
    pass


@pytest.fixture()
def ext_module(monkeypatch):
    module = types.ModuleType("certkeeper_test_ext")
    module.MemoryRepository = _MemoryRepository
    module.NotARepository = _NotARepository
    monkeypatch.setitem(sys.modules, "certkeeper_test_ext", module)
    return module


def _settings(entries, **extra):
    data = {"domains": ["example.com"], "repositories": {"registered": entries}}
    data.update(extra)
    return build_settings(data)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestLoadRepositories:
    def test_no_entries_yields_only_developer_source(self):
        repositories, sources = load_repositories(_settings([]))

        assert repositories == []
        assert len(sources) == 1
        assert isinstance(sources[0], DeveloperCertificateSource)

    def test_filesystem_is_both_repository_and_source(self, tmp_path):
        repositories, sources = load_repositories(
            _settings([{"backend": "filesystem", "config": {"directory": str(tmp_path)}}]),
        )

        assert len(repositories) == 1
        assert isinstance(repositories[0], FileSystemCertificateRepository)
        assert sources[0] is repositories[0]

    def test_disabled_entries_are_skipped(self, tmp_path):
        repositories, _ = load_repositories(
            _settings(
                [
                    {
                        "backend": "filesystem",
                        "enabled": False,
                        "config": {"directory": str(tmp_path)},
                    },
                ],
            ),
        )

        assert repositories == []

    def test_same_directory_same_password_collapses(self, tmp_path):
        entry = {"backend": "filesystem", "config": {"directory": str(tmp_path), "password": "x"}}

        repositories, _ = load_repositories(_settings([entry, dict(entry)]))

        assert len(repositories) == 1

    def test_same_directory_different_password_is_rejected(self, tmp_path):
        entries = [
            {"backend": "filesystem", "config": {"directory": str(tmp_path), "password": "a"}},
            {"backend": "filesystem", "config": {"directory": str(tmp_path), "password": "b"}},
        ]

        with pytest.raises(ValueError, match="different passwords"):
            load_repositories(_settings(entries))

    def test_external_repository(self, ext_module, make_cert):
        repositories, sources = load_repositories(
            _settings(
                [{"backend": "ext:certkeeper_test_ext.MemoryRepository", "name": "memory"}],
            ),
        )

        assert len(repositories) == 1
        repo = repositories[0]
        assert repo.name == "memory"
        cert = make_cert()
        repo.save(cert, threading.Event())
        assert repo.config["saved"] == [cert]
        # Not a source, so only the developer source is listed.
        assert len(sources) == 1

    def test_external_validate_config_failure_propagates(self, ext_module):
        with pytest.raises(ValueError, match="rejected"):
            load_repositories(
                _settings(
                    [
                        {
                            "backend": "ext:certkeeper_test_ext.MemoryRepository",
                            "config": {"reject": True},
                        },
                    ],
                ),
            )

    def test_external_class_must_be_a_repository(self, ext_module):
        with pytest.raises(ValueError, match="not a subclass"):
            load_repositories(_settings([{"backend": "ext:certkeeper_test_ext.NotARepository"}]))

    def test_invalid_class_path(self):
        with pytest.raises(ValueError, match="Invalid repository class path"):
            load_repositories(_settings([{"backend": "ext:not a path"}]))

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown repository backend"):
            load_repositories(_settings([{"backend": "s3"}]))
