"""Tests for civictrack.core.settings — runtime settings resolution."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from civictrack.core.retry import RetryPolicy
from civictrack.core.settings import Settings, get_settings


def test_settings_auto_resolves_paths(tmp_path: Path) -> None:
    """Given an explicit repo_root, all sub-dirs derive from it."""
    s = Settings(repo_root=tmp_path)

    assert s.repo_root == tmp_path
    assert s.data_dir == tmp_path / "data"
    assert s.exports_dir == tmp_path / "exports"


def test_settings_db_path(tmp_path: Path) -> None:
    s = Settings(repo_root=tmp_path)
    assert s.db_path == tmp_path / "data" / "civictrack.db"


def test_settings_ensure_dirs_creates_directories(tmp_path: Path) -> None:
    s = Settings(repo_root=tmp_path)
    s.ensure_dirs()

    assert s.data_dir is not None and s.data_dir.is_dir()
    assert s.exports_dir is not None and s.exports_dir.is_dir()


def test_settings_override_individual_dir(tmp_path: Path) -> None:
    custom = tmp_path / "elsewhere"
    s = Settings(repo_root=tmp_path, data_dir=custom)
    assert s.db_path == custom / "civictrack.db"


def test_settings_defaults(tmp_path: Path) -> None:
    s = Settings(repo_root=tmp_path)
    assert s.log_level == "INFO"
    assert s.log_json is True
    assert s.bulk_max_concurrency == 10
    assert s.notes_max_length == 2000
    assert s.retry_policy == RetryPolicy(max_attempts=3, base_delay_ms=1000, max_delay_ms=10000)


def test_settings_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CIVIC_RETRY_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("CIVIC_BULK_MAX_CONCURRENCY", "2")
    s = Settings(repo_root=tmp_path)
    assert s.retry_policy.max_attempts == 5
    assert s.bulk_max_concurrency == 2


def test_settings_rejects_zero_concurrency(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        Settings(repo_root=tmp_path, bulk_max_concurrency=0)


def test_settings_finds_root_from_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "pyproject.toml").touch()
    sub = tmp_path / "data"
    sub.mkdir()
    monkeypatch.chdir(sub)
    assert Settings().repo_root == tmp_path.resolve()


def test_get_settings_is_cached(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "pyproject.toml").touch()
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    try:
        first = get_settings()
        assert first is get_settings()
        assert first.repo_root == tmp_path.resolve()
    finally:
        get_settings.cache_clear()
