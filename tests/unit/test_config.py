"""Tests for settings and defaults."""

from pathlib import Path

import pytest

from ebook_sync.config import (
    DEFAULT_NOTES_PORT,
    DEFAULT_SERVER_URL,
    POLL_INTERVAL,
    Backend,
    Settings,
    read_token_file,
    resolve_data_directory,
)


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("SERVER_URL", "BACKEND", "TOKEN", "PORT", "DATA_DIR", "POLL_INTERVAL"):
        monkeypatch.delenv(f"EBOOK_SYNC_{name}", raising=False)
    monkeypatch.setattr("ebook_sync.config.API_TOKEN_FILES", [])

    settings = Settings.from_env()

    assert settings.server_url == DEFAULT_SERVER_URL
    assert settings.backend is Backend.FLAT
    assert settings.token is None
    assert settings.port == DEFAULT_NOTES_PORT
    assert settings.data_dir is None
    assert settings.poll_interval == POLL_INTERVAL


def test_settings_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EBOOK_SYNC_SERVER_URL", "http://nas:3000/")
    monkeypatch.setenv("EBOOK_SYNC_BACKEND", "NESTED")
    monkeypatch.setenv("EBOOK_SYNC_TOKEN", "abc")
    monkeypatch.setenv("EBOOK_SYNC_PORT", "41185")
    monkeypatch.setenv("EBOOK_SYNC_DATA_DIR", str(tmp_path))

    settings = Settings.from_env()

    assert settings.server_url == "http://nas:3000"
    assert settings.backend is Backend.NESTED
    assert settings.token == "abc"
    assert settings.port == 41185
    assert settings.resolved_data_dir == tmp_path


def test_token_falls_back_to_first_existing_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    token_file = tmp_path / "token.txt"
    token_file.write_text("file-token\n")
    monkeypatch.setattr(
        "ebook_sync.config.API_TOKEN_FILES", [tmp_path / "missing.txt", token_file]
    )
    monkeypatch.delenv("EBOOK_SYNC_TOKEN", raising=False)

    assert read_token_file() == "file-token"
    assert Settings.from_env().token == "file-token"


def test_resolve_data_directory_prefers_existing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    existing = tmp_path / "second"
    existing.mkdir()
    monkeypatch.setattr(
        "ebook_sync.config.DATA_DIRECTORIES", [tmp_path / "first", existing]
    )
    assert resolve_data_directory() == existing

    monkeypatch.setattr("ebook_sync.config.DATA_DIRECTORIES", [tmp_path / "a", tmp_path / "b"])
    assert resolve_data_directory() == tmp_path / "a"
