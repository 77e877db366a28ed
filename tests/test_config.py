from __future__ import annotations

import logging

import pytest

from likedgrid.config import DEFAULT_REDIRECT_URL, SCOPES, Settings
from likedgrid.exceptions import ConfigError

ENV_VARS = (
    "CLIENT_ID",
    "CLIENT_SECRET",
    "REDIRECT_URL",
    "HOST",
    "PORT",
    "COOKIE_SECURE",
    "TRACK_CACHE_TTL_SECONDS",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_missing_credentials(tmp_path):
    with pytest.raises(ConfigError, match="CLIENT_ID, CLIENT_SECRET"):
        Settings.from_env(tmp_path / "missing.env")


def test_missing_secret_only(monkeypatch, tmp_path):
    monkeypatch.setenv("CLIENT_ID", "cid")
    with pytest.raises(ConfigError):
        Settings.from_env(tmp_path / "missing.env")


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("CLIENT_ID", "cid")
    monkeypatch.setenv("CLIENT_SECRET", "secret")
    settings = Settings.from_env(tmp_path / "missing.env")

    assert settings.redirect_url == DEFAULT_REDIRECT_URL
    assert settings.port == 3000
    assert settings.cookie_secure is False
    assert settings.state_ttl_seconds == 120
    assert settings.refresh_margin_seconds == 300
    assert settings.scopes == SCOPES
    assert settings.base_url == "http://127.0.0.1:3000"


def test_reads_dotenv_file(monkeypatch, tmp_path):
    dotenv = tmp_path / ".env"
    dotenv.write_text(
        "CLIENT_ID=from-file\n"
        "CLIENT_SECRET=file-secret\n"
        "PORT=8080\n"
        "COOKIE_SECURE=1\n"
        "LOG_LEVEL=debug\n"
    )
    for name in ENV_VARS:
        # load_dotenv writes into os.environ; have monkeypatch undo it
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)

    settings = Settings.from_env(dotenv)

    assert settings.client_id == "from-file"
    assert settings.client_secret == "file-secret"
    assert settings.port == 8080
    assert settings.cookie_secure is True
    assert settings.log_level == "DEBUG"


def test_malformed_port(monkeypatch, tmp_path):
    monkeypatch.setenv("CLIENT_ID", "cid")
    monkeypatch.setenv("CLIENT_SECRET", "secret")
    monkeypatch.setenv("PORT", "three thousand")
    with pytest.raises(ConfigError, match="PORT"):
        Settings.from_env(tmp_path / "missing.env")


def test_unknown_log_level(monkeypatch, tmp_path):
    monkeypatch.setenv("CLIENT_ID", "cid")
    monkeypatch.setenv("CLIENT_SECRET", "secret")
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ConfigError, match="LOG_LEVEL"):
        Settings.from_env(tmp_path / "missing.env")


def test_finds_dotenv_in_working_directory(monkeypatch, tmp_path):
    (tmp_path / ".env").write_text("CLIENT_ID=cwd-id\nCLIENT_SECRET=cwd-secret\n")
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)

    settings = Settings.from_env()

    assert settings.client_id == "cwd-id"
    assert settings.client_secret == "cwd-secret"


def test_warns_when_dotenv_is_missing(monkeypatch, tmp_path, caplog):
    monkeypatch.setenv("CLIENT_ID", "cid")
    monkeypatch.setenv("CLIENT_SECRET", "secret")
    with caplog.at_level(logging.WARNING, logger="likedgrid.config"):
        Settings.from_env(tmp_path / "missing.env")
    assert ".env file not found" in caplog.text
