"""Tests for core/config.py."""

from portcullis.core.config import Settings


def test_default_settings():
    s = Settings()
    assert s.app_port == 8000
    assert s.app_host == "0.0.0.0"
    assert s.log_level == "INFO"
    assert s.database_url  # non-empty
    assert s.failed_signin_limit == 5
    assert s.failed_signin_frozen_minutes == 15
    assert s.login_rate_limit == "20/minute"


def test_sync_db_url():
    s = Settings(database_url="postgresql+asyncpg://user:pw@localhost/db")
    assert "+asyncpg" not in s.sync_database_url
    assert "postgresql" in s.sync_database_url


def test_env_override(monkeypatch):
    monkeypatch.setenv("FAILED_SIGNIN_LIMIT", "9")
    monkeypatch.setenv("AUTH_STATE", "custom-state")
    s = Settings()
    assert s.failed_signin_limit == 9
    assert s.auth_state == "custom-state"


def test_log_redaction_masks_credentials():
    from portcullis.core.logging import REDACTED, redact_secrets

    event = redact_secrets(
        None, "info", {"event": "Password rejected", "user": "acme/alice", "password": "hunter2", "code": ""}
    )
    assert event["password"] == REDACTED
    assert event["user"] == "acme/alice"
    assert event["code"] == ""
