"""Tests for environment-driven settings."""

from pathlib import Path

from tokentrust.config import Settings


def test_defaults_follow_home(tmp_path):
    settings = Settings.from_env({"TOKENTRUST_HOME": str(tmp_path / "tt")})

    assert settings.db_path == tmp_path / "tt" / "tokentrust.sqlite3"
    assert settings.audit_path == tmp_path / "tt" / "audit.jsonl"
    assert settings.audit_key_path == tmp_path / ".tokentrust-secrets" / "audit_hmac.key"
    assert settings.log_level == "WARNING"


def test_explicit_overrides(tmp_path):
    settings = Settings.from_env(
        {
            "TOKENTRUST_HOME": str(tmp_path),
            "TOKENTRUST_DB_PATH": str(tmp_path / "other.db"),
            "TOKENTRUST_AUDIT_PATH": str(tmp_path / "log" / "a.jsonl"),
            "TOKENTRUST_LOG_LEVEL": "debug",
        }
    )

    assert settings.db_path == Path(tmp_path / "other.db")
    assert settings.audit_path == tmp_path / "log" / "a.jsonl"
    assert settings.log_level == "DEBUG"
