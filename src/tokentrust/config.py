"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


DEFAULT_HOME = Path.home() / ".tokentrust"
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass
class Settings:
    """Filesystem locations and logging level for a tokentrust installation."""

    home: Path
    db_path: Path
    audit_path: Path
    audit_key_path: Path
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ
        home = Path(env.get("TOKENTRUST_HOME") or DEFAULT_HOME).expanduser()
        db_path = env.get("TOKENTRUST_DB_PATH")
        audit_path = env.get("TOKENTRUST_AUDIT_PATH")
        audit_key_path = env.get("TOKENTRUST_AUDIT_KEY_PATH")
        return cls(
            home=home,
            db_path=Path(db_path) if db_path else home / "tokentrust.sqlite3",
            audit_path=Path(audit_path) if audit_path else home / "audit.jsonl",
            audit_key_path=(
                Path(audit_key_path)
                if audit_key_path
                else home.parent / ".tokentrust-secrets" / "audit_hmac.key"
            ),
            log_level=(env.get("TOKENTRUST_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
        )
