"""Local storage helpers: private paths and SQLite connections."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)


def connect(db_path: Path) -> sqlite3.Connection:
    """Open an autocommit connection; callers issue BEGIN IMMEDIATE themselves."""
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


def prepare_database(db_path: Path) -> None:
    """Create the parent directory if needed and switch the database to WAL mode."""
    if not db_path.parent.exists():
        ensure_private_dir(db_path.parent)
    with connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=FULL")
    ensure_private_file(db_path)
