"""Wallet directory interface and a SQLite-backed local adapter."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import ConflictError, NotFoundError, ValidationError
from .storage import connect, prepare_database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Wallet:
    """A custodial wallet, referenced by id."""

    id: str
    name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class WalletDirectory(Protocol):
    def resolve(self, name_or_id: str) -> Wallet: ...


class LocalWalletDirectory:
    """Stand-in for the wallet service.

    Wallet provisioning belongs to another system; this adapter only exists so
    the engines can be run and tested locally.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        prepare_database(self.db_path)
        with connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wallets (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    created_at INTEGER NOT NULL
                )
                """
            )

    def add_wallet(self, name: str) -> Wallet:
        name = name.strip()
        if not name:
            raise ValidationError("Wallet name must not be empty")
        wallet = Wallet(id=str(uuid.uuid4()), name=name)
        with connect(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            existing = conn.execute("SELECT id FROM wallets WHERE name = ?", (name,)).fetchone()
            if existing is not None:
                conn.execute("ROLLBACK")
                raise ConflictError(f"Wallet already exists: {name}")
            conn.execute(
                "INSERT INTO wallets (id, name, created_at) VALUES (?, ?, ?)",
                (wallet.id, wallet.name, int(time.time())),
            )
            conn.execute("COMMIT")
        logger.info("Wallet added: %s (%s)", wallet.name, wallet.id)
        return wallet

    def resolve(self, name_or_id: str) -> Wallet:
        """Look a wallet up by id first, then by name."""
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, name FROM wallets WHERE id = ? OR name = ? ORDER BY id = ? DESC LIMIT 1",
                (name_or_id, name_or_id, name_or_id),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Wallet not found: {name_or_id}")
        return Wallet(id=row["id"], name=row["name"])

    def list_wallets(self) -> list[Wallet]:
        with connect(self.db_path) as conn:
            rows = conn.execute("SELECT id, name FROM wallets ORDER BY created_at, name").fetchall()
        return [Wallet(id=row["id"], name=row["name"]) for row in rows]
