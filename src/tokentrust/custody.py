"""
Token custody: who currently owns each token.

The authoritative custody ledger lives elsewhere; the engines only need to
read an owner and commit a compare-and-set move. ``LocalCustodyStore`` backs
that contract with SQLite, using BEGIN IMMEDIATE so the owner check and the
update happen in one write transaction.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol

from .errors import CustodyConflictError, NotFoundError, ValidationError
from .storage import connect, prepare_database

logger = logging.getLogger(__name__)


@dataclass
class Token:
    """A uniquely identified token and its current owner."""

    id: str
    owner_wallet: str
    created_at: int
    updated_at: int

    def to_dict(self) -> dict:
        return {
            "token": self.id,
            "wallet_id": self.owner_wallet,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CustodyEvent:
    """One executed custody move of a token."""

    token_id: str
    sender_wallet: str
    receiver_wallet: str
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "token": self.token_id,
            "sender_wallet": self.sender_wallet,
            "receiver_wallet": self.receiver_wallet,
            "timestamp": self.timestamp,
        }


class TokenCustodyStore(Protocol):
    def get_owner(self, token_id: str) -> str: ...

    def commit_transfer(
        self,
        token_ids: list[str],
        from_wallet: str,
        to_wallet: str,
        expected_owner: str,
    ) -> None: ...


class LocalCustodyStore:
    """SQLite-backed custody ledger with all-or-nothing transfers."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        prepare_database(self.db_path)
        with connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tokens (
                    id TEXT PRIMARY KEY,
                    owner_wallet TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tokens_owner ON tokens (owner_wallet)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS custody_history (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    token_id TEXT NOT NULL,
                    sender_wallet TEXT NOT NULL,
                    receiver_wallet TEXT NOT NULL,
                    timestamp INTEGER NOT NULL
                )
                """
            )

    def _row_to_token(self, row) -> Token:
        return Token(
            id=row["id"],
            owner_wallet=row["owner_wallet"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def issue_token(self, owner_wallet: str, token_id: Optional[str] = None) -> Token:
        """Place a new token in a wallet (local provisioning only)."""
        token_id = token_id or str(uuid.uuid4())
        now = int(time.time())
        with connect(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            existing = conn.execute("SELECT id FROM tokens WHERE id = ?", (token_id,)).fetchone()
            if existing is not None:
                conn.execute("ROLLBACK")
                raise ValidationError(f"Token already exists: {token_id}")
            conn.execute(
                "INSERT INTO tokens (id, owner_wallet, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (token_id, owner_wallet, now, now),
            )
            conn.execute("COMMIT")
        return Token(id=token_id, owner_wallet=owner_wallet, created_at=now, updated_at=now)

    def get_token(self, token_id: str) -> Token:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM tokens WHERE id = ?", (token_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Token not found: {token_id}")
        return self._row_to_token(row)

    def get_owner(self, token_id: str) -> str:
        return self.get_token(token_id).owner_wallet

    def list_tokens(self, owner_wallet: str) -> list[Token]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM tokens WHERE owner_wallet = ? ORDER BY created_at, id",
                (owner_wallet,),
            ).fetchall()
        return [self._row_to_token(r) for r in rows]

    def commit_transfer(
        self,
        token_ids: Iterable[str],
        from_wallet: str,
        to_wallet: str,
        expected_owner: str,
    ) -> None:
        """Move every token to ``to_wallet`` if all are still held by ``expected_owner``."""
        token_ids = list(token_ids)
        now = int(time.time())
        with connect(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            for token_id in token_ids:
                row = conn.execute(
                    "SELECT owner_wallet FROM tokens WHERE id = ?", (token_id,)
                ).fetchone()
                if row is None:
                    conn.execute("ROLLBACK")
                    raise NotFoundError(f"Token not found: {token_id}")
                if row["owner_wallet"] != expected_owner:
                    conn.execute("ROLLBACK")
                    logger.warning(
                        "Custody conflict on token %s: expected %s, found %s",
                        token_id,
                        expected_owner,
                        row["owner_wallet"],
                    )
                    raise CustodyConflictError(token_id, expected_owner, row["owner_wallet"])
            for token_id in token_ids:
                conn.execute(
                    "UPDATE tokens SET owner_wallet = ?, updated_at = ? WHERE id = ?",
                    (to_wallet, now, token_id),
                )
                conn.execute(
                    """
                    INSERT INTO custody_history (token_id, sender_wallet, receiver_wallet, timestamp)
                    VALUES (?, ?, ?, ?)
                    """,
                    (token_id, from_wallet, to_wallet, now),
                )
            conn.execute("COMMIT")

    def history(self, token_id: str) -> list[CustodyEvent]:
        """Executed moves of a token, oldest first."""
        self.get_token(token_id)
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM custody_history WHERE token_id = ? ORDER BY seq ASC",
                (token_id,),
            ).fetchall()
        return [
            CustodyEvent(
                token_id=r["token_id"],
                sender_wallet=r["sender_wallet"],
                receiver_wallet=r["receiver_wallet"],
                timestamp=r["timestamp"],
            )
            for r in rows
        ]
