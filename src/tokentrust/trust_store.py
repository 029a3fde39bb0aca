"""
Trust relationship persistence.

Records live in SQLite. A partial unique index on
(requester, requestee, type) over active states backs the rule that a pair
never holds two active relationships of the same type, and every
read-modify-write runs inside BEGIN IMMEDIATE.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Optional

from .storage import connect, prepare_database
from .trust import TrustRelationship, TrustRelationshipType, TrustState

logger = logging.getLogger(__name__)


class TrustStore:
    """SQLite-backed trust relationship store."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        prepare_database(self.db_path)
        with connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trust_relationships (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    requester_wallet TEXT NOT NULL,
                    requestee_wallet TEXT NOT NULL,
                    type TEXT NOT NULL,
                    state TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    CHECK (requester_wallet <> requestee_wallet)
                )
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_trust_active_unique
                ON trust_relationships (requester_wallet, requestee_wallet, type)
                WHERE state IN ('requested', 'approved')
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_trust_requestee
                ON trust_relationships (requestee_wallet)
                """
            )

    def _row_to_relationship(self, row: sqlite3.Row) -> TrustRelationship:
        return TrustRelationship(
            id=row["id"],
            requester_wallet=row["requester_wallet"],
            requestee_wallet=row["requestee_wallet"],
            type=TrustRelationshipType(row["type"]),
            state=TrustState(row["state"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _find_active(
        self,
        conn: sqlite3.Connection,
        requester_wallet: str,
        requestee_wallet: str,
        type_: TrustRelationshipType,
    ) -> Optional[sqlite3.Row]:
        return conn.execute(
            """
            SELECT * FROM trust_relationships
            WHERE requester_wallet = ? AND requestee_wallet = ? AND type = ?
              AND state IN ('requested', 'approved')
            """,
            (requester_wallet, requestee_wallet, type_.value),
        ).fetchone()

    def find_or_create(
        self,
        requester_wallet: str,
        requestee_wallet: str,
        type_: TrustRelationshipType,
    ) -> tuple[TrustRelationship, bool]:
        """Return the active relationship for the tuple, creating a requested one if none exists.

        The second element is True when a new record was inserted.
        """
        with connect(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            existing = self._find_active(conn, requester_wallet, requestee_wallet, type_)
            if existing is not None:
                conn.execute("COMMIT")
                return self._row_to_relationship(existing), False

            now = int(time.time())
            cursor = conn.execute(
                """
                INSERT INTO trust_relationships (
                    requester_wallet, requestee_wallet, type, state, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (requester_wallet, requestee_wallet, type_.value, TrustState.REQUESTED.value, now, now),
            )
            row = conn.execute(
                "SELECT * FROM trust_relationships WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            conn.execute("COMMIT")
        return self._row_to_relationship(row), True

    def get(self, relationship_id: int) -> Optional[TrustRelationship]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM trust_relationships WHERE id = ?", (int(relationship_id),)
            ).fetchone()
        return self._row_to_relationship(row) if row is not None else None

    def list_for_wallet(
        self,
        wallet_id: str,
        state: Optional[TrustState] = None,
        type_: Optional[TrustRelationshipType] = None,
    ) -> list[TrustRelationship]:
        """Relationships where the wallet is either party, in insertion order."""
        query = "SELECT * FROM trust_relationships WHERE (requester_wallet = ? OR requestee_wallet = ?)"
        params: list = [wallet_id, wallet_id]
        if state is not None:
            query += " AND state = ?"
            params.append(state.value)
        if type_ is not None:
            query += " AND type = ?"
            params.append(type_.value)
        query += " ORDER BY id ASC"
        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_relationship(r) for r in rows]

    def list_between(self, wallet_a: str, wallet_b: str) -> list[TrustRelationship]:
        """Relationships between two wallets in either direction."""
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM trust_relationships
                WHERE (requester_wallet = ? AND requestee_wallet = ?)
                   OR (requester_wallet = ? AND requestee_wallet = ?)
                ORDER BY id ASC
                """,
                (wallet_a, wallet_b, wallet_b, wallet_a),
            ).fetchall()
        return [self._row_to_relationship(r) for r in rows]

    def transition(
        self,
        relationship_id: int,
        from_state: TrustState,
        to_state: TrustState,
    ) -> bool:
        """Compare-and-set the state; returns False if the record was no longer in ``from_state``."""
        with connect(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                """
                UPDATE trust_relationships
                SET state = ?, updated_at = ?
                WHERE id = ? AND state = ?
                """,
                (to_state.value, int(time.time()), int(relationship_id), from_state.value),
            )
            conn.execute("COMMIT")
        if cursor.rowcount != 1:
            logger.debug(
                "Trust relationship %s left state %s before %s transition",
                relationship_id,
                from_state.value,
                to_state.value,
            )
            return False
        return True
