"""
Audit trail for trust and transfer operations.

Events are append-only JSONL entries with an HMAC hash chain so
tampering is detected during reads.
"""

from __future__ import annotations

import fcntl
import hashlib
import hmac
import json
import os
import secrets
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .storage import ensure_private_dir, ensure_private_file


class EventType(str, Enum):
    TRUST_REQUESTED = "trust_requested"
    TRUST_ACCEPTED = "trust_accepted"
    TRUST_DECLINED = "trust_declined"
    TRUST_CANCELED = "trust_canceled"
    TRANSFER_EXECUTED = "transfer_executed"
    TRANSFER_PENDING = "transfer_pending"
    TRANSFER_REJECTED = "transfer_rejected"


@dataclass
class AuditEvent:
    """A single audit trail entry."""

    event_type: str
    timestamp: float
    wallet: Optional[str] = None
    counterparty: Optional[str] = None
    relationship_id: Optional[int] = None
    token_ids: Optional[list[str]] = None
    success: bool = True
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def to_json(self) -> str:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, separators=(",", ":"))


class AuditTrail:
    """Tamper-evident append-only audit log."""

    def __init__(self, path: Path, key_path: Path):
        self.path = path
        self.key_path = key_path

        ensure_private_dir(self.path.parent)
        ensure_private_dir(self.key_path.parent)
        ensure_private_file(self.path)
        self._lock_path = self.path.with_name(self.path.name + ".lock")
        ensure_private_file(self._lock_path)

        self._hmac_key = self._load_or_create_key()
        # Chain head and the (size, mtime) of the file it was read from.
        self._head_hash = ""
        self._head_stamp: Optional[tuple[int, int]] = None

    @contextmanager
    def _lock(self):
        with open(self._lock_path, "r+") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

    def _load_or_create_key(self) -> bytes:
        env_key = os.getenv("TOKENTRUST_AUDIT_HMAC_KEY")
        if env_key:
            return env_key.encode()
        if self.key_path.exists() and self.key_path.stat().st_size > 0:
            return self.key_path.read_bytes().strip()
        key = secrets.token_hex(32).encode()
        self.key_path.write_bytes(key)
        ensure_private_file(self.key_path)
        return key

    def _scan_last_hash(self) -> str:
        last = ""
        with open(self.path, "r") as f:
            for line in f:
                if not line.strip():
                    continue
                last = json.loads(line).get("event_hash", "")
        return last

    def _file_stamp(self) -> tuple[int, int]:
        st = self.path.stat()
        return st.st_size, st.st_mtime_ns

    def _chain_head(self) -> str:
        """Last event hash; rescans only when another writer changed the file."""
        stamp = self._file_stamp()
        if stamp != self._head_stamp:
            self._head_hash = self._scan_last_hash()
            self._head_stamp = stamp
        return self._head_hash

    def _event_hash(self, event_payload: dict, prev_hash: str) -> str:
        canonical = json.dumps(event_payload, sort_keys=True, separators=(",", ":"))
        digest = hmac.new(self._hmac_key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256)
        return digest.hexdigest()

    def log(
        self,
        event_type: EventType,
        wallet: Optional[str] = None,
        counterparty: Optional[str] = None,
        relationship_id: Optional[int] = None,
        token_ids: Optional[list[str]] = None,
        success: bool = True,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        base_payload = {
            "event_type": event_type.value,
            "timestamp": time.time(),
            "wallet": wallet,
            "counterparty": counterparty,
            "relationship_id": relationship_id,
            "token_ids": list(token_ids) if token_ids is not None else None,
            "success": success,
            "reason": reason,
            "details": details,
        }
        payload = {k: v for k, v in base_payload.items() if v is not None}

        # Several engines (and processes) share one file; the cached head is
        # only trusted while the file is exactly as this instance left it.
        with self._lock():
            prev_hash = self._chain_head()
            current_hash = self._event_hash(payload, prev_hash)
            event = AuditEvent(
                **payload,
                prev_hash=prev_hash or None,
                event_hash=current_hash,
            )
            with open(self.path, "a") as f:
                f.write(event.to_json() + "\n")
                f.flush()
                os.fsync(f.fileno())
            self._head_hash = current_hash
            self._head_stamp = self._file_stamp()
        return event

    def read_events(
        self,
        wallet: Optional[str] = None,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events: list[AuditEvent] = []
        expected_prev = ""
        with self._lock(), open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                raw = json.loads(line)

                payload = {
                    k: v
                    for k, v in raw.items()
                    if k not in {"prev_hash", "event_hash"}
                }
                prev_hash = raw.get("prev_hash", "") or ""
                event_hash = raw.get("event_hash", "") or ""
                if prev_hash != expected_prev:
                    raise RuntimeError("Audit chain broken: previous hash mismatch")
                expected_hash = self._event_hash(payload, prev_hash)
                if not hmac.compare_digest(expected_hash, event_hash):
                    raise RuntimeError("Audit chain broken: event hash mismatch")
                expected_prev = event_hash

                if wallet and wallet not in (raw.get("wallet"), raw.get("counterparty")):
                    continue
                if event_type and raw.get("event_type") != event_type.value:
                    continue

                events.append(
                    AuditEvent(
                        **{
                            k: v
                            for k, v in raw.items()
                            if k in AuditEvent.__dataclass_fields__
                        }
                    )
                )
            self._head_hash = expected_prev
            self._head_stamp = self._file_stamp()

        return events[-limit:]

    def summary(self, wallet: Optional[str] = None) -> dict:
        events = self.read_events(wallet=wallet, limit=10000)
        by_type: dict[str, int] = {}
        for e in events:
            by_type[e.event_type] = by_type.get(e.event_type, 0) + 1
        failures = [e for e in events if not e.success]
        return {
            "total_events": len(events),
            "by_type": by_type,
            "failures": len(failures),
            "last_event": events[-1].to_json() if events else None,
        }
