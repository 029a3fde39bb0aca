"""
Trust relationship types, states and records.

A trust relationship is a single durable consent record between two wallets:
the requester initiates it, and only the requestee can approve or decline it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .errors import ValidationError


class TrustRelationshipType(str, Enum):
    SEND = "send"
    RECEIVE = "receive"
    MANAGE = "manage"
    DEDUCT = "deduct"

    @classmethod
    def parse(cls, value: str | TrustRelationshipType) -> TrustRelationshipType:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise ValidationError(f"Unknown trust relationship type '{value}' (expected one of: {allowed})")


class TrustState(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    DECLINED = "declined"
    CANCELED = "canceled"

    @classmethod
    def parse(cls, value: str | TrustState) -> TrustState:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown trust relationship state '{value}'")


ACTIVE_STATES = frozenset({TrustState.REQUESTED, TrustState.APPROVED})


@dataclass
class TrustRelationship:
    """A directional trust record between two wallets."""

    id: int
    requester_wallet: str
    requestee_wallet: str
    type: TrustRelationshipType
    state: TrustState
    created_at: int
    updated_at: int

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def involves(self, wallet_id: str) -> bool:
        return wallet_id in (self.requester_wallet, self.requestee_wallet)

    def authorizes(self, sender_wallet: str, receiver_wallet: str) -> bool:
        """True if this approved record lets ``sender_wallet`` move tokens to ``receiver_wallet``."""
        if self.state != TrustState.APPROVED:
            return False
        return self.covers(sender_wallet, receiver_wallet)

    def covers(self, sender_wallet: str, receiver_wallet: str) -> bool:
        """True if this record, in whatever state, is about sender -> receiver movement."""
        if self.type == TrustRelationshipType.SEND:
            return self.requester_wallet == sender_wallet and self.requestee_wallet == receiver_wallet
        if self.type == TrustRelationshipType.RECEIVE:
            return self.requester_wallet == receiver_wallet and self.requestee_wallet == sender_wallet
        return False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "state": self.state.value,
            "requester_wallet": self.requester_wallet,
            "requestee_wallet": self.requestee_wallet,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def relationships_payload(relationships: Iterable[TrustRelationship]) -> dict:
    return {"trust_relationships": [r.to_dict() for r in relationships]}
