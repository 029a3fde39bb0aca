"""
tokentrust — trust-gated token transfers between custodial wallets.

A wallet asks a counterparty for trust → the counterparty accepts →
transfers between them execute; until then they are reported as pending.
"""

__version__ = "0.1.0"

from .errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TokenTrustError,
    ValidationError,
)
from .wallet import LocalWalletDirectory, Wallet, WalletDirectory
from .custody import CustodyEvent, LocalCustodyStore, Token, TokenCustodyStore
from .trust import TrustRelationship, TrustRelationshipType, TrustState, relationships_payload
from .trust_store import TrustStore
from .trust_engine import TrustEngine
from .transfer import TransferEngine, TransferOutcome, TransferStatus
from .audit import AuditTrail, EventType
from .config import Settings

__all__ = [
    "TokenTrustError", "ValidationError", "NotFoundError", "ForbiddenError", "ConflictError",
    "Wallet", "WalletDirectory", "LocalWalletDirectory",
    "Token", "CustodyEvent", "TokenCustodyStore", "LocalCustodyStore",
    "TrustRelationship", "TrustRelationshipType", "TrustState", "relationships_payload",
    "TrustStore", "TrustEngine",
    "TransferEngine", "TransferOutcome", "TransferStatus",
    "AuditTrail", "EventType", "Settings",
]
