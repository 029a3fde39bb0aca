"""
Token transfer authorization.

Flow:
1. Validate the token set and resolve both wallets
2. Check the sender currently owns every token
3. Look up an approved trust relationship for sender -> receiver
4. Commit the custody move (all tokens or none), or
5. Defer: find or open a send-trust request and report the transfer as pending,
   unless that request has been approved meanwhile (then commit as in 4)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .audit import AuditTrail, EventType
from .custody import TokenCustodyStore
from .errors import ConflictError, ForbiddenError, TokenTrustError, ValidationError
from .trust import TrustRelationship, TrustRelationshipType
from .trust_engine import TrustEngine
from .wallet import Wallet, WalletDirectory

logger = logging.getLogger(__name__)


class TransferStatus(str, Enum):
    EXECUTED = "executed"
    PENDING_TRUST = "pending_trust"


_STATUS_CODES = {
    TransferStatus.EXECUTED: 200,
    TransferStatus.PENDING_TRUST: 202,
}


@dataclass
class TransferOutcome:
    """Result of a transfer attempt that did not fail."""

    status: TransferStatus
    sender_wallet: str
    receiver_wallet: str
    token_ids: list[str] = field(default_factory=list)
    trust_relationship: Optional[TrustRelationship] = None

    @property
    def executed(self) -> bool:
        return self.status == TransferStatus.EXECUTED

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.status]

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "sender_wallet": self.sender_wallet,
            "receiver_wallet": self.receiver_wallet,
            "tokens": list(self.token_ids),
            "trust_relationship": (
                self.trust_relationship.to_dict() if self.trust_relationship is not None else None
            ),
        }


class TransferEngine:
    """Decides whether a transfer executes, waits for trust, or is rejected."""

    def __init__(
        self,
        trust: TrustEngine,
        custody: TokenCustodyStore,
        wallets: WalletDirectory,
        audit: Optional[AuditTrail] = None,
    ):
        self.trust = trust
        self.custody = custody
        self.wallets = wallets
        self.audit = audit

    def transfer(
        self,
        sender_wallet: str,
        receiver_wallet: str,
        token_ids: Iterable[str],
    ) -> TransferOutcome:
        tokens = _normalize_token_ids(token_ids)
        sender = self.wallets.resolve(sender_wallet)
        receiver = self.wallets.resolve(receiver_wallet)
        if sender.id == receiver.id:
            raise ValidationError("Sender and receiver wallet must differ")

        try:
            self._check_ownership(sender, tokens)
        except TokenTrustError as e:
            self._audit_rejected(sender, receiver, tokens, e)
            raise

        authorization = self.trust.find_authorization(sender.id, receiver.id)
        if authorization is None:
            # The request may have been approved since the lookup above.
            relationship = self._pending_relationship(sender, receiver)
            if not relationship.authorizes(sender.id, receiver.id):
                return self._defer(sender, receiver, tokens, relationship)
            authorization = relationship

        try:
            self.custody.commit_transfer(tokens, sender.id, receiver.id, expected_owner=sender.id)
        except ConflictError as e:
            self._audit_rejected(sender, receiver, tokens, e)
            raise

        logger.info(
            "Transfer executed: %d token(s) %s -> %s under trust #%d",
            len(tokens),
            sender.name,
            receiver.name,
            authorization.id,
        )
        if self.audit is not None:
            self.audit.log(
                EventType.TRANSFER_EXECUTED,
                wallet=sender.id,
                counterparty=receiver.id,
                relationship_id=authorization.id,
                token_ids=tokens,
            )
        return TransferOutcome(
            status=TransferStatus.EXECUTED,
            sender_wallet=sender.id,
            receiver_wallet=receiver.id,
            token_ids=tokens,
        )

    def _check_ownership(self, sender: Wallet, tokens: list[str]) -> None:
        for token_id in tokens:
            owner = self.custody.get_owner(token_id)
            if owner != sender.id:
                raise ForbiddenError(f"Wallet {sender.name} does not own token {token_id}")

    def _pending_relationship(self, sender: Wallet, receiver: Wallet) -> TrustRelationship:
        relationship = self.trust.find_pending(sender.id, receiver.id)
        if relationship is None:
            relationship = self.trust.request_trust(sender.id, receiver.id, TrustRelationshipType.SEND)
        return relationship

    def _defer(
        self,
        sender: Wallet,
        receiver: Wallet,
        tokens: list[str],
        relationship: TrustRelationship,
    ) -> TransferOutcome:
        logger.info(
            "Transfer deferred: %s -> %s waits on trust #%d",
            sender.name,
            receiver.name,
            relationship.id,
        )
        if self.audit is not None:
            self.audit.log(
                EventType.TRANSFER_PENDING,
                wallet=sender.id,
                counterparty=receiver.id,
                relationship_id=relationship.id,
                token_ids=tokens,
            )
        return TransferOutcome(
            status=TransferStatus.PENDING_TRUST,
            sender_wallet=sender.id,
            receiver_wallet=receiver.id,
            token_ids=tokens,
            trust_relationship=relationship,
        )

    def _audit_rejected(
        self,
        sender: Wallet,
        receiver: Wallet,
        tokens: list[str],
        error: TokenTrustError,
    ) -> None:
        if self.audit is None:
            return
        self.audit.log(
            EventType.TRANSFER_REJECTED,
            wallet=sender.id,
            counterparty=receiver.id,
            token_ids=tokens,
            success=False,
            reason=str(error),
            details={"error": type(error).__name__},
        )


def _normalize_token_ids(token_ids: Iterable[str]) -> list[str]:
    if isinstance(token_ids, str):
        token_ids = [token_ids]
    tokens: list[str] = []
    for token_id in token_ids:
        token_id = str(token_id).strip()
        if not token_id:
            raise ValidationError("Token ids must not be blank")
        if token_id not in tokens:
            tokens.append(token_id)
    if not tokens:
        raise ValidationError("At least one token is required")
    return tokens
