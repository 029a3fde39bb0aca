"""
Trust relationship engine.

State machine, with the acting wallet passed explicitly on every call:

    requested --accept (requestee)--> approved
    requested --decline (requestee)--> declined
    requested --cancel (requester)--> canceled

``approved``, ``declined`` and ``canceled`` accept no further transitions.
Repeating the transition that produced the current state is a no-op, so
clients can retry safely.
"""

from __future__ import annotations

import logging
from typing import Optional

from .audit import AuditTrail, EventType
from .errors import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from .trust import TrustRelationship, TrustRelationshipType, TrustState
from .trust_store import TrustStore
from .wallet import Wallet, WalletDirectory

logger = logging.getLogger(__name__)

# action -> (party allowed to act, source state, target state)
_TRANSITIONS = {
    "accept": ("requestee", TrustState.REQUESTED, TrustState.APPROVED),
    "decline": ("requestee", TrustState.REQUESTED, TrustState.DECLINED),
    "cancel": ("requester", TrustState.REQUESTED, TrustState.CANCELED),
}

_AUDIT_EVENTS = {
    "accept": EventType.TRUST_ACCEPTED,
    "decline": EventType.TRUST_DECLINED,
    "cancel": EventType.TRUST_CANCELED,
}


class TrustEngine:
    """Creates, transitions and queries trust relationships."""

    def __init__(
        self,
        store: TrustStore,
        wallets: WalletDirectory,
        audit: Optional[AuditTrail] = None,
    ):
        self.store = store
        self.wallets = wallets
        self.audit = audit

    def request_trust(
        self,
        requester_wallet: str,
        requestee_wallet_name: str,
        trust_type: str | TrustRelationshipType,
    ) -> TrustRelationship:
        """Request trust from a counterparty, reusing an active request if one exists."""
        type_ = TrustRelationshipType.parse(trust_type)
        requester = self.wallets.resolve(requester_wallet)
        requestee = self.wallets.resolve(requestee_wallet_name)
        if requester.id == requestee.id:
            raise ValidationError("A wallet cannot request trust with itself")

        relationship, created = self.store.find_or_create(requester.id, requestee.id, type_)
        if created:
            logger.info(
                "Trust requested: #%d %s -> %s (%s)",
                relationship.id,
                requester.name,
                requestee.name,
                type_.value,
            )
            self._audit(EventType.TRUST_REQUESTED, relationship, acting=requester)
        else:
            logger.debug(
                "Trust request %s -> %s (%s) reuses #%d in state %s",
                requester.name,
                requestee.name,
                type_.value,
                relationship.id,
                relationship.state.value,
            )
        return relationship

    def list_trust_relationships(
        self,
        wallet: str,
        state: Optional[str | TrustState] = None,
        trust_type: Optional[str | TrustRelationshipType] = None,
    ) -> list[TrustRelationship]:
        resolved = self.wallets.resolve(wallet)
        return self.store.list_for_wallet(
            resolved.id,
            state=TrustState.parse(state) if state is not None else None,
            type_=TrustRelationshipType.parse(trust_type) if trust_type is not None else None,
        )

    def get_trust_relationship(self, relationship_id: int | str) -> TrustRelationship:
        try:
            relationship_id = int(relationship_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Trust relationship id must be an integer: {relationship_id!r}")
        relationship = self.store.get(relationship_id)
        if relationship is None:
            raise NotFoundError(f"Trust relationship not found: {relationship_id}")
        return relationship

    def accept_trust(self, relationship_id: int, acting_wallet: str) -> TrustRelationship:
        return self._transition(relationship_id, acting_wallet, "accept")

    def decline_trust(self, relationship_id: int, acting_wallet: str) -> TrustRelationship:
        return self._transition(relationship_id, acting_wallet, "decline")

    def cancel_trust(self, relationship_id: int, acting_wallet: str) -> TrustRelationship:
        return self._transition(relationship_id, acting_wallet, "cancel")

    def find_authorization(self, sender_wallet: str, receiver_wallet: str) -> Optional[TrustRelationship]:
        """Approved relationship letting sender move tokens to receiver, if any.

        Takes wallet ids, not names.
        """
        for relationship in self.store.list_between(sender_wallet, receiver_wallet):
            if relationship.authorizes(sender_wallet, receiver_wallet):
                return relationship
        return None

    def find_pending(self, sender_wallet: str, receiver_wallet: str) -> Optional[TrustRelationship]:
        """Outstanding request covering sender -> receiver, if any."""
        for relationship in self.store.list_between(sender_wallet, receiver_wallet):
            if relationship.state == TrustState.REQUESTED and relationship.covers(
                sender_wallet, receiver_wallet
            ):
                return relationship
        return None

    def _transition(self, relationship_id: int, acting_wallet: str, action: str) -> TrustRelationship:
        party, from_state, to_state = _TRANSITIONS[action]
        actor = self.wallets.resolve(acting_wallet)

        # A lost compare-and-set means another request moved the record first;
        # re-read and evaluate against the new state.
        while True:
            relationship = self.get_trust_relationship(relationship_id)
            allowed_id = (
                relationship.requestee_wallet if party == "requestee" else relationship.requester_wallet
            )
            if actor.id != allowed_id:
                raise ForbiddenError(
                    f"Only the {party} of trust relationship {relationship.id} can {action} it"
                )
            if relationship.state == to_state:
                return relationship
            if relationship.state != from_state:
                raise InvalidTransitionError(relationship.id, relationship.state.value, action)
            if self.store.transition(relationship.id, from_state, to_state):
                break

        updated = self.get_trust_relationship(relationship_id)
        logger.info(
            "Trust relationship #%d %s by %s (%s -> %s)",
            updated.id,
            to_state.value,
            actor.name,
            from_state.value,
            to_state.value,
        )
        self._audit(_AUDIT_EVENTS[action], updated, acting=actor)
        return updated

    def _audit(self, event_type: EventType, relationship: TrustRelationship, acting: Wallet) -> None:
        if self.audit is None:
            return
        counterparty = (
            relationship.requestee_wallet
            if acting.id == relationship.requester_wallet
            else relationship.requester_wallet
        )
        self.audit.log(
            event_type,
            wallet=acting.id,
            counterparty=counterparty,
            relationship_id=relationship.id,
            details={"type": relationship.type.value, "state": relationship.state.value},
        )
