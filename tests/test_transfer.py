"""Tests for trust-gated token transfers."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from tokentrust.audit import AuditTrail, EventType
from tokentrust.custody import LocalCustodyStore
from tokentrust.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from tokentrust.transfer import TransferEngine, TransferStatus
from tokentrust.trust import TrustState
from tokentrust.trust_engine import TrustEngine
from tokentrust.trust_store import TrustStore
from tokentrust.wallet import LocalWalletDirectory


class _RacingCustodyStore(LocalCustodyStore):
    """Holds every ownership read until all racers have read, so all pass the check."""

    def __init__(self, db_path, parties: int):
        super().__init__(db_path)
        self.barrier = threading.Barrier(parties, timeout=10)

    def get_owner(self, token_id):
        owner = super().get_owner(token_id)
        self.barrier.wait()
        return owner


class _ApprovingTrustEngine(TrustEngine):
    """Counterparty accepts the outstanding request just after the authorization lookup."""

    def find_pending(self, sender_wallet, receiver_wallet):
        pending = super().find_pending(sender_wallet, receiver_wallet)
        if pending is not None:
            self.accept_trust(pending.id, pending.requestee_wallet)
        return None


def _make_system(tmp_path, custody=None, audit=None, trust_cls=TrustEngine):
    db_path = tmp_path / "tokentrust.sqlite3"
    wallets = LocalWalletDirectory(db_path)
    custody = custody or LocalCustodyStore(db_path)
    trust = trust_cls(TrustStore(db_path), wallets, audit=audit)
    transfers = TransferEngine(trust, custody, wallets, audit=audit)
    return wallets, custody, trust, transfers


def _approve(trust, sender, receiver):
    rel = trust.request_trust(sender.name, receiver.name, "send")
    return trust.accept_trust(rel.id, receiver.name)


class TestTransferEngine:
    def test_no_trust_yields_pending_and_keeps_custody(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")

        outcome = transfers.transfer(a.name, b.name, ["T1"])

        assert outcome.status == TransferStatus.PENDING_TRUST
        assert outcome.status_code == 202
        assert not outcome.executed
        assert outcome.trust_relationship is not None
        assert outcome.trust_relationship.state == TrustState.REQUESTED
        assert custody.get_owner("T1") == a.id
        assert custody.history("T1") == []

    def test_repeated_pending_attempts_reuse_request(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")

        first = transfers.transfer(a.name, b.name, ["T1"])
        second = transfers.transfer(a.name, b.name, ["T1"])

        assert second.status == TransferStatus.PENDING_TRUST
        assert second.trust_relationship.id == first.trust_relationship.id
        assert len(trust.list_trust_relationships(a.name)) == 1

    def test_pending_reuses_receive_request(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")
        receive = trust.request_trust(b.name, a.name, "receive")

        outcome = transfers.transfer(a.name, b.name, ["T1"])

        assert outcome.trust_relationship.id == receive.id
        assert len(trust.list_trust_relationships(a.name)) == 1

    def test_approval_landing_during_deferral_executes(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path, trust_cls=_ApprovingTrustEngine)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")
        rel = trust.request_trust(a.name, b.name, "send")

        outcome = transfers.transfer(a.name, b.name, ["T1"])

        assert trust.get_trust_relationship(rel.id).state == TrustState.APPROVED
        assert outcome.status == TransferStatus.EXECUTED
        assert custody.get_owner("T1") == b.id
        assert len(trust.list_trust_relationships(a.name)) == 1

    def test_executes_after_approval(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")
        custody.issue_token(a.id, token_id="T2")
        _approve(trust, a, b)

        outcome = transfers.transfer(a.name, b.name, ["T1", "T2"])

        assert outcome.status == TransferStatus.EXECUTED
        assert outcome.status_code == 200
        assert custody.get_owner("T1") == b.id
        assert custody.get_owner("T2") == b.id
        assert [e.receiver_wallet for e in custody.history("T1")] == [b.id]

    def test_approval_authorizes_future_transfers(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")
        custody.issue_token(a.id, token_id="T2")
        _approve(trust, a, b)

        assert transfers.transfer(a.name, b.name, ["T1"]).executed
        assert transfers.transfer(a.name, b.name, ["T2"]).executed

    def test_approval_is_directional(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(b.id, token_id="T1")
        _approve(trust, a, b)

        outcome = transfers.transfer(b.name, a.name, ["T1"])

        assert outcome.status == TransferStatus.PENDING_TRUST
        assert custody.get_owner("T1") == b.id

    def test_wallet1_wallet2_scenario(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        w1 = wallets.add_wallet("Wallet1")
        w2 = wallets.add_wallet("Wallet2")
        custody.issue_token(w1.id, token_id="T1")

        assert transfers.transfer("Wallet1", "Wallet2", ["T1"]).status == TransferStatus.PENDING_TRUST

        rel = trust.request_trust("Wallet1", "Wallet2", "send")
        assert [r.state for r in trust.list_trust_relationships("Wallet2")] == [TrustState.REQUESTED]

        assert trust.accept_trust(rel.id, "Wallet2").state == TrustState.APPROVED

        outcome = transfers.transfer("Wallet1", "Wallet2", ["T1"])
        assert outcome.status == TransferStatus.EXECUTED
        assert custody.get_owner("T1") == w2.id

    def test_sender_not_owner_forbidden(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(b.id, token_id="T1")
        _approve(trust, a, b)

        with pytest.raises(ForbiddenError):
            transfers.transfer(a.name, b.name, ["T1"])
        assert custody.get_owner("T1") == b.id

    def test_partial_ownership_moves_nothing(self, tmp_path):
        wallets, custody, trust, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")
        custody.issue_token(b.id, token_id="T2")
        _approve(trust, a, b)

        with pytest.raises(ForbiddenError):
            transfers.transfer(a.name, b.name, ["T1", "T2"])
        assert custody.get_owner("T1") == a.id

    def test_empty_token_set(self, tmp_path):
        wallets, _, _, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")

        with pytest.raises(ValidationError):
            transfers.transfer(a.name, b.name, [])
        with pytest.raises(ValidationError):
            transfers.transfer(a.name, b.name, ["  "])

    def test_unknown_receiver_and_token(self, tmp_path):
        wallets, custody, _, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")

        with pytest.raises(NotFoundError):
            transfers.transfer(a.name, "ghost", ["T1"])
        with pytest.raises(NotFoundError):
            transfers.transfer(a.name, b.name, ["missing"])

    def test_self_transfer_rejected(self, tmp_path):
        wallets, custody, _, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        custody.issue_token(a.id, token_id="T1")

        with pytest.raises(ValidationError):
            transfers.transfer(a.name, a.id, ["T1"])

    def test_concurrent_transfers_of_same_token(self, tmp_path):
        db_path = tmp_path / "tokentrust.sqlite3"
        racing = _RacingCustodyStore(db_path, parties=2)
        wallets, custody, trust, transfers = _make_system(tmp_path, custody=racing)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        c = wallets.add_wallet("Wallet3")
        custody.issue_token(a.id, token_id="T1")
        _approve(trust, a, b)
        _approve(trust, a, c)

        def attempt(receiver):
            try:
                transfers.transfer(a.name, receiver.name, ["T1"])
                return receiver.id
            except ConflictError:
                return None

        with ThreadPoolExecutor(max_workers=2) as ex:
            results = list(ex.map(attempt, [b, c]))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert results.count(None) == 1
        assert custody.get_token("T1").owner_wallet == winners[0]
        assert len(custody.history("T1")) == 1

    def test_audit_records_outcomes(self, tmp_path):
        audit = AuditTrail(tmp_path / "audit.jsonl", tmp_path / "secret" / "audit_hmac.key")
        wallets, custody, trust, transfers = _make_system(tmp_path, audit=audit)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")

        pending = transfers.transfer(a.name, b.name, ["T1"])
        trust.accept_trust(pending.trust_relationship.id, b.name)
        transfers.transfer(a.name, b.name, ["T1"])
        with pytest.raises(ForbiddenError):
            transfers.transfer(a.name, b.name, ["T1"])

        types = [e.event_type for e in audit.read_events(wallet=a.id)]
        assert types == [
            EventType.TRUST_REQUESTED.value,
            EventType.TRANSFER_PENDING.value,
            EventType.TRUST_ACCEPTED.value,
            EventType.TRANSFER_EXECUTED.value,
            EventType.TRANSFER_REJECTED.value,
        ]

    def test_outcome_payload(self, tmp_path):
        wallets, custody, _, transfers = _make_system(tmp_path)
        a = wallets.add_wallet("Wallet1")
        b = wallets.add_wallet("Wallet2")
        custody.issue_token(a.id, token_id="T1")

        payload = transfers.transfer(a.name, b.name, ["T1", "T1"]).to_dict()

        assert payload["status"] == "pending_trust"
        assert payload["tokens"] == ["T1"]
        assert payload["trust_relationship"]["state"] == "requested"
