"""
End-to-end walkthrough: a transfer blocked on trust, then executed.
"""

import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from tokentrust import (
    AuditTrail,
    LocalCustodyStore,
    LocalWalletDirectory,
    TransferEngine,
    TrustEngine,
    TrustStore,
)


def main():
    print("🌳 tokentrust — trust-gated transfer walkthrough")
    print("=" * 48)
    print()

    workdir = Path(tempfile.mkdtemp(prefix="tokentrust-"))
    db_path = workdir / "tokentrust.sqlite3"
    wallets = LocalWalletDirectory(db_path)
    custody = LocalCustodyStore(db_path)
    audit = AuditTrail(workdir / "audit.jsonl", workdir / "secrets" / "audit_hmac.key")
    trust = TrustEngine(TrustStore(db_path), wallets, audit=audit)
    transfers = TransferEngine(trust, custody, wallets, audit=audit)

    # 1. Wallets and a token
    print("1️⃣  Creating Wallet1, Wallet2 and token T1...")
    wallet1 = wallets.add_wallet("Wallet1")
    wallet2 = wallets.add_wallet("Wallet2")
    custody.issue_token(wallet1.id, token_id="T1")
    print(f"   ✅ T1 owned by {wallet1.name}")
    print()

    # 2. First attempt is deferred
    print("2️⃣  Transferring T1 to Wallet2 without trust...")
    outcome = transfers.transfer("Wallet1", "Wallet2", ["T1"])
    rel = outcome.trust_relationship
    print(f"   ⏳ {outcome.status.value} ({outcome.status_code}), trust #{rel.id} is {rel.state.value}")
    print()

    # 3. Counterparty accepts
    print("3️⃣  Wallet2 accepts the trust request...")
    rel = trust.accept_trust(rel.id, "Wallet2")
    print(f"   ✅ trust #{rel.id} is {rel.state.value}")
    print()

    # 4. Resubmit
    print("4️⃣  Resubmitting the same transfer...")
    outcome = transfers.transfer("Wallet1", "Wallet2", ["T1"])
    owner = wallets.resolve(custody.get_owner("T1"))
    print(f"   ✅ {outcome.status.value} ({outcome.status_code}), T1 now owned by {owner.name}")
    print()

    summary = audit.summary(wallet=wallet2.id)
    print(f"📜 Audit events involving Wallet2: {summary['total_events']}")


if __name__ == "__main__":
    main()
