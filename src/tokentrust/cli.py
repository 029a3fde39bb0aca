"""
tokentrust CLI — trust-gated token transfers between wallets.

Commands:
    tokentrust wallet     Add and list local wallets
    tokentrust token      Issue, inspect and trace tokens
    tokentrust trust      Request, accept, decline, cancel and list trust
    tokentrust transfer   Move tokens from one wallet to another
    tokentrust audit      View audit trail
"""

from __future__ import annotations

import json
import logging
import sys
import time
from dataclasses import dataclass
from typing import Optional

import click

from . import __version__
from .audit import AuditTrail
from .config import Settings
from .custody import LocalCustodyStore
from .errors import TokenTrustError
from .transfer import TransferEngine
from .trust import TrustRelationship, TrustRelationshipType, TrustState, relationships_payload
from .trust_engine import TrustEngine
from .trust_store import TrustStore
from .wallet import LocalWalletDirectory


TRUST_TYPES = [t.value for t in TrustRelationshipType]
TRUST_STATES = [s.value for s in TrustState]


@dataclass
class _Services:
    settings: Settings
    wallets: LocalWalletDirectory
    custody: LocalCustodyStore
    audit: AuditTrail
    trust: TrustEngine
    transfers: TransferEngine


def _services() -> _Services:
    ctx = click.get_current_context()
    root = ctx.find_root()
    if root.obj is None:
        settings = Settings.from_env()
        wallets = LocalWalletDirectory(settings.db_path)
        custody = LocalCustodyStore(settings.db_path)
        audit = AuditTrail(settings.audit_path, settings.audit_key_path)
        trust = TrustEngine(TrustStore(settings.db_path), wallets, audit=audit)
        root.obj = _Services(
            settings=settings,
            wallets=wallets,
            custody=custody,
            audit=audit,
            trust=trust,
            transfers=TransferEngine(trust, custody, wallets, audit=audit),
        )
    return root.obj


def _fail(e: TokenTrustError) -> None:
    click.echo(f"❌ {e}", err=True)
    sys.exit(1)


def _wallet_name(wallet_id: str) -> str:
    try:
        return _services().wallets.resolve(wallet_id).name
    except TokenTrustError:
        return wallet_id


def _describe(relationship: TrustRelationship) -> str:
    return (
        f"#{relationship.id} {_wallet_name(relationship.requester_wallet)} -> "
        f"{_wallet_name(relationship.requestee_wallet)} "
        f"[{relationship.type.value}] {relationship.state.value}"
    )


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (default: env TOKENTRUST_LOG_LEVEL or WARNING)",
)
def main(log_level: Optional[str]):
    """tokentrust — trust-gated token custody transfers."""
    level = (log_level or Settings.from_env().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.group("wallet")
def wallet_group():
    """Local wallet directory."""
    pass


@wallet_group.command("add")
@click.argument("name")
def wallet_add(name: str):
    """Register a wallet in the local directory."""
    try:
        wallet = _services().wallets.add_wallet(name)
    except TokenTrustError as e:
        _fail(e)
    click.echo(f"✅ Wallet added: {wallet.name}")
    click.echo(f"   ID: {wallet.id}")


@wallet_group.command("list")
def wallet_list():
    """List wallets in the local directory."""
    wallets = _services().wallets.list_wallets()
    if not wallets:
        click.echo("No wallets.")
        return
    for wallet in wallets:
        click.echo(f"{wallet.name}  {wallet.id}")


@main.group("token")
def token_group():
    """Token custody operations."""
    pass


@token_group.command("issue")
@click.option("--owner", required=True, help="Wallet name or id that receives the token")
@click.option("--token-id", default=None, help="Token id (default: random UUID)")
def token_issue(owner: str, token_id: Optional[str]):
    """Place a new token in a wallet."""
    services = _services()
    try:
        wallet = services.wallets.resolve(owner)
        token = services.custody.issue_token(wallet.id, token_id=token_id)
    except TokenTrustError as e:
        _fail(e)
    click.echo(f"✅ Token issued: {token.id}")
    click.echo(f"   Owner: {wallet.name}")


@token_group.command("show")
@click.argument("token_id")
def token_show(token_id: str):
    """Show a token and its current owner."""
    try:
        token = _services().custody.get_token(token_id)
    except TokenTrustError as e:
        _fail(e)
    payload = token.to_dict()
    payload["wallet"] = _wallet_name(token.owner_wallet)
    click.echo(json.dumps(payload, indent=2))


@token_group.command("list")
@click.option("--wallet", "wallet_name", required=True, help="Wallet name or id")
def token_list(wallet_name: str):
    """List tokens held by a wallet."""
    services = _services()
    try:
        wallet = services.wallets.resolve(wallet_name)
    except TokenTrustError as e:
        _fail(e)
    tokens = services.custody.list_tokens(wallet.id)
    if not tokens:
        click.echo(f"No tokens in {wallet.name}.")
        return
    for token in tokens:
        click.echo(token.id)


@token_group.command("history")
@click.argument("token_id")
def token_history(token_id: str):
    """Show every executed custody move of a token."""
    try:
        events = _services().custody.history(token_id)
    except TokenTrustError as e:
        _fail(e)
    if not events:
        click.echo(f"No transfers recorded for {token_id}.")
        return
    for event in events:
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(event.timestamp))
        click.echo(
            f"{ts}  {_wallet_name(event.sender_wallet)} -> {_wallet_name(event.receiver_wallet)}"
        )


@main.group("trust")
def trust_group():
    """Trust relationship lifecycle."""
    pass


@trust_group.command("request")
@click.option("--as", "acting", required=True, help="Acting (requesting) wallet")
@click.option("--wallet", "counterparty", required=True, help="Counterparty wallet name")
@click.option("--type", "trust_type", default="send", show_default=True,
              help=f"Trust type ({', '.join(TRUST_TYPES)})")
def trust_request(acting: str, counterparty: str, trust_type: str):
    """Request a trust relationship with another wallet."""
    try:
        relationship = _services().trust.request_trust(acting, counterparty, trust_type)
    except TokenTrustError as e:
        _fail(e)
    click.echo(f"✅ Trust relationship {_describe(relationship)}")


@trust_group.command("list")
@click.option("--as", "acting", required=True, help="Acting wallet")
@click.option("--state", type=click.Choice(TRUST_STATES), default=None, help="Filter by state")
@click.option("--type", "trust_type", type=click.Choice(TRUST_TYPES), default=None, help="Filter by type")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the raw payload")
def trust_list(acting: str, state: Optional[str], trust_type: Optional[str], as_json: bool):
    """List trust relationships the wallet takes part in."""
    try:
        relationships = _services().trust.list_trust_relationships(
            acting, state=state, trust_type=trust_type
        )
    except TokenTrustError as e:
        _fail(e)
    if as_json:
        click.echo(json.dumps(relationships_payload(relationships), indent=2))
        return
    if not relationships:
        click.echo("No trust relationships.")
        return
    for relationship in relationships:
        click.echo(_describe(relationship))


def _transition_command(action: str, relationship_id: int, acting: str) -> None:
    engine = _services().trust
    handler = {
        "accept": engine.accept_trust,
        "decline": engine.decline_trust,
        "cancel": engine.cancel_trust,
    }[action]
    try:
        relationship = handler(relationship_id, acting)
    except TokenTrustError as e:
        _fail(e)
    click.echo(f"✅ Trust relationship {_describe(relationship)}")


@trust_group.command("accept")
@click.argument("relationship_id", type=int)
@click.option("--as", "acting", required=True, help="Acting wallet (must be the requestee)")
def trust_accept(relationship_id: int, acting: str):
    """Accept a trust request addressed to this wallet."""
    _transition_command("accept", relationship_id, acting)


@trust_group.command("decline")
@click.argument("relationship_id", type=int)
@click.option("--as", "acting", required=True, help="Acting wallet (must be the requestee)")
def trust_decline(relationship_id: int, acting: str):
    """Decline a trust request addressed to this wallet."""
    _transition_command("decline", relationship_id, acting)


@trust_group.command("cancel")
@click.argument("relationship_id", type=int)
@click.option("--as", "acting", required=True, help="Acting wallet (must be the requester)")
def trust_cancel(relationship_id: int, acting: str):
    """Withdraw a trust request this wallet made."""
    _transition_command("cancel", relationship_id, acting)


@main.command()
@click.option("--sender", required=True, help="Sending wallet")
@click.option("--receiver", required=True, help="Receiving wallet")
@click.option("--token", "tokens", multiple=True, required=True, help="Token id (repeatable)")
def transfer(sender: str, receiver: str, tokens: tuple[str, ...]):
    """Transfer tokens, or open a trust request if none is approved yet."""
    try:
        outcome = _services().transfers.transfer(sender, receiver, list(tokens))
    except TokenTrustError as e:
        _fail(e)

    if outcome.executed:
        click.echo(f"✅ Transfer executed: {len(outcome.token_ids)} token(s) {sender} -> {receiver}")
        return
    relationship = outcome.trust_relationship
    click.echo(f"⏳ Transfer pending: waiting on trust relationship {_describe(relationship)}")
    click.echo(f"   Ask {_wallet_name(relationship.requestee_wallet)} to accept it, then resubmit.")


@main.command()
@click.option("--wallet", "wallet_name", default=None, help="Only events involving this wallet")
@click.option("--limit", default=20, help="Number of events to show")
def audit(wallet_name: Optional[str], limit: int):
    """View the audit trail."""
    services = _services()
    wallet_id = None
    if wallet_name:
        try:
            wallet_id = services.wallets.resolve(wallet_name).id
        except TokenTrustError as e:
            _fail(e)
    try:
        events = services.audit.read_events(wallet=wallet_id, limit=limit)
    except RuntimeError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    if not events:
        click.echo("No audit events.")
        return
    for event in events:
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(event.timestamp))
        status = "✅" if event.success else "❌"
        line = f"{status} {ts} {event.event_type}"
        if event.relationship_id is not None:
            line += f" trust=#{event.relationship_id}"
        if event.token_ids:
            line += f" tokens={','.join(event.token_ids)}"
        if event.reason:
            line += f" ({event.reason})"
        click.echo(line)


if __name__ == "__main__":
    main()
