"""
Odyssey CLI — Owner-side management of agent spending sessions.

Commands:
    odyssey onboard          Create the wallet identity on this device
    odyssey pair             Pair an agent using its pairing code
    odyssey agents           List paired agents
    odyssey request-session  Ask the owner's device to approve a session
    odyssey sessions         List sessions
    odyssey session          Show one session's allowance and expiry
    odyssey revoke           Revoke a session
    odyssey unpair           Unpair an agent and revoke its sessions
    odyssey audit            View the activity trail
"""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime
from typing import Optional

import click

from . import __version__
from .api_client import ApprovalApiClient
from .audit import AuditChainError, AuditTrail, EventType
from .authorization import AuthorizationService
from .config import OdysseyConfig
from .errors import NegotiationError, OdysseyError
from .keys import SessionKeypair, shorten_address
from .ledger import InMemoryLedger
from .models import SessionStatus, SpendingLimit
from .money import NATIVE_DECIMALS, NATIVE_MINT, format_amount
from .session import effective_status, format_duration, format_time_remaining
from .storage import FileSecureStore

logger = logging.getLogger(__name__)

OWNER_KEY_STORAGE_KEY = "odyssey_owner_key"

_STATUS_ICONS = {
    SessionStatus.PENDING: "⏳",
    SessionStatus.ACTIVE: "🟢",
    SessionStatus.EXPIRED: "⌛",
    SessionStatus.REVOKED: "⛔",
}


# ── Wiring ────────────────────────────────────────────────────────

def _api_client(config: OdysseyConfig) -> ApprovalApiClient:
    return ApprovalApiClient(config)


def _service(config: OdysseyConfig) -> AuthorizationService:
    store = FileSecureStore(config.store_dir)
    owner_secret = store.get(OWNER_KEY_STORAGE_KEY)
    return AuthorizationService(
        _api_client(config),
        InMemoryLedger(),
        store,
        signer=SessionKeypair.from_secret_key(owner_secret) if owner_secret else None,
        config=config,
        audit=_audit(config),
    )


def _audit(config: OdysseyConfig) -> AuditTrail:
    return AuditTrail(config.audit_path, config.audit_key_path)


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _parse_duration_to_seconds(value: str) -> int:
    raw = value.strip().lower()
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    if raw.isdigit():
        return int(raw)
    if len(raw) < 2 or raw[-1] not in units or not raw[:-1].isdigit():
        raise ValueError(f"Invalid duration: {value} (expected formats like 3600, 30m, 1h, 7d)")
    return int(raw[:-1]) * units[raw[-1]]


def _parse_limit(value: str) -> SpendingLimit:
    """``native:1.5`` or ``<mint>:<amount>:<decimals>[:<symbol>]``."""
    parts = value.split(":")
    if parts[0] == NATIVE_MINT and len(parts) == 2:
        return SpendingLimit(mint=NATIVE_MINT, amount=parts[1], decimals=NATIVE_DECIMALS, symbol="SOL")
    if len(parts) not in (3, 4):
        raise ValueError(f"Invalid limit: {value} (expected native:<amount> or <mint>:<amount>:<decimals>[:<symbol>])")
    return SpendingLimit(
        mint=parts[0],
        amount=parts[1],
        decimals=int(parts[2]),
        symbol=parts[3] if len(parts) == 4 else None,
    )


def _format_ms(ms: Optional[int]) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """Odyssey — Spending sessions for agents acting on your wallet."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = OdysseyConfig.from_env()


@main.command()
@click.option("--name", default="My Wallet", help="Wallet display name")
@click.pass_obj
def onboard(config: OdysseyConfig, name: str):
    """Create the wallet identity on this device."""
    service = _service(config)
    if service.is_onboarded():
        wallet = service.load_wallet().wallet
        click.echo(f"Already onboarded: {wallet.public_key}")
        return

    owner = SessionKeypair.generate()
    service.store.set(OWNER_KEY_STORAGE_KEY, owner.secret_key)
    try:
        stored = service.create_wallet(owner.public_key, f"local-{owner.public_key[:8]}", name)
    except OdysseyError as e:
        _fail(f"Failed to create wallet: {e}")

    click.echo(f"✓ Wallet created: {stored.wallet.public_key}")
    click.echo(f"   Name:    {stored.wallet.name}")
    click.echo(f"   Network: {config.network}")


@main.command()
@click.argument("code")
@click.option("--agent-id", required=True, help="Agent identifier")
@click.option("--agent-name", required=True, help="Agent display name")
@click.option("--no-wait", is_flag=True, help="Submit the request without waiting for approval")
@click.pass_obj
def pair(config: OdysseyConfig, code: str, agent_id: str, agent_name: str, no_wait: bool):
    """Pair an agent using the code it displays."""
    service = _service(config)
    try:
        request = service.initiate_pairing(code, agent_id, agent_name)
    except (OdysseyError, ValueError) as e:
        _fail(f"Pairing failed: {e}")

    click.echo(f"Pairing requested: {request.request_id}")
    if no_wait:
        return

    click.echo("Waiting for approval...")
    try:
        agent = service.await_pairing(request.request_id)
    except NegotiationError as e:
        _fail(f"Pairing not approved: {e}")

    click.echo(f"✓ Agent paired: {agent.name} ({agent.id})")


@main.command()
@click.pass_obj
def agents(config: OdysseyConfig):
    """List paired agents."""
    service = _service(config)
    paired = service.list_agents()
    if not paired:
        click.echo("No agents paired.")
        return

    for agent in paired:
        live = [
            s for s in service.list_sessions(agent_id=agent.id)
            if effective_status(s) is SessionStatus.ACTIVE
        ]
        click.echo(f"{agent.id}  {agent.name}")
        click.echo(f"   Status:    {agent.status.value}")
        click.echo(f"   Paired:    {_format_ms(agent.paired_at)}")
        click.echo(f"   Last seen: {_format_ms(agent.last_seen)}")
        click.echo(f"   Sessions:  {len(live)} active")


@main.command("request-session")
@click.argument("agent_id")
@click.option(
    "--limit",
    "limits",
    multiple=True,
    required=True,
    help="native:<amount> or <mint>:<amount>:<decimals>[:<symbol>] (repeatable)",
)
@click.option("--duration", default="1h", help="Session duration (e.g., 3600, 30m, 1h, 7d)")
@click.option("--no-wait", is_flag=True, help="Submit the request without waiting for approval")
@click.pass_obj
def request_session(config: OdysseyConfig, agent_id: str, limits: tuple[str, ...], duration: str, no_wait: bool):
    """Ask the owner's device to approve a spending session."""
    try:
        parsed = [_parse_limit(item) for item in limits]
        seconds = _parse_duration_to_seconds(duration)
    except ValueError as e:
        _fail(str(e))

    service = _service(config)
    try:
        request = service.request_session(agent_id, parsed, seconds)
    except (OdysseyError, ValueError) as e:
        _fail(f"Session request failed: {e}")

    click.echo(f"Session requested: {request.request_id}")
    click.echo(f"   Session key: {shorten_address(request.session_pubkey)}")
    click.echo(f"   Duration:    {format_duration(seconds)}")
    for limit in parsed:
        click.echo(f"   Limit:       {format_amount(limit.amount, limit.symbol or limit.mint)}")
    if no_wait:
        return

    click.echo("Waiting for approval...")
    try:
        session = service.await_session(request.request_id)
    except NegotiationError as e:
        _fail(f"Session not approved: {e}")

    click.echo(f"✓ Session approved: {session.id} ({session.status.value})")


@main.command()
@click.option("--agent", "agent_id", default=None, help="Filter by agent ID")
@click.pass_obj
def sessions(config: OdysseyConfig, agent_id: Optional[str]):
    """List sessions, newest first."""
    service = _service(config)
    found = service.list_sessions(agent_id=agent_id)
    if not found:
        click.echo("No sessions found.")
        return

    for s in found:
        status = effective_status(s)
        click.echo(
            f"{_STATUS_ICONS[status]} {s.id}  agent={s.agent_id}  "
            f"{status.value}  {format_time_remaining(s)}"
        )


@main.command()
@click.argument("session_id")
@click.pass_obj
def session(config: OdysseyConfig, session_id: str):
    """Show a session's allowance and expiry."""
    service = _service(config)
    try:
        summary = service.session_summary(session_id)
    except OdysseyError as e:
        _fail(str(e))

    status = SessionStatus(summary["status"])
    click.echo(f"📊 Session {summary['session_id']}")
    click.echo(f"   Agent:        {summary['agent_id']}")
    click.echo(f"   Session key:  {shorten_address(summary['session_pubkey'])}")
    click.echo(f"   Status:       {_STATUS_ICONS[status]} {status.value}")
    click.echo(f"   Expires:      {_format_ms(summary['expires_at'])} ({summary['time_remaining']})")
    click.echo(f"   Transactions: {summary['transactions']}")
    for row in summary["limits"]:
        symbol = row["symbol"] or shorten_address(row["mint"])
        click.echo(
            f"   {symbol}: spent {format_amount(row['spent'])} of {format_amount(row['limit'])}, "
            f"remaining {format_amount(row['remaining'])} ({row['percent_spent']:.0f}%)"
        )


@main.command()
@click.argument("session_id")
@click.pass_obj
def revoke(config: OdysseyConfig, session_id: str):
    """Revoke a session immediately."""
    service = _service(config)
    try:
        revoked = service.revoke(session_id)
    except OdysseyError as e:
        _fail(f"Failed to revoke session: {e}")
    click.echo(f"✓ Session revoked: {revoked.id}")


@main.command()
@click.argument("agent_id")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_obj
def unpair(config: OdysseyConfig, agent_id: str, yes: bool):
    """Unpair an agent. This revokes all of its active sessions."""
    if not yes:
        click.confirm(f"Unpair {agent_id}? This will revoke all active sessions.", abort=True)
    service = _service(config)
    try:
        agent = service.unpair_agent(agent_id)
    except OdysseyError as e:
        _fail(f"Failed to unpair agent: {e}")
    click.echo(f"✓ Agent unpaired: {agent.name} ({agent.id})")


@main.command()
@click.option("--session", "session_id", default=None, help="Filter by session ID")
@click.option("--agent", "agent_id", default=None, help="Filter by agent ID")
@click.option("--type", "event_type", type=click.Choice([e.value for e in EventType]), default=None)
@click.option("--limit", type=int, default=20, help="Number of events")
@click.pass_obj
def audit(
    config: OdysseyConfig,
    session_id: Optional[str],
    agent_id: Optional[str],
    event_type: Optional[str],
    limit: int,
):
    """View the activity trail."""
    trail = _audit(config)
    try:
        events = trail.read_events(
            session_id=session_id,
            agent_id=agent_id,
            event_type=EventType(event_type) if event_type else None,
            limit=limit,
        )
    except AuditChainError as e:
        _fail(str(e))

    if not events:
        click.echo("No audit events found.")
        return

    for event in events:
        ts = time.strftime("%H:%M:%S", time.localtime(event.timestamp / 1000))
        status = "✓" if event.success else "❌"
        amount = f" {event.amount} ({event.mint})" if event.amount else ""
        target = f" → {event.session_id or event.agent_id}" if (event.session_id or event.agent_id) else ""
        reason = f" ({event.reason})" if event.reason and not event.success else ""
        click.echo(f"  {ts} {status} {event.event_type}{amount}{target}{reason}")


if __name__ == "__main__":
    main()
