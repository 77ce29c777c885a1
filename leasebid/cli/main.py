"""
LeaseBid CLI - Command Line Interface for the priority auction engine

Main entry point for all CLI commands. State lives in the SQLite
database under --data-dir.
"""

import asyncio
import json
import click
from pathlib import Path
from typing import Optional

from leasebid.utils.logger import setup_logging, get_logger

logger = get_logger("cli")


def _engine(ctx):
    """Build an engine from the CLI context."""
    from leasebid.core.config import load_config
    from leasebid.engine import MarketEngine

    config = load_config(ctx.obj["env_file"], data_dir=ctx.obj["data_dir"])
    return MarketEngine.from_config(config)


def _emit(ctx, result) -> None:
    """Print a result as JSON; non-zero exit on failure."""
    click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.success:
        ctx.exit(1)


def _run_async(ctx, op):
    """Run an async engine operation and shut the engine down afterwards."""
    engine = _engine(ctx)

    async def runner():
        try:
            return await op(engine)
        finally:
            await engine.stop()

    return asyncio.run(runner())


def _parse_json(value: Optional[str], name: str):
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint=name)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default="~/.leasebid", help="Data directory")
@click.option("--env-file", default=None, help="Path to a .env file")
@click.option("--log-file", default=None, help="Also write logs to this file")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir, env_file, log_file):
    """LeaseBid - Priority auction and incentive allocation engine"""
    import logging

    level = logging.DEBUG if debug else logging.INFO
    setup_logging(level=level, log_file=log_file)
    
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = Path(data_dir).expanduser()
    ctx.obj["env_file"] = env_file
    logger.debug(f"Using data dir {ctx.obj['data_dir']}")


# =============================================================================
# Vertical Commands
# =============================================================================

@cli.group()
def vertical():
    """Vertical registry commands"""
    pass


@vertical.command("add")
@click.argument("slug")
@click.option("--status", default="ACTIVE", type=click.Choice(["ACTIVE", "PROPOSED", "DEPRECATED"]))
@click.pass_context
def vertical_add(ctx, slug, status):
    """Register a vertical"""
    engine = _engine(ctx)
    _emit(ctx, engine.add_vertical(slug, status))


@vertical.command("show")
@click.argument("slug")
@click.pass_context
def vertical_show(ctx, slug):
    """Show a vertical, its lease and bounty total"""
    engine = _engine(ctx)
    if not engine.registry.has_vertical(slug):
        click.echo(f"Vertical {slug} not found")
        ctx.exit(1)
    record = engine.registry.get_vertical(slug)
    click.echo(f"Vertical: {record.slug} ({record.status.value})")
    click.echo(f"  Owner: {record.owner_address or '-'}")
    slot = engine.registry.get_lease(slug)
    click.echo(f"  Lease: {slot.status.value if slot else 'none'}")
    click.echo(f"  Bounty total: {engine.bounties.vertical_total(slug)}")


# =============================================================================
# Auction Commands
# =============================================================================

@cli.group()
def auction():
    """Auction commands"""
    pass


@auction.command("open")
@click.argument("vertical_slug")
@click.option("--reserve", required=True, help="Reserve price")
@click.option("--duration", default=None, type=float, help="Duration in seconds")
@click.option("--kind", default="TRANSACTION", type=click.Choice(["TRANSACTION", "LEASE"]))
@click.pass_context
def auction_open(ctx, vertical_slug, reserve, duration, kind):
    """Open an auction round"""
    engine = _engine(ctx)
    _emit(ctx, engine.open_auction(vertical_slug, reserve, duration, kind))


@auction.command("bid")
@click.argument("auction_id")
@click.argument("bidder")
@click.argument("amount")
@click.pass_context
def auction_bid(ctx, auction_id, bidder, amount):
    """Place a bid"""
    result = _run_async(ctx, lambda engine: engine.place_bid(auction_id, bidder, amount))
    _emit(ctx, result)


@auction.command("close")
@click.argument("auction_id")
@click.option("--force", is_flag=True, help="Settle before the end time")
@click.option("--tx", "tx_json", default=None, help="Transaction attributes as JSON")
@click.option("--seller", default=None, help="Seller payout address for bounty release")
@click.pass_context
def auction_close(ctx, auction_id, force, tx_json, seller):
    """Settle an auction"""
    tx = _parse_json(tx_json, "--tx")
    result = _run_async(
        ctx, lambda engine: engine.close_auction(auction_id, tx=tx, seller_address=seller, force=force)
    )
    _emit(ctx, result)


@auction.command("show")
@click.argument("auction_id")
@click.pass_context
def auction_show(ctx, auction_id):
    """Show an auction and its ranked bids"""
    engine = _engine(ctx)
    _emit(ctx, engine.auction_status(auction_id))


# =============================================================================
# Bounty Commands
# =============================================================================

@cli.group()
def bounty():
    """Bounty pool commands"""
    pass


@bounty.command("deposit")
@click.argument("vertical_slug")
@click.option("--owner", required=True, help="Owner id")
@click.option("--payout", required=True, help="Owner payout address")
@click.option("--amount", required=True, help="Deposit amount")
@click.option("--criteria", "criteria_json", default=None, help="Match criteria as JSON")
@click.pass_context
def bounty_deposit(ctx, vertical_slug, owner, payout, amount, criteria_json):
    """Create a bounty pool"""
    engine = _engine(ctx)
    criteria = _parse_json(criteria_json, "--criteria")
    _emit(ctx, engine.deposit_bounty(vertical_slug, owner, payout, amount, criteria))


@bounty.command("match")
@click.option("--tx", "tx_json", required=True, help="Transaction attributes as JSON")
@click.option("--price", default=None, help="Winning price")
@click.pass_context
def bounty_match(ctx, tx_json, price):
    """Preview bounty allocations for a transaction"""
    tx = _parse_json(tx_json, "--tx")
    result = _run_async(ctx, lambda engine: engine.match_bounties(tx, price))
    _emit(ctx, result)


@bounty.command("release")
@click.argument("pool_id")
@click.argument("amount")
@click.argument("recipient")
@click.argument("tx_id")
@click.pass_context
def bounty_release(ctx, pool_id, amount, recipient, tx_id):
    """Release funds from a pool"""
    engine = _engine(ctx)
    _emit(ctx, engine.release_bounty(pool_id, amount, recipient, tx_id))


@bounty.command("withdraw")
@click.argument("pool_id")
@click.option("--amount", default=None, help="Amount (default: full available)")
@click.pass_context
def bounty_withdraw(ctx, pool_id, amount):
    """Withdraw unreleased funds"""
    engine = _engine(ctx)
    _emit(ctx, engine.withdraw_bounty(pool_id, amount))


@bounty.command("total")
@click.argument("vertical_slug")
@click.pass_context
def bounty_total(ctx, vertical_slug):
    """Available bounty across a vertical's active pools"""
    engine = _engine(ctx)
    _emit(ctx, engine.bounty_total(vertical_slug))


# =============================================================================
# Lease Commands
# =============================================================================

@cli.group()
def lease():
    """Lease lifecycle commands"""
    pass


@lease.command("renew")
@click.argument("vertical_slug")
@click.option("--ref", default=None, help="Renewal payment reference")
@click.pass_context
def lease_renew(ctx, vertical_slug, ref):
    """Renew a lease"""
    engine = _engine(ctx)
    _emit(ctx, engine.renew_lease(vertical_slug, renewal_ref=ref))


@lease.command("sweep")
@click.pass_context
def lease_sweep(ctx):
    """Run one lifecycle sweep"""
    engine = _engine(ctx)
    _emit(ctx, engine.check_leases())


@lease.command("show")
@click.argument("vertical_slug")
@click.pass_context
def lease_show(ctx, vertical_slug):
    """Show a vertical's lease"""
    engine = _engine(ctx)
    _emit(ctx, engine.lease_status(vertical_slug))


# =============================================================================
# Priority Commands
# =============================================================================

@cli.group()
def priority():
    """Priority window audit commands"""
    pass


@priority.command("window")
@click.argument("vertical_slug")
@click.option("--nonce", default="", help="Round nonce")
@click.pass_context
def priority_window(ctx, vertical_slug, nonce):
    """Compute the priority window for (vertical, nonce)"""
    engine = _engine(ctx)
    _emit(ctx, engine.priority_window(vertical_slug, nonce))


@priority.command("verify")
@click.argument("auction_id")
@click.pass_context
def priority_verify(ctx, auction_id):
    """Verify an auction's stored window against its nonce"""
    engine = _engine(ctx)
    _emit(ctx, engine.verify_auction_window(auction_id))


if __name__ == "__main__":
    cli()
