"""
OCP CLI - Command Line Interface for the Oblivious Clearing Protocol

Runs auctions end to end against the simulated encrypted backend and an
in-memory ledger. Every participant's key lives in-process, so results are
decrypted with each participant's own grant.
"""

import json
import logging
from pathlib import Path

import click

from ocp.core.config import load_config
from ocp.utils.logger import setup_logging


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="dotenv file with OCP_* settings")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, env_file):
    """Oblivious Clearing Protocol - confidential uniform-price auctions"""
    config = load_config(env_file)
    level = logging.DEBUG if debug else config.log_level_value
    setup_logging(level=level, log_dir=str(config.log_dir), log_to_file=config.log_to_file)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# =============================================================================
# Scenario Runner
# =============================================================================


def run_scenario(scenario: dict, config=None) -> dict:
    """
    Run a full auction from a scenario description.

    Scenario format:
        {
            "inventory": 100,
            "item_token": "ITEM",          (optional)
            "bid_token": "USD",            (optional)
            "bids": [{"name": "alice", "rate": 10, "quantity": 60}, ...]
        }

    Bids are submitted in list order. Each bidder is funded with exactly
    rate * quantity unless a "balance" is given.

    Returns:
        Dict with clearing_rate, sold, unsold, proceeds and per-bidder results
    """
    from ocp.core.auction import AuctionIdCounter
    from ocp.core.engine import AuctionEngine
    from ocp.core.state import ConfidentialLedger
    from ocp.crypto import generate_keypair
    from ocp.crypto.fhe import SimulatedBackend

    item_token = scenario.get("item_token", "ITEM")
    bid_token = scenario.get("bid_token", "USD")
    inventory = int(scenario["inventory"])

    backend = SimulatedBackend()
    ledger = ConfidentialLedger(backend)
    engine = AuctionEngine(backend, ledger, config=config, counter=AuctionIdCounter())

    owner = generate_keypair()
    ledger.mint(item_token, owner.address, inventory)
    ledger.register_token(bid_token)
    ledger.set_operator(item_token, owner.address, engine.address)
    auction = engine.create_auction(
        owner.address, item_token, bid_token, scenario.get("description", "cli"), inventory
    )

    bidders = []
    for entry in scenario.get("bids", []):
        kp = generate_keypair()
        rate, quantity = int(entry["rate"]), int(entry["quantity"])
        ledger.mint(bid_token, kp.address, int(entry.get("balance", rate * quantity)))
        ledger.set_operator(bid_token, kp.address, engine.address)
        engine.submit_bid(
            auction.auction_id,
            kp.address,
            backend.encrypt_input(rate, kp, engine.address),
            backend.encrypt_input(quantity, kp, engine.address),
        )
        bidders.append((entry.get("name", f"bidder{len(bidders) + 1}"), kp))

    clearing_rate = engine.compute_clearing_price(auction.auction_id, owner.address)
    report = engine.finalize_auction(auction.auction_id)

    results = []
    for name, kp in bidders:
        allocation = engine.get_allocation(auction.auction_id, kp.address)
        results.append({
            "name": name,
            "filled": backend.decrypt(allocation.filled, kp.address),
            "paid": backend.decrypt(allocation.owed, kp.address),
            "refund": backend.decrypt(allocation.refund, kp.address),
        })

    return {
        "auction_id": auction.auction_id,
        "clearing_rate": backend.decrypt(clearing_rate, owner.address),
        "sold": backend.decrypt(report.sold_units, owner.address),
        "unsold": backend.decrypt(report.unsold_units, owner.address),
        "proceeds": backend.decrypt(report.proceeds, owner.address),
        "bids": results,
        "operations": len(backend.trace),
    }


# =============================================================================
# Commands
# =============================================================================


@cli.command("simulate")
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
@click.pass_context
def simulate(ctx, scenario_file, as_json):
    """Run an auction scenario from a JSON file"""
    scenario = json.loads(Path(scenario_file).read_text())
    result = run_scenario(scenario, config=ctx.obj["config"])

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    click.echo("=" * 60)
    click.echo(f"  AUCTION {result['auction_id']} - {len(result['bids'])} sealed bids")
    click.echo("=" * 60)
    click.echo(f"  Clearing rate: {result['clearing_rate']}")
    click.echo(f"  Sold: {result['sold']}  Unsold: {result['unsold']}  Proceeds: {result['proceeds']}")
    click.echo()
    click.echo(f"  {'bidder':<12} {'filled':>8} {'paid':>10} {'refund':>10}")
    for row in result["bids"]:
        click.echo(f"  {row['name']:<12} {row['filled']:>8} {row['paid']:>10} {row['refund']:>10}")
    click.echo()
    click.echo(f"  Homomorphic operations: {result['operations']}")


@cli.command("sort")
@click.argument("rates", nargs=-1, type=int, required=True)
def sort_rates(rates):
    """Obliviously sort RATES in descending order"""
    from ocp.core.auction import ObliviousSorter, comparison_count
    from ocp.crypto import generate_keypair
    from ocp.crypto.fhe import SimulatedBackend

    backend = SimulatedBackend()
    viewer = generate_keypair().address
    pairs = [(backend.encrypt(rate), backend.encrypt(index)) for index, rate in enumerate(rates)]
    view = ObliviousSorter(backend).sort_pairs(pairs)

    ordered = []
    for entry in view:
        backend.grant_decrypt_access(entry.rate, viewer)
        backend.grant_decrypt_access(entry.quantity, viewer)
        ordered.append((backend.decrypt(entry.rate, viewer), backend.decrypt(entry.quantity, viewer)))

    click.echo("  ".join(f"{rate}(#{index})" for rate, index in ordered))
    click.echo(f"{comparison_count(len(rates))} oblivious comparisons")


@cli.command("config")
@click.pass_context
def show_config(ctx):
    """Show effective configuration"""
    click.echo(ctx.obj["config"].model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
