"""CLI entry point for autominer."""

import asyncio
from datetime import datetime

import click
from eth_account import Account
from web3 import Web3

from .analytics import AnalyticsEngine
from .calculator import required_size, to_fiat
from .config import MiningConfig, load_config, parse_hours
from .engine import MiningEngine
from .errors import ConfigError
from .ledger import Web3Ledger
from .log import setup_logging
from .loop import AutoMiner
from .market import ChainlinkFiatSource, DEFAULT_FIAT_RATE, StaticFiatSource, UniswapSpotSource
from .models import Strategy
from .store import DEFAULT_DIR, MiningStore


def _read_key(raw_key: str | None) -> str | None:
    if raw_key and not raw_key.startswith("0x"):
        # Could be a hex key without prefix or a file path
        if len(raw_key) == 64 and all(c in "0123456789abcdefABCDEF" for c in raw_key):
            raw_key = "0x" + raw_key
        else:
            try:
                with open(raw_key) as f:
                    raw_key = f.read().strip()
            except OSError as e:
                raise click.ClickException(f"Cannot read key file {raw_key}: {e.strerror}") from e
    return raw_key


def _hours(ctx, param, value):
    if value is None:
        return None
    try:
        return parse_hours(value)
    except ConfigError as e:
        raise click.BadParameter(str(e)) from e


@click.group()
@click.option("--rpc", envvar="RPC_URL", default=None, help="Outer layer (L1) RPC URL")
@click.option("--inner-rpc", envvar="INNER_RPC_URL", default=None, help="Inner layer RPC URL")
@click.option("--key", envvar="PRIVATE_KEY", default=None, help="Private key (hex) or path to keyfile")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="Path to config.yaml")
@click.option("--data-dir", default=None, help=f"Session store directory (default: {DEFAULT_DIR})")
@click.option("--log-level", default="INFO", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.option("--log-file", default=None, help="Also write JSON logs to this file")
@click.pass_context
def cli(ctx, rpc, inner_rpc, key, config_path, data_dir, log_level, log_file):
    """Auto-miner: mine the inner-layer token when conditions allow."""
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    setup_logging(log_level.upper(), log_file or cfg.get("log_file"))
    ctx.ensure_object(dict)

    ctx.obj["rpc_url"] = rpc or cfg.get("rpc_url")
    ctx.obj["inner_rpc_url"] = inner_rpc or cfg.get("inner_rpc_url")
    ctx.obj["data_dir"] = data_dir or cfg.get("data_dir", DEFAULT_DIR)
    ctx.obj["config"] = cfg
    ctx.obj["private_key"] = _read_key(key or cfg.get("private_key"))


def get_ledger(ctx) -> Web3Ledger:
    obj = ctx.obj
    if not obj.get("rpc_url"):
        raise click.ClickException("RPC URL required (--rpc or config rpc_url)")
    if not obj.get("inner_rpc_url"):
        raise click.ClickException("Inner RPC URL required (--inner-rpc or config inner_rpc_url)")
    if not obj.get("private_key"):
        raise click.ClickException("Private key required (--key or config private_key)")
    account = Account.from_key(obj["private_key"])
    kwargs = {k: obj["config"][k] for k in ("inbox_address", "inner_chain_id") if k in obj["config"]}
    return Web3Ledger.connect(obj["rpc_url"], obj["inner_rpc_url"], account, **kwargs)


def get_sources(ctx, ledger: Web3Ledger):
    cfg = ctx.obj["config"]
    market = cfg.get("market") or {}
    spot = None
    if market.get("router") and market.get("yield_token") and market.get("base_token"):
        spot = UniswapSpotSource(ledger.inner, market["router"], market["yield_token"], market["base_token"])
    if "fiat_rate" in cfg:
        fiat = StaticFiatSource(float(cfg["fiat_rate"]))
    elif cfg.get("chainlink_feed"):
        fiat = ChainlinkFiatSource(ledger.outer, cfg["chainlink_feed"])
    else:
        fiat = ChainlinkFiatSource(ledger.outer)
    return spot, fiat


def build_config(file_cfg: dict, overrides: dict) -> MiningConfig:
    raw = dict(file_cfg.get("mining") or {})
    raw.update({k: v for k, v in overrides.items() if v is not None})
    return MiningConfig.from_dict(raw)


@cli.command(name="start")
@click.option("-s", "--strategy", default=None, type=click.Choice([s.value for s in Strategy]), help="Mining strategy (default: auto)")
@click.option("-c", "--max-cost", default=None, type=float, help="Maximum cost per unit in USD")
@click.option("-e", "--min-efficiency", default=None, type=float, help="Minimum mining efficiency %%")
@click.option("-H", "--hours", default=None, callback=_hours, help="Hours to mine, e.g. '2-6,14-18'")
@click.option("-b", "--budget", default=None, type=float, help="Daily budget in ETH")
@click.option("-t", "--target", default=None, type=float, help="Target amount to mine (whole units)")
@click.option("-i", "--interval", default=None, type=float, help="Check interval in seconds (default: 30)")
@click.option("-m", "--max-size", default=None, type=int, help="Maximum operation size in KB (default: 100)")
@click.option("--retries", default=None, type=int, help="Attempts per cycle (default: 3)")
@click.option("--gas-multiplier", default=None, type=float, help="Gas price multiplier (default: 1.5)")
@click.option("--no-escalate", is_flag=True, default=False, help="Do not raise the tip on retries")
@click.pass_context
def start(ctx, strategy, max_cost, min_efficiency, hours, budget, target, interval,
          max_size, retries, gas_multiplier, no_escalate):
    """Start auto-mining with the given strategy and thresholds."""
    try:
        config = build_config(ctx.obj["config"], {
            "strategy": strategy,
            "max_cost_per_unit": max_cost,
            "min_efficiency": min_efficiency,
            "schedule_hours": hours,
            "daily_budget": Web3.to_wei(budget, "ether") if budget is not None else None,
            "target_yield": Web3.to_wei(target, "ether") if target is not None else None,
            "check_interval": interval,
            "max_size": max_size * 1024 if max_size is not None else None,
            "max_retries": retries,
            "gas_multiplier": gas_multiplier,
            "escalate": False if no_escalate else None,
        })
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    click.echo("Configuration:")
    click.echo(f"  Strategy:        {config.strategy.value}")
    if config.max_cost_per_unit is not None:
        click.echo(f"  Max cost/unit:   ${config.max_cost_per_unit}")
    if config.min_efficiency is not None:
        click.echo(f"  Min efficiency:  {config.min_efficiency}%")
    if config.schedule_hours:
        click.echo(f"  Schedule:        hours {','.join(str(h) for h in sorted(config.schedule_hours))}")
    if config.daily_budget is not None:
        click.echo(f"  Daily budget:    {Web3.from_wei(config.daily_budget, 'ether')} ETH")
    if config.target_yield is not None:
        click.echo(f"  Target:          {Web3.from_wei(config.target_yield, 'ether')}")
    click.echo(f"  Check interval:  {config.check_interval:g}s")
    click.echo(f"  Max size:        {config.max_size / 1024:.1f}KB")

    ledger = get_ledger(ctx)
    spot, fiat = get_sources(ctx, ledger)
    store = MiningStore(ctx.obj["data_dir"])
    miner = AutoMiner(ledger, store, config, spot=spot, fiat=fiat)

    async def _run():
        if not await ledger.is_connected():
            raise click.ClickException("Cannot connect to RPC endpoints")
        balance = await ledger.get_balance()
        click.echo(f"  Wallet:          {ledger.address} ({Web3.from_wei(balance, 'ether'):.6f} ETH)")
        return await miner.run()

    try:
        state = asyncio.run(_run())
    except KeyboardInterrupt:
        state = miner.state
        if state:
            miner.finish(state)
    finally:
        store.close()
    if state:
        click.echo(f"\nSession {state.session_id} finished"
                   + (f" ({state.stop_reason} reached)" if state.stop_reason else ""))


@cli.command()
@click.option("--size", "size_kb", default=100.0, type=float, help="Operation size in KB (default: 100)")
@click.option("--target", default=None, type=float, help="Also estimate the size needed to mine this many whole units")
@click.pass_context
def preview(ctx, size_kb, target):
    """Show projected cost and yield at current conditions."""
    ledger = get_ledger(ctx)
    _, fiat = get_sources(ctx, ledger)
    engine = MiningEngine(ledger)
    size = int(size_kb * 1024)

    async def _preview():
        return await engine.preview(size), await fiat.get_fiat_rate(), await ledger.get_conditions()

    proj, rate, cond = asyncio.run(_preview())
    click.echo(f"Operation size:    {size} bytes")
    click.echo(f"Total gas:         {proj.total_gas}")
    click.echo(f"Estimated cost:    {Web3.from_wei(proj.cost, 'ether')} ETH")
    click.echo(f"Estimated yield:   {Web3.from_wei(proj.yield_minted, 'ether')}")
    click.echo(f"Efficiency:        {proj.efficiency:.2f}%")
    click.echo(f"Cost per unit:     ${to_fiat(proj.cost_per_unit, rate):.5f}")
    if target is not None:
        est = required_size(Web3.to_wei(target, "ether"), cond.base_fee, cond.mint_rate)
        note = "" if est.feasible else " (capped, needs more than one operation)"
        click.echo(f"\nSize for target:   {est.size} bytes{note}")
        click.echo(f"Cost for target:   {Web3.from_wei(est.estimated_cost, 'ether')} ETH")


@cli.command()
@click.option("-s", "--session", "session_id", default=None, type=int, help="Analyze a specific session")
@click.option("-l", "--last", default=10, type=int, help="Show last N transactions (default: 10)")
@click.option("--fiat-rate", default=DEFAULT_FIAT_RATE, type=float, help="USD per ETH for display")
@click.pass_context
def analyze(ctx, session_id, last, fiat_rate):
    """Show mining statistics, best hours and recent transactions."""
    store = MiningStore(ctx.obj["data_dir"])
    stats = store.get_session_stats(session_id) if session_id else store.get_all_time_stats()
    if not stats:
        click.echo("No mining data found")
        return

    click.echo("Performance summary:")
    click.echo(f"  Total transactions:  {stats.tx_count}")
    click.echo(f"  Total mined:         {stats.total_yield:.2f}")
    click.echo(f"  Total ETH spent:     {stats.total_cost:.4f}")
    click.echo(f"  Average efficiency:  {stats.avg_efficiency:.1f}%")
    click.echo(f"  Average cost/unit:   ${stats.avg_cost_per_unit * fiat_rate:.5f}")

    best = store.get_best_hours(3)
    if best:
        click.echo("\nBest mining hours:")
        for i, h in enumerate(best, 1):
            click.echo(f"  {i}. Hour {h['hour']}:00 - {h['avg_yield_per_cost']:.2f} per ETH ({h['tx_count']} txs)")

    recent = store.get_recent_transactions(last)
    if recent:
        click.echo(f"\nLast {len(recent)} transactions:")
        for tx in recent:
            when = click.style(str(_ms(tx.timestamp)), dim=True)
            click.echo(f"  {when}: {tx.yield_minted:.4f} for {tx.cost:.6f} ETH ({tx.efficiency:.1f}%)")


def _ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000).replace(microsecond=0)


@cli.command()
@click.option("-s", "--session", "session_id", default=None, type=int, help="Report on a specific session")
@click.option("-d", "--days", default=None, type=float, help="Only the last N days")
@click.option("--market-price", default=None, type=float, help="Current USD price of one mined unit")
@click.option("--fiat-rate", default=DEFAULT_FIAT_RATE, type=float, help="USD per ETH")
@click.pass_context
def report(ctx, session_id, days, market_price, fiat_rate):
    """Full analytics report with recommendations."""
    store = MiningStore(ctx.obj["data_dir"])
    engine = AnalyticsEngine(store)
    r = engine.generate_report(session_id, days, market_price=market_price, fiat_rate=fiat_rate)

    click.echo(f"Transactions:        {r.tx_count}")
    click.echo(f"Total mined:         {r.total_yield:.4f}")
    click.echo(f"Total ETH spent:     {r.total_cost:.6f}")
    click.echo(f"Average efficiency:  {r.avg_efficiency:.1f}%")
    click.echo(f"Break-even price:    ${r.break_even_price:.5f}")
    if r.roi is not None:
        click.echo(f"Unrealized PnL:      ${r.unrealized_pnl:.2f} (ROI {r.roi:.1f}%)")
    if r.best_transaction:
        click.echo(f"Best tx:             {r.best_transaction.outer_id} ({r.best_transaction.cost_per_unit:.8f} ETH/unit)")
        click.echo(f"Worst tx:            {r.worst_transaction.outer_id} ({r.worst_transaction.cost_per_unit:.8f} ETH/unit)")
    if r.best_hour is not None:
        click.echo(f"Best / worst hour:   {r.best_hour}:00 / {r.worst_hour}:00")
    click.echo(f"Active days:         {r.active_days}")
    click.echo(f"\nSuggested strategy:  {r.optimal_strategy}")
    if r.suggested_schedule:
        click.echo(f"Suggested hours:     {','.join(str(h) for h in r.suggested_schedule)}")
    for line in r.improvements:
        click.echo(f"  - {line}")

    windows = engine.find_optimal_windows()
    if windows:
        click.echo("\nOptimal windows:")
        for w in windows:
            click.echo(f"  {w['hour']:>2}:00  score={w['score']:.1f}  {w['reason']}")


@cli.command()
def profiles():
    """Print example invocations."""
    examples = [
        ("Basic (auto mode)", "autominer start --max-cost 0.0005 --budget 0.01"),
        ("Conservative", "autominer start --max-cost 0.0003 --budget 0.005"),
        ("Night mining", "autominer start -H 2-6 --budget 0.02"),
        ("Arbitrage only", "autominer start --strategy arbitrage --interval 10"),
        ("Target amount", "autominer start --target 50000 --max-cost 0.0004"),
    ]
    for title, command in examples:
        click.echo(f"{title}:")
        click.echo(f"  {command}\n")


if __name__ == "__main__":
    cli()
