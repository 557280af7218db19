"""CLI entry point for the pindeal service."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from pindeal.config import load_config
from pindeal.daemon import PindealDaemon, run_daemon
from pindeal.errors import PindealError, ValidationError
from pindeal.ipfs.client import KuboClient
from pindeal.lotus.client import LotusClient
from pindeal.models.records import Contract, PinRequest
from pindeal.services.gateway import validate_duration
from pindeal.services.pricing import PricingCalculator

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _run(coro) -> None:
    """Run a coroutine, turning service errors into a clean exit."""
    try:
        asyncio.run(coro)
    except PindealError as exc:
        click.echo(f"Error ({exc.code}): {exc}", err=True)
        sys.exit(1)


def _service(ctx: click.Context) -> PindealDaemon:
    return PindealDaemon(load_config(ctx.obj["config_path"]))


def _echo_request(r: PinRequest) -> None:
    click.echo(f"Request:   {r.id}")
    click.echo(f"  CID:       {r.cid}")
    click.echo(f"  Owner:     {r.owner}")
    click.echo(f"  Status:    {r.status.value}")
    click.echo(f"  Duration:  {r.duration_days} days")
    click.echo(f"  Size:      {r.size_bytes} bytes")
    click.echo(f"  Price:     {r.price} FIL")
    if r.failure_reason:
        click.echo(f"  Failure:   {r.failure_reason}")
    if r.archived_at:
        click.echo(f"  Archived:  {r.archived_at}")
    click.echo(f"  Created:   {r.created_at}")
    for c in r.contracts:
        _echo_contract(c, indent="  ")


def _echo_contract(c: Contract, indent: str = "") -> None:
    parent = f" renews={c.parent_contract_id[:8]}" if c.parent_contract_id else ""
    click.echo(
        f"{indent}[{c.status.value:9s}] contract={c.id[:8]} provider={c.provider_id or '-'} "
        f"deal={c.deal_handle[:16] or '-'} epochs={c.start_epoch}-{c.end_epoch} "
        f"price={c.storage_price} FIL{parent}"
    )


owner_option = click.option(
    "--owner", envvar="PINDEAL_OWNER", required=True, help="Request owner (or PINDEAL_OWNER)",
)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """pindeal - turns IPFS pin requests into Filecoin storage deals."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    if verbose:
        level = logging.DEBUG
    else:
        level = _LOG_LEVELS.get(load_config(config_path).log_level.lower(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the pin-to-deal daemon."""
    cfg = load_config(ctx.obj["config_path"])
    if not cfg.lotus.wallet:
        click.echo("Error: No client wallet configured.", err=True)
        click.echo("Set PINDEAL_WALLET env var or [lotus] wallet in config.", err=True)
        sys.exit(1)

    click.echo(f"Starting pindeal daemon ({cfg.worker.concurrency} workers)")
    asyncio.run(run_daemon(cfg))


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the effective configuration."""
    cfg = load_config(ctx.obj["config_path"])
    click.echo(f"Kubo API:     {cfg.ipfs.api_url}")
    click.echo(f"Lotus API:    {cfg.lotus.api_url}")
    click.echo(f"Lotus token:  {'***configured***' if cfg.lotus.token else '(not set)'}")
    click.echo(f"Wallet:       {cfg.lotus.wallet or '(not set)'}")
    click.echo(f"State DB:     {cfg.db_path}")
    click.echo(f"Queue DB:     {cfg.worker.queue_db_path}")
    click.echo(f"Workers:      {cfg.worker.concurrency}")
    click.echo(f"Retry:        {cfg.retry.max_attempts} attempts, {cfg.retry.backoff_seconds}s backoff")
    click.echo(f"Pricing:      {cfg.pricing.base_price_per_gb_per_month} FIL/GB/month "
               f"+{cfg.pricing.markup_percentage}%")
    click.echo(f"Renewal:      {cfg.renewal.threshold_epochs} epochs before expiry")
    click.echo(f"Cleanup:      {cfg.cleanup.action.value} after {cfg.cleanup.retention_days} days")
    if cfg.rate_limit.enabled:
        click.echo(f"Rate limit:   {cfg.rate_limit.requests_per_minute}/min via {cfg.rate_limit.redis_url}")
    else:
        click.echo("Rate limit:   disabled")


# ── Requests ───────────────────────────────────────────


@cli.command()
@click.argument("cid")
@click.option("--days", "duration_days", type=int, required=True, help="Storage duration in days")
@owner_option
@click.pass_context
def submit(ctx: click.Context, cid: str, duration_days: int, owner: str) -> None:
    """Submit a pin request for CID."""

    async def _submit():
        async with _service(ctx) as svc:
            request_id = await svc.gateway.submit(owner, cid, duration_days)
            click.echo(f"Submitted request {request_id}")

    _run(_submit())


@cli.command()
@click.argument("request_id")
@owner_option
@click.pass_context
def get(ctx: click.Context, request_id: str, owner: str) -> None:
    """Show a pin request and its contracts."""

    async def _get():
        async with _service(ctx) as svc:
            _echo_request(await svc.gateway.get(request_id, owner))

    _run(_get())


@cli.command("list")
@owner_option
@click.option("--page", type=int, default=1)
@click.option("--limit", type=int, default=20)
@click.option("--status", "filter_status", default=None, help="pending, pinned, failed or cancelled")
@click.pass_context
def list_requests(
    ctx: click.Context, owner: str, page: int, limit: int, filter_status: str | None
) -> None:
    """List pin requests, newest first."""

    async def _list():
        async with _service(ctx) as svc:
            items, total = await svc.gateway.list_requests(owner, page, limit, filter_status)
            if not items:
                click.echo("No requests.")
                return
            for r in items:
                click.echo(f"  [{r.status.value:9s}] {r.id} cid={r.cid} days={r.duration_days} "
                           f"price={r.price} created={r.created_at}")
            click.echo(f"Page {page}: {len(items)} of {total}")

    _run(_list())


@cli.command()
@click.argument("request_id")
@owner_option
@click.pass_context
def cancel(ctx: click.Context, request_id: str, owner: str) -> None:
    """Cancel a pending pin request."""

    async def _cancel():
        async with _service(ctx) as svc:
            request = await svc.gateway.cancel(request_id, owner)
            click.echo(f"Request {request.id} is {request.status.value}")

    _run(_cancel())


# ── Deals ──────────────────────────────────────────────


@cli.command()
@click.argument("size_bytes", type=int)
@click.option("--days", "duration_days", type=int, required=True)
@click.pass_context
def quote(ctx: click.Context, size_bytes: int, duration_days: int) -> None:
    """Price SIZE_BYTES stored for --days."""
    cfg = load_config(ctx.obj["config_path"])
    try:
        if size_bytes < 0:
            raise ValidationError("size_bytes must be >= 0")
        validate_duration(duration_days)
        q = PricingCalculator(cfg.pricing).quote(size_bytes, duration_days)
    except PindealError as exc:
        click.echo(f"Error ({exc.code}): {exc}", err=True)
        sys.exit(1)
    click.echo(f"Price:    {q.price} {q.currency}")
    click.echo(f"  Size:     {q.size_bytes} bytes")
    click.echo(f"  Duration: {q.duration_days} days")
    click.echo(f"  Rate:     {q.base_price_per_gb_per_month} {q.currency}/GB/month +{q.markup_percentage}%")


@cli.command()
@click.pass_context
def providers(ctx: click.Context) -> None:
    """List available storage providers, best first."""

    async def _providers():
        async with _service(ctx) as svc:
            ranked = await svc.gateway.providers()
            if not ranked:
                click.echo("No providers available.")
                return
            for p in ranked:
                click.echo(f"  {p.id:12s} power={p.power} price={p.price} reputation={p.reputation:.2f}")

    _run(_providers())


@cli.command()
@click.argument("cid")
@owner_option
@click.pass_context
def deals(ctx: click.Context, cid: str, owner: str) -> None:
    """Show the storage contracts for CID."""

    async def _deals():
        async with _service(ctx) as svc:
            contracts = await svc.gateway.contracts_for_content(cid, owner)
            if not contracts:
                click.echo("No contracts.")
                return
            for c in contracts:
                _echo_contract(c)

    _run(_deals())


@cli.command()
@click.argument("cid")
@owner_option
@click.pass_context
def renew(ctx: click.Context, cid: str, owner: str) -> None:
    """Renew the active contracts for CID now."""

    async def _renew():
        async with _service(ctx) as svc:
            successors = await svc.gateway.renew_for_content(cid, owner)
            if not successors:
                click.echo("Nothing renewed.")
                return
            for c in successors:
                _echo_contract(c)

    _run(_renew())


# ── Operations ─────────────────────────────────────────


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show request and contract counts."""

    async def _stats():
        async with _service(ctx) as svc:
            s = await svc.gateway.stats()
            click.echo(f"Requests:      {s.total_requests}")
            for name, count in sorted(s.requests_by_status.items()):
                click.echo(f"  {name:12s} {count}")
            click.echo("Contracts:")
            for name, count in sorted(s.contracts_by_status.items()):
                click.echo(f"  {name:12s} {count}")
            click.echo(f"Committed:     {s.total_committed_price} FIL")
            click.echo(f"Pinned bytes:  {s.total_pinned_bytes}")
            click.echo(f"Queue depth:   {s.queue_depth}")

    _run(_stats())


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check the store, Kubo and Lotus."""

    async def _health() -> bool:
        async with _service(ctx) as svc:
            h = await svc.gateway.health()
            click.echo(f"Store:    {'ok' if h.store_ok else 'DOWN'}")
            click.echo(f"Kubo:     {'ok' if h.storage_network_ok else 'DOWN'}")
            click.echo(f"Lotus:    {'ok' if h.ledger_ok else 'DOWN'}")
            if h.current_epoch is not None:
                click.echo(f"Epoch:    {h.current_epoch}")
            return h.healthy

    if not asyncio.run(_health()):
        sys.exit(1)


@cli.command()
@click.argument("address", required=False)
@click.pass_context
def wallet(ctx: click.Context, address: str | None) -> None:
    """Show the FIL balance of ADDRESS (default: configured wallet)."""
    cfg = load_config(ctx.obj["config_path"])
    address = address or cfg.lotus.wallet
    if not address:
        click.echo("Error: No wallet address given or configured.", err=True)
        sys.exit(1)

    async def _wallet():
        ledger = LotusClient(cfg.lotus.api_url, cfg.lotus.token, timeout=cfg.lotus.timeout)
        balance = await ledger.get_wallet_balance(address)
        click.echo(f"{address}: {balance} FIL")

    _run(_wallet())


# ── Content ────────────────────────────────────────────


@cli.group()
def content():
    """Add and read content on the local Kubo node."""
    pass


@content.command("add")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def content_add(ctx: click.Context, path: Path) -> None:
    """Add a file to Kubo and print its CID."""
    cfg = load_config(ctx.obj["config_path"])

    async def _add():
        network = KuboClient(cfg.ipfs.api_url, cfg.ipfs.timeout)
        cid = await network.add(path.read_bytes())
        click.echo(cid)

    _run(_add())


@content.command("cat")
@click.argument("cid")
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.pass_context
def content_cat(ctx: click.Context, cid: str, output: Path | None) -> None:
    """Fetch CID from Kubo to stdout or --output."""
    cfg = load_config(ctx.obj["config_path"])

    async def _cat():
        network = KuboClient(cfg.ipfs.api_url, cfg.ipfs.timeout)
        data = await network.cat(cid)
        if output is not None:
            output.write_bytes(data)
            click.echo(f"Wrote {len(data)} bytes to {output}")
        else:
            click.get_binary_stream("stdout").write(data)

    _run(_cat())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
