#!/usr/bin/env python3
"""
premia-quotes command line: best option quotes across RFQ, pool and vault liquidity.
"""
import asyncio
import json
import os
import sys
from typing import List, Optional

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

from ..data.config import ConfigManager
from ..data.fixed import format_wad, parse_wad
from ..data.models import FillableQuote, RawQuote
from ..data.registry import DataRegistry
from ..data.sources.base import QuoteRequest
from ..exceptions import QuoteError
from ..execution.signing import quote_hash

console = Console()


def quote_table(quotes: List[Optional[FillableQuote]], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Source", style="cyan")
    table.add_column("Provider", style="white")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Taker fee", justify="right")
    table.add_column("Deadline", justify="right")
    table.add_column("To", style="dim")

    for quote in quotes:
        if quote is None:
            table.add_row("-", "no quote", "", "", "", "", "")
            continue
        table.add_row(
            quote.origin.value,
            quote.provider,
            str(quote.price),
            str(format_wad(quote.size)),
            str(quote.taker_fee),
            str(quote.deadline),
            quote.to,
        )
    return table


@click.group()
@click.option('--config', '-c', help='Path to configuration file')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config, debug):
    """Premia option quotes"""
    ctx.ensure_object(dict)
    if config:
        os.environ['PREMIA_CONFIG'] = config
        ConfigManager.reset()
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if debug else "WARNING")


def _request(pool, size, sell, minimum_size, taker, referrer, slippage) -> QuoteRequest:
    return QuoteRequest(
        pool_address=pool,
        size=parse_wad(size),
        is_buy=not sell,
        minimum_size=parse_wad(minimum_size) if minimum_size else None,
        referrer=referrer,
        taker=taker,
        max_slippage_percent=slippage,
    )


quote_options = [
    click.argument('pool'),
    click.argument('size'),
    click.option('--sell', is_flag=True, help='Quote a sale instead of a purchase'),
    click.option('--minimum-size', help='Smallest acceptable fill, in contracts'),
    click.option('--taker', help='Taker address'),
    click.option('--referrer', help='Referrer address'),
    click.option('--slippage', type=float, help='Max slippage as a fraction, e.g. 0.05'),
]


def with_quote_options(func):
    for option in reversed(quote_options):
        func = option(func)
    return func


@cli.command()
@with_quote_options
def quote(pool, size, sell, minimum_size, taker, referrer, slippage):
    """Best quote across all liquidity sources for POOL and SIZE contracts"""
    request = _request(pool, size, sell, minimum_size, taker, referrer, slippage)

    async def run_quote():
        registry = DataRegistry()
        try:
            best = await registry.aggregator.quote(
                request.pool_address, request.size, request.is_buy, request.minimum_size,
                request.referrer, request.taker, request.max_slippage_percent,
            )
        finally:
            await registry.close()
        console.print(quote_table([best], f"Best {'sell' if sell else 'buy'} quote for {pool}"))

    try:
        asyncio.run(run_quote())
    except QuoteError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@with_quote_options
def stream(pool, size, sell, minimum_size, taker, referrer, slippage):
    """Follow the best quote for POOL live, Ctrl-C to stop"""
    request = _request(pool, size, sell, minimum_size, taker, referrer, slippage)

    async def run_stream():
        registry = DataRegistry()

        def on_quote(best: Optional[FillableQuote]):
            console.print(quote_table([best], "New best quote"))

        subscription = await registry.aggregator.stream_quotes(request, on_quote)
        try:
            await subscription.wait()
        finally:
            await registry.aggregator.cancel_all_streams()
            subscription.close()
            await registry.close()

    try:
        asyncio.run(run_stream())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stream cancelled by user[/yellow]")
    except QuoteError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command(name='hash')
@click.argument('quote_file', type=click.File('r'))
@click.option('--pool', required=True, help='Pool the quote is signed for')
@click.option('--chain-id', type=int, help='Defaults to the configured chain')
def hash_quote(quote_file, pool, chain_id):
    """EIP-712 hash of the quote in QUOTE_FILE (JSON, camelCase or snake_case)"""
    raw = RawQuote.model_validate(json.load(quote_file))
    chain = chain_id or ConfigManager().chain_id
    try:
        console.print(quote_hash(raw, pool, chain))
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
