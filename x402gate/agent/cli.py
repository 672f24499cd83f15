"""
x402-gate Agent CLI
Make a single paid call, or generate a signing key
"""

import asyncio
import sys
from typing import List, Optional

import httpx
import structlog
from rich.console import Console
from rich.table import Table

from x402gate.agent.balance import CachedBalanceSource, HttpBalanceSource
from x402gate.agent.negotiator import Negotiation, Negotiator
from x402gate.agent.telemetry import LogTelemetrySink
from x402gate.config import get_requester_config
from x402gate.log import configure_logging
from x402gate.payments.errors import X402Error
from x402gate.payments.keys import SigningKey

logger = structlog.get_logger()
console = Console()

USAGE = "Usage: python -m x402gate.agent.cli [keygen | pay <url> [METHOD]]"


def display_negotiation(negotiation: Negotiation):
    """Show the states a paid call went through"""
    table = Table(title="x402 Negotiation", show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Request", f"{negotiation.method} {negotiation.url}")
    table.add_row("States", " -> ".join(state.value for state in negotiation.history))
    table.add_row("Signings", str(negotiation.signings))
    if negotiation.challenge:
        table.add_row("Amount", f"{negotiation.challenge.amount} {negotiation.challenge.asset_id}")
        table.add_row("Nonce", str(negotiation.challenge.nonce))
    if negotiation.response is not None:
        table.add_row("Status", str(negotiation.response.status_code))
    if negotiation.last_error:
        table.add_row("Last error", negotiation.last_error.kind)

    console.print(table)


def keygen():
    key = SigningKey.generate()
    console.print(f"[green]Public key:[/green] {key.public_key_b58}")
    console.print(f"[yellow]AGENT_SIGNING_SEED={key.export_seed_b58()}[/yellow]")


async def pay(url: str, method: str = "GET") -> int:
    config = get_requester_config()
    if not config.agent_signing_seed:
        console.print("[red]AGENT_SIGNING_SEED is not set; run 'keygen' first[/red]")
        return 1

    key = SigningKey.from_base58(config.agent_signing_seed)
    http_balances: Optional[HttpBalanceSource] = None
    if config.balance_url:
        http_balances = HttpBalanceSource(config.balance_url, timeout=config.request_timeout)
        balance_source = CachedBalanceSource(http_balances, ttl_seconds=config.balance_cache_ttl)
    else:
        console.print("[yellow]No BALANCE_URL configured; solvency check is disabled[/yellow]")
        balance_source = None

    try:
        async with Negotiator(
            key=key,
            balance_source=balance_source,
            max_retries=config.max_retries,
            timeout=config.request_timeout,
            telemetry=LogTelemetrySink(),
        ) as negotiator:
            negotiation = negotiator.start(method, url)
            try:
                response = await negotiator.run(negotiation)
            except X402Error as e:
                display_negotiation(negotiation)
                console.print(f"[red]Payment failed ({e.kind}): {e.message}[/red]")
                return 1
            except httpx.HTTPError as e:
                display_negotiation(negotiation)
                console.print(f"[red]Request failed: {e}[/red]")
                return 1
    finally:
        if http_balances is not None:
            http_balances.close()

    display_negotiation(negotiation)
    console.print(response.text)
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the agent CLI"""
    config = get_requester_config()
    configure_logging(config.log_level, config.log_format)

    args = sys.argv[1:] if argv is None else argv

    if args and args[0] == "keygen":
        keygen()
        return 0

    if len(args) >= 2 and args[0] == "pay":
        method = args[2] if len(args) > 2 else "GET"
        return await pay(args[1], method)

    console.print("[red]Invalid command[/red]")
    console.print(USAGE)
    return 2


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
