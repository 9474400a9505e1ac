#!/usr/bin/env python3
"""
Solana Wallet Balance Monitor
Tracks SOL and wrapped SOL balances of a set of wallets in real time
"""

import argparse
import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from wallet_monitor.api.server import create_app, start_server
from wallet_monitor.core.config import (
    DATABASE_PATH,
    INGESTION_SOURCE,
    SERVER_HOST,
    SERVER_PORT,
    WALLETS_FILE,
)
from wallet_monitor.core.logger import enable_debug, logger
from wallet_monitor.core.monitor import WalletMonitor
from wallet_monitor.core.solana_rpc import SolanaRPC
from wallet_monitor.core.wallet_registry import WalletRegistry
from wallet_monitor.database.database import HistoryLog

console = Console()


async def run_server(host: str, port: int):
    console.print(
        Panel.fit(
            "[bold cyan]Solana Wallet Balance Monitor[/bold cyan]\n"
            f"[dim]Source: {INGESTION_SOURCE} | Wallets: {WALLETS_FILE} | History: {DATABASE_PATH}[/dim]",
            border_style="cyan",
        )
    )

    monitor = WalletMonitor()
    runner = None
    try:
        await monitor.initialize()
        ingestion_task = monitor.start()
        runner = await start_server(create_app(monitor), host, port)
        # Ingestion only returns once stopped
        await ingestion_task
    finally:
        if runner is not None:
            await runner.cleanup()
        await monitor.close()


async def print_balances():
    """One-shot balance table for every configured wallet"""
    wallets = WalletRegistry(WALLETS_FILE).load()
    history_log = HistoryLog(DATABASE_PATH)
    await history_log.init_db()

    table = Table(title="Wallet Balances", border_style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Address", style="dim")
    table.add_column("SOL", justify="right", style="green")
    table.add_column("WSOL", justify="right", style="yellow")
    table.add_column("Total", justify="right", style="bold green")
    table.add_column("History", justify="right")

    try:
        async with SolanaRPC() as rpc:
            for wallet in wallets:
                points = await history_log.count(wallet.address)
                try:
                    sol_balance, wsol_balance = await rpc.fetch_balances(wallet.address)
                except Exception as e:
                    logger.error(f"Failed to fetch balances of {wallet.name}: {e}")
                    table.add_row(wallet.name, wallet.address, "-", "-", "-", str(points))
                    continue
                table.add_row(
                    wallet.name,
                    wallet.address,
                    f"{sol_balance:.6f}",
                    f"{wsol_balance:.6f}",
                    f"{sol_balance + wsol_balance:.6f}",
                    str(points),
                )
    finally:
        await history_log.close()

    console.print()
    console.print(table)
    console.print()


async def main_async(args):
    """Async main function"""
    if args.mode == "serve":
        await run_server(args.host, args.port)
    elif args.mode == "balances":
        await print_balances()


def main():
    parser = argparse.ArgumentParser(
        description="Solana Wallet Balance Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  wallet-monitor                      # Track wallets and serve the API
  wallet-monitor --mode balances      # Print current balances and exit
  wallet-monitor --port 8080          # Serve on another port
  wallet-monitor --debug              # Enable debug logging
        """,
    )
    parser.add_argument(
        "--mode",
        choices=["serve", "balances"],
        default="serve",
        help="Run mode (default: serve)",
    )
    parser.add_argument("--host", default=SERVER_HOST, help=f"Bind address (default: {SERVER_HOST})")
    parser.add_argument("--port", type=int, default=SERVER_PORT, help=f"Port (default: {SERVER_PORT})")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.debug:
        enable_debug()
        logger.info("Debug logging enabled")

    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        console.print("\n[yellow]Stopped by user[/yellow]\n")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        console.print(f"\n[red]Error: {e}[/red]\n")
        raise


if __name__ == "__main__":
    main()
