"""Wallet monitor service: startup, wallet add/remove, background ingestion"""

import asyncio

from wallet_monitor.core.balance_store import BalanceStore
from wallet_monitor.core.config import (
    CHANGE_EPSILON,
    DATABASE_PATH,
    INGESTION_SOURCE,
    LAMPORTS_PER_SOL,
    RECONNECT_DELAY,
    WALLETS_FILE,
)
from wallet_monitor.core.decoder import validate_address
from wallet_monitor.core.errors import (
    DecodeError,
    PersistenceError,
    ValidationError,
    WalletNotFoundError,
)
from wallet_monitor.core.ingestion import BalanceSink, IngestionLoop
from wallet_monitor.core.logger import logger, short_address
from wallet_monitor.core.models import WalletSummary
from wallet_monitor.core.solana_rpc import SolanaRPC
from wallet_monitor.core.sources import create_source
from wallet_monitor.core.wallet_registry import WalletRegistry
from wallet_monitor.database.database import HistoryLog


def validate_new_wallet(name: str, address: str) -> tuple[str, str]:
    """Trimmed (name, address), or ValidationError"""
    name = (name or "").strip()
    address = (address or "").strip()

    if not name:
        raise ValidationError("Wallet name must not be empty")
    if not address:
        raise ValidationError("Wallet address must not be empty")
    try:
        validate_address(address)
    except DecodeError as e:
        raise ValidationError(f"Wallet address is not a valid public key: {e}") from e

    return name, address


class WalletMonitor:
    def __init__(
        self,
        rpc: SolanaRPC | None = None,
        store: BalanceStore | None = None,
        history_log: HistoryLog | None = None,
        registry: WalletRegistry | None = None,
        source=None,
        epsilon: float = CHANGE_EPSILON,
        reconnect_delay: float = RECONNECT_DELAY,
    ):
        self.rpc = rpc or SolanaRPC()
        # An empty store is falsy
        self.store = store if store is not None else BalanceStore()
        self.history_log = history_log or HistoryLog(DATABASE_PATH)
        self.registry = registry or WalletRegistry(WALLETS_FILE)
        self.sink = BalanceSink(self.store, self.history_log, epsilon=epsilon)
        self.ingestion = IngestionLoop(
            self.store,
            self.sink,
            source or create_source(INGESTION_SOURCE, self.rpc),
            reconnect_delay=reconnect_delay,
        )
        self._ingestion_task: asyncio.Task | None = None

    async def initialize(self):
        """Load configured wallets, seed their history and fetch live balances.

        A missing or malformed wallet list raises ConfigError.
        """
        wallets = self.registry.load()
        await self.rpc.open()
        await self.history_log.init_db()
        history = await self.history_log.load_all()

        for config in wallets:
            await self.store.add_wallet(config.address, config.name)
            records = history.get(config.address)
            if records:
                # Balances are not taken from disk, the WSOL figure may be stale
                await self.store.load_history(config.address, records)
                logger.info(f"Loaded {len(records)} history points for {config.name}")

        logger.info(f"Fetching latest balances of {len(wallets)} wallets...")
        for i, config in enumerate(wallets, 1):
            logger.info(f"[{i}/{len(wallets)}] {config.name} ({short_address(config.address)})")
            await self.initialize_balances(config.address)

        logger.info("All wallet balances initialized")

    async def initialize_balances(self, address: str):
        """Fetch SOL/WSOL over RPC and establish both amounts.

        On failure WSOL is set to 0 so the wallet does not stay half-known.
        """
        try:
            sol_balance, wsol_balance = await self.rpc.fetch_balances(address)
        except Exception as e:
            logger.error(f"Failed to fetch balances of {short_address(address)}: {e}")
            await self.store.initialize_wsol(address, 0.0)
        else:
            await self.store.update_sol(address, round(sol_balance * LAMPORTS_PER_SOL))
            await self.store.initialize_wsol(address, wsol_balance)
            logger.info(f"  SOL: {sol_balance:.6f} | WSOL: {wsol_balance:.6f}")

        record = await self.store.record(address)
        if record is not None:
            await self.history_log.append(record)

    def start(self) -> asyncio.Task:
        """Run the ingestion loop in the background"""
        if self._ingestion_task is None or self._ingestion_task.done():
            self._ingestion_task = asyncio.create_task(self.ingestion.run())
        return self._ingestion_task

    async def close(self):
        """Stop ingestion and release connections"""
        if self._ingestion_task is not None and not self._ingestion_task.done():
            self.ingestion.stop()
            try:
                await asyncio.wait_for(self._ingestion_task, timeout=5)
            except asyncio.TimeoutError:
                self._ingestion_task.cancel()
                await asyncio.gather(self._ingestion_task, return_exceptions=True)
        await self.rpc.close()
        await self.history_log.close()
        logger.debug("Monitor resources cleaned up")

    async def add_wallet(self, name: str, address: str) -> WalletSummary:
        """Validate, track, fetch balances, persist and resubscribe"""
        name, address = validate_new_wallet(name, address)
        await self.store.add_wallet(address, name)
        await self.initialize_balances(address)
        if not await self.store.contains(address):
            # Removed while balances were being fetched
            raise WalletNotFoundError(address)

        try:
            self.registry.add(address, name)
        except PersistenceError as e:
            logger.warning(f"Failed to update wallet list: {e}")

        self.ingestion.request_resubscribe()
        logger.info(f"Added wallet {name} ({short_address(address)}), resubscribing")
        return await self.store.summary(address)

    async def remove_wallet(self, address: str) -> str:
        """Untrack a wallet and purge its history. Returns the wallet's name."""
        name = await self.store.remove_wallet(address)
        await self.history_log.delete_for_wallet(address)

        try:
            self.registry.remove(address)
        except PersistenceError as e:
            logger.warning(f"Failed to update wallet list: {e}")

        self.ingestion.request_resubscribe()
        logger.info(f"Removed wallet {name} ({short_address(address)}), resubscribing")
        return name
