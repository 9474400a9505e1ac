"""Canonical in-memory balance state for all tracked wallets"""

import asyncio

from wallet_monitor.core.charts import resample
from wallet_monitor.core.config import HISTORY_CAP, RECORD_FIRST_POINT, SUMMARY_POINT_CAP
from wallet_monitor.core.errors import (
    DuplicateNameError,
    DuplicateWalletError,
    WalletNotFoundError,
)
from wallet_monitor.core.logger import logger, short_address
from wallet_monitor.core.models import (
    BalanceChange,
    BalanceSnapshot,
    HistoryRecord,
    LiveEntry,
    WalletState,
    WalletSummary,
)


class BalanceStore:
    """Map of wallet address -> WalletState behind a single lock.

    Every read and write holds the same asyncio.Lock for its whole duration,
    so readers never observe a half-applied update. Nothing in here awaits
    I/O while holding the lock.
    """

    def __init__(
        self,
        history_cap: int = HISTORY_CAP,
        record_first_point: bool = RECORD_FIRST_POINT,
        summary_points: int = SUMMARY_POINT_CAP,
    ):
        self.history_cap = history_cap
        self.record_first_point = record_first_point
        self.summary_points = summary_points
        self._wallets: dict[str, WalletState] = {}
        self._lock = asyncio.Lock()

    def __len__(self):
        return len(self._wallets)

    def _get(self, address: str) -> WalletState:
        wallet = self._wallets.get(address)
        if wallet is None:
            raise WalletNotFoundError(address)
        return wallet

    # Mutations

    async def add_wallet(self, address: str, name: str) -> WalletState:
        async with self._lock:
            if address in self._wallets:
                raise DuplicateWalletError(address)
            if any(w.name == name for w in self._wallets.values()):
                raise DuplicateNameError(name)

            wallet = WalletState(address=address, name=name, history_cap=self.history_cap)
            self._wallets[address] = wallet
            logger.debug(f"Tracking wallet {name} ({short_address(address)})")
            return wallet

    async def remove_wallet(self, address: str) -> str:
        """Stop tracking a wallet. Persisted history is left to the caller."""
        async with self._lock:
            wallet = self._wallets.pop(address, None)
            if wallet is None:
                raise WalletNotFoundError(address)
            return wallet.name

    async def load_history(self, address: str, records: list[HistoryRecord]):
        async with self._lock:
            self._get(address).load_history(records)

    async def update_sol(self, address: str, lamports: int) -> BalanceChange | None:
        """Apply a new lamport balance. Returns None when the wallet is not tracked."""
        async with self._lock:
            wallet = self._wallets.get(address)
            if wallet is None:
                return None
            previous = wallet.sol_balance
            wallet.update_sol(lamports)
            return self._change(wallet, "sol", previous, wallet.sol_balance)

    async def update_wsol(self, address: str, amount: float) -> BalanceChange | None:
        async with self._lock:
            wallet = self._wallets.get(address)
            if wallet is None:
                return None
            previous = wallet.wsol_balance
            wallet.update_wsol(amount)
            return self._change(wallet, "wsol", previous, wallet.wsol_balance)

    async def initialize_wsol(self, address: str, amount: float) -> BalanceChange | None:
        """First-time WSOL establishment; records a point if history is still empty"""
        async with self._lock:
            wallet = self._wallets.get(address)
            if wallet is None:
                return None
            previous = wallet.wsol_balance
            wallet.initialize_wsol(amount, record_first_point=self.record_first_point)
            return self._change(wallet, "wsol", previous, wallet.wsol_balance)

    @staticmethod
    def _change(wallet: WalletState, asset: str, previous: float, current: float):
        return BalanceChange(
            address=wallet.address,
            name=wallet.name,
            asset=asset,
            previous=previous,
            current=current,
            record=wallet.to_record(),
        )

    # Reads

    async def contains(self, address: str) -> bool:
        async with self._lock:
            return address in self._wallets

    async def names(self) -> dict[str, str]:
        """address -> name, in the order wallets were added"""
        async with self._lock:
            return {address: w.name for address, w in self._wallets.items()}

    async def record(self, address: str) -> HistoryRecord | None:
        """Current balances as a persistable record, once WSOL is known"""
        async with self._lock:
            wallet = self._wallets.get(address)
            if wallet is None or not wallet.wsol_initialized:
                return None
            return wallet.to_record()

    async def history(self, address: str) -> list[BalanceSnapshot]:
        async with self._lock:
            return list(self._get(address).history)

    def _summary(self, wallet: WalletState) -> WalletSummary:
        history = list(wallet.history)
        return WalletSummary(
            address=wallet.address,
            name=wallet.name,
            sol_balance=wallet.sol_balance,
            wsol_balance=wallet.effective_wsol,
            total_balance=wallet.total_balance,
            last_update=wallet.last_update,
            sampled_history=resample(
                history, self.summary_points, key=lambda p: int(p.timestamp.timestamp())
            )[: self.summary_points],
        )

    async def summary(self, address: str) -> WalletSummary:
        async with self._lock:
            return self._summary(self._get(address))

    async def list_summaries(self) -> list[WalletSummary]:
        async with self._lock:
            return [self._summary(wallet) for wallet in self._wallets.values()]

    async def live_view(self) -> dict[str, LiveEntry]:
        """Consistent point-in-time view of every wallet, for one broadcast tick"""
        async with self._lock:
            return {address: w.to_live_entry() for address, w in self._wallets.items()}
