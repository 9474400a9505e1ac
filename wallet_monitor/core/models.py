"""Balance tracking data models"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

from wallet_monitor.core.config import HISTORY_CAP, LAMPORTS_PER_SOL


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BalanceSnapshot:
    """One point of a wallet's balance history"""

    timestamp: datetime
    sol_balance: float
    wsol_balance: float
    total_balance: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "sol_balance": self.sol_balance,
            "wsol_balance": self.wsol_balance,
            "total_balance": self.total_balance,
        }


@dataclass(frozen=True)
class HistoryRecord:
    """On-disk shape of a BalanceSnapshot, shared across all wallets in one log"""

    timestamp: datetime
    address: str
    sol_balance: float
    wsol_balance: float
    total_balance: float

    @property
    def key(self) -> str:
        return f"{self.address}_{int(self.timestamp.timestamp() * 1000)}"

    def to_snapshot(self) -> BalanceSnapshot:
        return BalanceSnapshot(
            timestamp=self.timestamp,
            sol_balance=self.sol_balance,
            wsol_balance=self.wsol_balance,
            total_balance=self.total_balance,
        )


@dataclass
class WalletSummary:
    address: str
    name: str
    sol_balance: float
    wsol_balance: float
    total_balance: float
    last_update: datetime
    sampled_history: list[BalanceSnapshot] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "name": self.name,
            "sol_balance": self.sol_balance,
            "wsol_balance": self.wsol_balance,
            "total_balance": self.total_balance,
            "last_update": self.last_update.isoformat(),
            "sampled_history": [point.to_dict() for point in self.sampled_history],
        }


@dataclass(frozen=True)
class LiveEntry:
    """Point-in-time view of one wallet for the live update broadcaster"""

    address: str
    name: str
    sol_balance: float
    wsol_balance: float
    total_balance: float
    last_update: datetime
    latest: BalanceSnapshot | None

    def to_update(self) -> dict:
        latest_data = None
        if self.latest is not None:
            latest_data = {
                "time": int(self.latest.timestamp.timestamp()),
                "sol_balance": self.latest.sol_balance,
                "wsol_balance": self.latest.wsol_balance,
                "total_balance": self.latest.total_balance,
            }
        return {
            "type": "update",
            "wallet": {
                "address": self.address,
                "name": self.name,
                "sol_balance": self.sol_balance,
                "wsol_balance": self.wsol_balance,
                "total_balance": self.total_balance,
                "last_update": self.last_update.isoformat(),
                "latest_data": latest_data,
            },
        }


@dataclass(frozen=True)
class BalanceChange:
    """Result of a store mutation: the touched amount before and after"""

    address: str
    name: str
    asset: str  # "sol" or "wsol"
    previous: float
    current: float
    record: HistoryRecord

    @property
    def delta(self) -> float:
        return self.current - self.previous


@dataclass
class WalletState:
    """Live balance state of one tracked wallet.

    SOL is kept as integer lamports. History points are only recorded once the
    WSOL balance has been established, so every stored total covers both assets.
    """

    address: str
    name: str
    lamports: int = 0
    wsol_balance: float = 0.0
    wsol_initialized: bool = False
    last_update: datetime = field(default_factory=utcnow)
    history_cap: int = HISTORY_CAP
    history: deque = field(init=False)

    def __post_init__(self):
        self.history = deque(maxlen=self.history_cap)

    @property
    def sol_balance(self) -> float:
        return self.lamports / LAMPORTS_PER_SOL

    @property
    def effective_wsol(self) -> float:
        return self.wsol_balance if self.wsol_initialized else 0.0

    @property
    def total_balance(self) -> float:
        if not self.wsol_initialized:
            return self.sol_balance
        return self.sol_balance + self.wsol_balance

    def update_sol(self, lamports: int):
        self.lamports = lamports
        self.last_update = utcnow()
        if self.wsol_initialized:
            self.add_to_history()

    def update_wsol(self, amount: float):
        self.wsol_balance = amount
        self.wsol_initialized = True
        self.last_update = utcnow()
        self.add_to_history()

    def initialize_wsol(self, amount: float, record_first_point: bool = True):
        self.wsol_balance = amount
        self.wsol_initialized = True
        self.last_update = utcnow()
        if record_first_point and not self.history:
            self.add_to_history()

    def snapshot(self) -> BalanceSnapshot:
        return BalanceSnapshot(
            timestamp=self.last_update,
            sol_balance=self.sol_balance,
            wsol_balance=self.effective_wsol,
            total_balance=self.total_balance,
        )

    def add_to_history(self):
        # deque(maxlen) drops from the front once the cap is reached
        self.history.append(self.snapshot())

    def load_history(self, records: list[HistoryRecord]):
        """Replace history with persisted points. Balances are left alone."""
        self.history.clear()
        self.history.extend(record.to_snapshot() for record in records)

    def to_record(self) -> HistoryRecord:
        return HistoryRecord(
            timestamp=self.last_update,
            address=self.address,
            sol_balance=self.sol_balance,
            wsol_balance=self.effective_wsol,
            total_balance=self.total_balance,
        )

    def to_live_entry(self) -> LiveEntry:
        return LiveEntry(
            address=self.address,
            name=self.name,
            sol_balance=self.sol_balance,
            wsol_balance=self.effective_wsol,
            total_balance=self.total_balance,
            last_update=self.last_update,
            latest=self.history[-1] if self.history else None,
        )


@dataclass(frozen=True)
class ChartPoint:
    time: int  # Unix timestamp in seconds
    value: float

    def to_dict(self) -> dict:
        return {"time": self.time, "value": self.value}


@dataclass(frozen=True)
class SolBalanceEvent:
    """New lamport balance observed for a tracked wallet"""

    address: str
    lamports: int


@dataclass(frozen=True)
class WsolBalanceEvent:
    """New WSOL balance observed for a tracked wallet's token account"""

    address: str
    amount: float


@dataclass(frozen=True)
class AccountUpdate:
    """Raw account notification from the account subscription stream"""

    pubkey: str
    lamports: int
    data: object
    slot: int = 0
