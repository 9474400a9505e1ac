"""Shared test doubles and sample data"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

from solders.pubkey import Pubkey

from wallet_monitor.core.balance_store import BalanceStore
from wallet_monitor.core.config import WSOL_MINT
from wallet_monitor.core.decoder import TOKEN_ACCOUNT_LAYOUT
from wallet_monitor.core.errors import DecodeError
from wallet_monitor.core.monitor import WalletMonitor

# Real mainnet addresses, so WSOL account derivation works on them
WALLET_A = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
WALLET_B = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"

RENT_EXEMPT_RESERVE = 2_039_280


def make_token_account(
    mint=WSOL_MINT,
    owner=WALLET_A,
    amount=250_000_000,
    state=1,
    delegate_tag=0,
    native_tag=1,
    close_tag=0,
):
    """Raw 165-byte SPL token account"""
    return TOKEN_ACCOUNT_LAYOUT.pack(
        bytes(Pubkey.from_string(mint)),
        bytes(Pubkey.from_string(owner)),
        amount,
        delegate_tag,
        bytes(Pubkey.from_string(WALLET_B)) if delegate_tag else bytes(32),
        state,
        native_tag,
        RENT_EXEMPT_RESERVE if native_tag else 0,
        0,
        close_tag,
        bytes(32),
    )


class FakeStream:
    """Stream fed by the test through `push()`. Exceptions are raised on receive."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.subscribed = []

    async def subscribe(self, watch):
        self.subscribed.append(watch)

    async def receive(self):
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    def push(self, item):
        self.queue.put_nowait(item)


class FakeSource:
    """Messages are lists of balance events; the string "bad" fails to decode"""

    name = "fake"

    def __init__(self, streams=None):
        self.streams = list(streams or [])
        self.opened = 0

    @asynccontextmanager
    async def _open(self):
        self.opened += 1
        yield self.streams.pop(0)

    def open(self):
        return self._open()

    def demux(self, message, watch):
        if message == "bad":
            raise DecodeError("bad payload")
        return message


async def wait_for_condition(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


def create_mock_rpc(sol=1.0, wsol=0.0):
    rpc = MagicMock()
    rpc.open = AsyncMock()
    rpc.close = AsyncMock()
    rpc.fetch_balances = AsyncMock(return_value=(sol, wsol))
    return rpc


def create_monitor(rpc=None, history_log=None, registry=None, source=None):
    return WalletMonitor(
        rpc=rpc or create_mock_rpc(),
        store=BalanceStore(),
        history_log=history_log or AsyncMock(),
        registry=registry or MagicMock(),
        source=source or FakeSource(),
        reconnect_delay=0,
    )
