"""Differential live updates for one connected client"""

import asyncio
from typing import Awaitable, Callable

from wallet_monitor.core.balance_store import BalanceStore
from wallet_monitor.core.config import BROADCAST_EPSILON, BROADCAST_INTERVAL
from wallet_monitor.core.logger import logger
from wallet_monitor.core.models import LiveEntry


def has_changed(current: LiveEntry, previous: LiveEntry | None, epsilon: float) -> bool:
    if previous is None:
        return True
    return (
        abs(current.sol_balance - previous.sol_balance) > epsilon
        or abs(current.wsol_balance - previous.wsol_balance) > epsilon
        or abs(current.total_balance - previous.total_balance) > epsilon
        or current.last_update != previous.last_update
    )


def diff_views(
    previous: dict[str, LiveEntry] | None,
    current: dict[str, LiveEntry],
    epsilon: float = BROADCAST_EPSILON,
) -> list[dict]:
    """Update entries for new/changed wallets followed by delete entries for removed ones"""
    updates = []
    for address, entry in current.items():
        before = previous.get(address) if previous is not None else None
        if has_changed(entry, before, epsilon):
            updates.append(entry.to_update())

    if previous is not None:
        for address in previous:
            if address not in current:
                updates.append({"type": "delete", "address": address})

    return updates


class DifferentialBroadcaster:
    """Ticks over the store and sends only what changed since the last tick"""

    def __init__(
        self,
        store: BalanceStore,
        interval: float = BROADCAST_INTERVAL,
        epsilon: float = BROADCAST_EPSILON,
    ):
        self.store = store
        self.interval = interval
        self.epsilon = epsilon
        self.previous: dict[str, LiveEntry] | None = None

    async def tick(self) -> dict | None:
        """Batched message for this tick, or None when nothing changed"""
        current = await self.store.live_view()
        updates = diff_views(self.previous, current, self.epsilon)
        self.previous = current

        if not updates:
            return None
        return {"type": "batch_update", "updates": updates}

    async def run(self, send: Callable[[dict], Awaitable[None]]):
        """Tick until `send` fails. The failure ends only this client's updates."""
        while True:
            message = await self.tick()
            if message is not None:
                try:
                    await send(message)
                except (ConnectionError, RuntimeError) as e:
                    logger.debug(f"Live update client gone: {e}")
                    return
                logger.debug(f"Sent {len(message['updates'])} wallet updates")
            await asyncio.sleep(self.interval)
