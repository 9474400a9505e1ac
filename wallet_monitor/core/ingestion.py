"""Streaming ingestion of balance updates into the balance store"""

import asyncio
from enum import Enum

from wallet_monitor.core.balance_store import BalanceStore
from wallet_monitor.core.config import CHANGE_EPSILON, RECONNECT_DELAY
from wallet_monitor.core.decoder import WatchSet, build_watch_set
from wallet_monitor.core.errors import DecodeError
from wallet_monitor.core.logger import logger, short_address
from wallet_monitor.core.models import BalanceChange, SolBalanceEvent, WsolBalanceEvent
from wallet_monitor.database.database import HistoryLog


class IngestionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"


class Control(Enum):
    RESUBSCRIBE = "resubscribe"
    STOP = "stop"


class BalanceSink:
    """Applies balance events to the store and persists meaningful changes"""

    def __init__(self, store: BalanceStore, history_log: HistoryLog, epsilon: float = CHANGE_EPSILON):
        self.store = store
        self.history_log = history_log
        self.epsilon = epsilon

    async def apply(self, event) -> BalanceChange | None:
        if isinstance(event, SolBalanceEvent):
            change = await self.store.update_sol(event.address, event.lamports)
        elif isinstance(event, WsolBalanceEvent):
            change = await self.store.update_wsol(event.address, event.amount)
        else:
            raise TypeError(f"Unsupported balance event: {event!r}")

        if change is None:
            return None

        if abs(change.delta) > self.epsilon:
            logger.info(
                f"{change.asset.upper()} balance of {change.name} ({short_address(change.address)}) "
                f"changed by {change.delta:+.9f}: {change.previous:.9f} -> {change.current:.9f} "
                f"| total {change.record.total_balance:.6f}"
            )
            await self.history_log.append(change.record)
        return change


class IngestionLoop:
    """Long-lived subscription feeding the sink.

    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> STREAMING. A RESUBSCRIBE
    control message rebuilds the subscription on the open connection. Any
    stream failure drops the connection and reconnects after a fixed delay,
    forever.
    """

    def __init__(
        self,
        store: BalanceStore,
        sink: BalanceSink,
        source,
        reconnect_delay: float = RECONNECT_DELAY,
    ):
        self.store = store
        self.sink = sink
        self.source = source
        self.reconnect_delay = reconnect_delay
        self.state = IngestionState.DISCONNECTED
        self.control: asyncio.Queue = asyncio.Queue()
        self.connections = 0
        self.subscriptions = 0

    def request_resubscribe(self):
        self.control.put_nowait(Control.RESUBSCRIBE)

    def stop(self):
        self.control.put_nowait(Control.STOP)

    async def run(self):
        while True:
            try:
                if await self._run_connection():
                    break
            except Exception as e:
                logger.error(f"Ingestion stream failed: {e}")

            self.state = IngestionState.DISCONNECTED
            logger.warning(f"Reconnecting in {self.reconnect_delay}s...")
            if await self._backoff():
                break

        self.state = IngestionState.DISCONNECTED
        logger.info("Ingestion stopped")

    async def _backoff(self) -> bool:
        """Wait out the reconnect delay. True if a STOP arrived meanwhile."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.reconnect_delay
        while True:
            if not self.control.empty():
                control = self.control.get_nowait()
            else:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    await asyncio.sleep(0)
                    return False
                try:
                    control = await asyncio.wait_for(self.control.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    return False
            # A new connection subscribes to the current wallet set anyway
            if control is Control.STOP:
                return True

    async def _run_connection(self) -> bool:
        """One connection's lifetime. True when stopped on request."""
        self.state = IngestionState.CONNECTING
        logger.info(f"Connecting {self.source.name} stream...")

        async with self.source.open() as stream:
            self.connections += 1
            while True:
                self.state = IngestionState.CONNECTING
                names = await self.store.names()
                watch = build_watch_set(list(names))
                await stream.subscribe(watch)
                self.subscriptions += 1
                self.state = IngestionState.SUBSCRIBED
                logger.info(
                    f"Watching {len(watch.wallets)} wallets and {len(watch.atas)} WSOL accounts"
                )
                logger.debug(f"Subscribed wallets: {', '.join(names.values())}")

                control = await self._consume(stream, watch)
                if control is Control.STOP:
                    return True
                logger.info("Wallet list changed, resubscribing...")

    async def _consume(self, stream, watch: WatchSet) -> Control:
        """Dispatch stream messages until a control message arrives"""
        self.state = IngestionState.STREAMING
        first_message = True
        control_task = asyncio.ensure_future(self.control.get())
        receive_task = None
        try:
            while True:
                receive_task = asyncio.ensure_future(stream.receive())
                done, _ = await asyncio.wait(
                    {receive_task, control_task}, return_when=asyncio.FIRST_COMPLETED
                )

                if receive_task in done:
                    if control_task not in done or receive_task.exception() is None:
                        message = receive_task.result()
                        if first_message:
                            logger.info("First stream message received, subscription is live")
                            first_message = False
                        await self._dispatch(message, watch)
                else:
                    receive_task.cancel()
                    await asyncio.gather(receive_task, return_exceptions=True)

                if control_task in done:
                    return control_task.result()
        finally:
            for task in (control_task, receive_task):
                if task is not None and not task.done():
                    task.cancel()

    async def _dispatch(self, message, watch: WatchSet):
        try:
            events = self.source.demux(message, watch)
        except DecodeError as e:
            logger.warning(f"Dropping undecodable update: {e}")
            return

        for event in events:
            await self.sink.apply(event)
