"""Solana PubSub WebSocket subscriptions"""

import json
from collections import deque

import aiohttp

from wallet_monitor.core.config import COMMITMENT, CONNECTION_TIMEOUT, SOLANA_WS_URL, WS_HEARTBEAT
from wallet_monitor.core.decoder import WatchSet
from wallet_monitor.core.errors import TransportError
from wallet_monitor.core.logger import logger
from wallet_monitor.core.models import AccountUpdate
from wallet_monitor.core.solana_rpc import SolanaRPC


class PubSubConnection:
    """One PubSub WebSocket carrying a replaceable set of subscriptions.

    `subscribe()` can be called again on the same connection: the previous
    subscriptions are cancelled and a fresh set is created.
    """

    subscribe_method = ""
    unsubscribe_method = ""

    def __init__(self, ws_url: str = SOLANA_WS_URL, commitment: str = COMMITMENT):
        self.ws_url = ws_url
        self.commitment = commitment
        self.session: aiohttp.ClientSession | None = None
        self.ws: aiohttp.ClientWebSocketResponse | None = None
        self._next_id = 0
        self._subscriptions: dict[int, str] = {}
        self._backlog: deque = deque()

    async def __aenter__(self):
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=CONNECTION_TIMEOUT)
        self.session = aiohttp.ClientSession(timeout=timeout)
        try:
            self.ws = await self.session.ws_connect(self.ws_url, heartbeat=WS_HEARTBEAT)
        except (aiohttp.ClientError, OSError) as e:
            await self.session.close()
            raise TransportError(f"Cannot connect to {self.ws_url}: {e}") from e
        logger.info(f"Connected to {self.ws_url}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.ws is not None:
            await self.ws.close()
        if self.session is not None:
            await self.session.close()
        self.ws = None
        self.session = None
        logger.debug("PubSub connection closed")

    async def _send(self, method: str, params: list) -> int:
        self._next_id += 1
        try:
            await self.ws.send_json(
                {"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params}
            )
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"{method} send failed: {e}") from e
        return self._next_id

    async def _read(self) -> dict:
        try:
            msg = await self.ws.receive()
        except (aiohttp.ClientError, ConnectionError) as e:
            raise TransportError(f"Stream error: {e}") from e

        if msg.type == aiohttp.WSMsgType.TEXT:
            try:
                return json.loads(msg.data)
            except ValueError as e:
                raise TransportError(f"Undecodable stream frame: {e}") from e
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise TransportError(f"Stream error: {self.ws.exception()}")
        raise TransportError(f"Stream closed ({msg.type.name})")

    def _subscription_params(self, address: str) -> list:
        raise NotImplementedError

    async def subscribe(self, watch: WatchSet):
        """Replace current subscriptions with one per watched account"""
        for subscription_id in list(self._subscriptions):
            await self._send(self.unsubscribe_method, [subscription_id])
        self._subscriptions.clear()
        self._backlog.clear()

        pending = {}
        for address in watch.accounts:
            request_id = await self._send(self.subscribe_method, self._subscription_params(address))
            pending[request_id] = address

        while pending:
            message = await self._read()
            request_id = message.get("id")
            if request_id in pending:
                address = pending.pop(request_id)
                if "error" in message:
                    raise TransportError(
                        f"{self.subscribe_method} rejected for {address}: {message['error']}"
                    )
                self._subscriptions[message["result"]] = address
            elif "method" in message:
                # Notifications that race the confirmations
                self._backlog.append(message)

        logger.info(f"Subscribed to {len(self._subscriptions)} accounts")

    async def next_notification(self) -> tuple[str, dict]:
        """(watched address, notification result) of the next live notification"""
        while True:
            message = self._backlog.popleft() if self._backlog else await self._read()
            params = message.get("params")
            if not isinstance(params, dict):
                continue  # unsubscribe confirmations, pings
            address = self._subscriptions.get(params.get("subscription"))
            if address is None:
                continue  # leftovers of a cancelled subscription
            return address, params.get("result") or {}


class AccountSubscription(PubSubConnection):
    subscribe_method = "accountSubscribe"
    unsubscribe_method = "accountUnsubscribe"

    def _subscription_params(self, address: str) -> list:
        return [address, {"encoding": "base64", "commitment": self.commitment}]

    async def receive(self) -> AccountUpdate:
        address, result = await self.next_notification()
        value = result.get("value") or {}
        return AccountUpdate(
            pubkey=address,
            lamports=value.get("lamports"),
            data=value.get("data"),
            slot=(result.get("context") or {}).get("slot", 0),
        )


class LogsSubscription(PubSubConnection):
    """Transactions mentioning watched accounts, fetched in full over RPC"""

    subscribe_method = "logsSubscribe"
    unsubscribe_method = "logsUnsubscribe"

    def __init__(self, rpc: SolanaRPC, ws_url: str = SOLANA_WS_URL, commitment: str = COMMITMENT):
        super().__init__(ws_url=ws_url, commitment=commitment)
        self.rpc = rpc
        # A transaction touching both a wallet and its WSOL account is announced twice
        self._seen = deque(maxlen=1000)

    def _subscription_params(self, address: str) -> list:
        return [{"mentions": [address]}, {"commitment": self.commitment}]

    async def receive(self) -> dict | None:
        _address, result = await self.next_notification()
        signature = (result.get("value") or {}).get("signature")
        if not signature or signature in self._seen:
            return None
        self._seen.append(signature)

        try:
            tx = await self.rpc.get_transaction(signature)
        except TransportError as e:
            logger.warning(f"Cannot fetch transaction {signature[:16]}: {e}")
            return None
        if tx is None:
            logger.debug(f"Transaction {signature[:16]} not available yet")
        return tx
