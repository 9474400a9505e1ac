"""Solana JSON-RPC client"""

import asyncio
import itertools

import aiohttp

from wallet_monitor.core.config import (
    COMMITMENT,
    CONNECTION_TIMEOUT,
    LAMPORTS_PER_SOL,
    REQUEST_RETRY_ATTEMPTS,
    SOLANA_RPC_URL,
)
from wallet_monitor.core.decoder import derive_wsol_ata
from wallet_monitor.core.errors import TransportError
from wallet_monitor.core.logger import logger, short_address


class RPCError(TransportError):
    """Error object returned by the RPC node"""

    def __init__(self, method: str, error: dict):
        self.code = error.get("code")
        self.message = error.get("message", "")
        super().__init__(f"{method} failed ({self.code}): {self.message}")


class SolanaRPC:
    def __init__(self, endpoint: str = SOLANA_RPC_URL, commitment: str = COMMITMENT):
        self.endpoint = endpoint
        self.commitment = commitment
        self.session: aiohttp.ClientSession | None = None
        self._ids = itertools.count(1)

    async def open(self):
        if self.session is not None:
            return
        connector = aiohttp.TCPConnector(limit=20, ttl_dns_cache=300)
        timeout = aiohttp.ClientTimeout(total=CONNECTION_TIMEOUT)
        self.session = aiohttp.ClientSession(connector=connector, timeout=timeout)
        logger.debug(f"RPC session created for {self.endpoint}")

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None
            logger.debug("RPC session closed")

    async def call(self, method: str, params: list | None = None):
        """JSON-RPC call with exponential backoff retry on transport errors"""
        if self.session is None:
            raise TransportError("RPC session is not open")

        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        for attempt in range(REQUEST_RETRY_ATTEMPTS):
            try:
                async with self.session.post(self.endpoint, json=payload) as response:
                    if response.status == 429:  # Rate limited
                        wait_time = 2**attempt
                        logger.warning(f"Rate limited, waiting {wait_time}s...")
                        await asyncio.sleep(wait_time)
                        continue
                    response.raise_for_status()
                    body = await response.json()
            except asyncio.TimeoutError:
                logger.warning(f"{method} timeout on attempt {attempt + 1}/{REQUEST_RETRY_ATTEMPTS}")
                if attempt < REQUEST_RETRY_ATTEMPTS - 1:
                    await asyncio.sleep(2**attempt)
                continue
            except aiohttp.ClientError as e:
                logger.error(f"{method} request error: {e}")
                if attempt < REQUEST_RETRY_ATTEMPTS - 1:
                    await asyncio.sleep(2**attempt)
                continue

            if "error" in body:
                raise RPCError(method, body["error"])
            return body.get("result")

        raise TransportError(f"{method} failed after {REQUEST_RETRY_ATTEMPTS} attempts")

    async def get_balance(self, address: str) -> int:
        """Lamport balance of an account"""
        result = await self.call("getBalance", [address, {"commitment": self.commitment}])
        return int(result["value"])

    async def get_token_account_balance(self, address: str) -> float:
        result = await self.call(
            "getTokenAccountBalance", [address, {"commitment": self.commitment}]
        )
        value = result["value"]
        if value.get("uiAmount") is not None:
            return float(value["uiAmount"])
        return int(value["amount"]) / 10 ** int(value["decimals"])

    async def get_transaction(self, signature: str) -> dict | None:
        return await self.call(
            "getTransaction",
            [
                signature,
                {
                    "commitment": self.commitment,
                    "encoding": "json",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def fetch_balances(self, address: str) -> tuple[float, float]:
        """(SOL, WSOL) balances of a wallet. A missing or unreachable WSOL account counts as 0."""
        lamports = await self.get_balance(address)
        sol_balance = lamports / LAMPORTS_PER_SOL

        ata = derive_wsol_ata(address)
        try:
            wsol_balance = await self.get_token_account_balance(ata)
        except RPCError as e:
            logger.debug(f"No WSOL account for {short_address(address)}: {e.message}")
            wsol_balance = 0.0
        except TransportError as e:
            logger.warning(f"WSOL lookup failed for {short_address(address)}, assuming 0: {e}")
            wsol_balance = 0.0

        return sol_balance, wsol_balance
