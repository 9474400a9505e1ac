"""Balance event producers: account updates and transaction balance diffs.

Both turn raw stream messages into SolBalanceEvent / WsolBalanceEvent for the
same ingestion sink. Demultiplexing is pure; transports live in streams.py.
"""

from wallet_monitor.core.config import COMMITMENT, SOLANA_WS_URL, WSOL_DECIMALS, WSOL_MINT
from wallet_monitor.core.decoder import (
    WatchSet,
    decode_account_data,
    decode_lamports,
    decode_token_account,
    token_amount_to_ui,
)
from wallet_monitor.core.errors import ConfigError, DecodeError
from wallet_monitor.core.models import AccountUpdate, SolBalanceEvent, WsolBalanceEvent
from wallet_monitor.core.solana_rpc import SolanaRPC
from wallet_monitor.core.streams import AccountSubscription, LogsSubscription


def demux_account_update(update: AccountUpdate, watch: WatchSet) -> list:
    if watch.is_wallet(update.pubkey):
        return [SolBalanceEvent(update.pubkey, decode_lamports(update.lamports))]

    owner = watch.owner_of(update.pubkey)
    if owner is None:
        return []

    data = decode_account_data(update.data)
    if not data and update.lamports == 0:
        # Closed token account
        return [WsolBalanceEvent(owner, 0.0)]

    token = decode_token_account(data)
    if token.mint != WSOL_MINT:
        raise DecodeError(f"Token account {update.pubkey} holds mint {token.mint}, not WSOL")
    return [WsolBalanceEvent(owner, token_amount_to_ui(token.amount))]


def _account_keys(tx: dict) -> list[str]:
    message = tx["transaction"]["message"]
    keys = [k["pubkey"] if isinstance(k, dict) else k for k in message["accountKeys"]]
    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    return keys + list(loaded.get("writable", [])) + list(loaded.get("readonly", []))


def _token_amount(entry: dict | None) -> tuple[int, int]:
    if entry is None:
        return 0, WSOL_DECIMALS
    amount = entry["uiTokenAmount"]
    return int(amount["amount"]), int(amount.get("decimals", WSOL_DECIMALS))


def demux_transaction(tx: dict, watch: WatchSet) -> list:
    """Balance changes of watched accounts, read from a transaction's pre/post balances"""
    try:
        meta = tx["meta"]
        keys = _account_keys(tx)
        pre, post = meta["preBalances"], meta["postBalances"]

        events = []
        for i, key in enumerate(keys):
            if not watch.is_wallet(key) or i >= len(pre) or i >= len(post):
                continue
            if pre[i] != post[i]:
                events.append(SolBalanceEvent(key, decode_lamports(post[i])))

        pre_tokens = {(b["accountIndex"], b["mint"]): b for b in meta.get("preTokenBalances") or []}
        post_tokens = {(b["accountIndex"], b["mint"]): b for b in meta.get("postTokenBalances") or []}

        for index, mint in sorted(pre_tokens.keys() | post_tokens.keys()):
            if mint != WSOL_MINT:
                continue
            if index >= len(keys):
                raise DecodeError(f"Token balance refers to missing account #{index}")
            owner = watch.owner_of(keys[index])
            if owner is None:
                continue

            before, _ = _token_amount(pre_tokens.get((index, mint)))
            after, decimals = _token_amount(post_tokens.get((index, mint)))
            if before != after:
                events.append(WsolBalanceEvent(owner, token_amount_to_ui(after, decimals)))
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed transaction: {e!r}") from e

    return events


class AccountUpdateSource:
    """accountSubscribe on every wallet and its WSOL account"""

    name = "account"

    def __init__(self, ws_url: str = SOLANA_WS_URL, commitment: str = COMMITMENT):
        self.ws_url = ws_url
        self.commitment = commitment

    def open(self) -> AccountSubscription:
        return AccountSubscription(ws_url=self.ws_url, commitment=self.commitment)

    def demux(self, message: AccountUpdate, watch: WatchSet) -> list:
        return demux_account_update(message, watch)


class TransactionDiffSource:
    """logsSubscribe mentions, diffing each transaction's balances"""

    name = "transaction"

    def __init__(self, rpc: SolanaRPC, ws_url: str = SOLANA_WS_URL, commitment: str = COMMITMENT):
        self.rpc = rpc
        self.ws_url = ws_url
        self.commitment = commitment

    def open(self) -> LogsSubscription:
        return LogsSubscription(self.rpc, ws_url=self.ws_url, commitment=self.commitment)

    def demux(self, message: dict | None, watch: WatchSet) -> list:
        if message is None:
            return []
        return demux_transaction(message, watch)


def create_source(kind: str, rpc: SolanaRPC):
    if kind == AccountUpdateSource.name:
        return AccountUpdateSource()
    if kind == TransactionDiffSource.name:
        return TransactionDiffSource(rpc)
    raise ConfigError(f"Unknown INGESTION_SOURCE '{kind}' (expected 'account' or 'transaction')")
