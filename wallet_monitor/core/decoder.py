"""Decoding of raw Solana account payloads and WSOL account derivation"""

import base64
import struct
from dataclasses import dataclass, field

import base58
from solders.pubkey import Pubkey

from wallet_monitor.core.config import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WSOL_DECIMALS,
    WSOL_MINT,
)
from wallet_monitor.core.errors import DecodeError
from wallet_monitor.core.logger import logger, short_address

# SPL token account: mint, owner, amount, delegate, state, is_native,
# delegated_amount, close_authority. COption tags are little-endian u32.
TOKEN_ACCOUNT_LAYOUT = struct.Struct("<32s32sQI32sBIQQI32s")
TOKEN_ACCOUNT_SIZE = TOKEN_ACCOUNT_LAYOUT.size  # 165

ACCOUNT_STATES = {1: "initialized", 2: "frozen"}

# Base58 text of a 32-byte public key
MIN_ADDRESS_LENGTH = 32
MAX_ADDRESS_LENGTH = 44


@dataclass(frozen=True)
class TokenAccount:
    mint: str
    owner: str
    amount: int
    state: str
    delegate: str | None = None
    is_native: int | None = None
    delegated_amount: int = 0
    close_authority: str | None = None


@dataclass
class WatchSet:
    """Addresses to subscribe to and the routing back to the owning wallet"""

    wallets: list[str] = field(default_factory=list)
    ata_to_wallet: dict[str, str] = field(default_factory=dict)

    @property
    def atas(self) -> list[str]:
        return list(self.ata_to_wallet)

    @property
    def accounts(self) -> list[str]:
        return self.wallets + self.atas

    def is_wallet(self, address: str) -> bool:
        return address in self.wallets

    def owner_of(self, ata: str) -> str | None:
        return self.ata_to_wallet.get(ata)


def _coption(tag: int, value, name: str):
    if tag == 0:
        return None
    if tag == 1:
        return value
    raise DecodeError(f"Invalid COption tag {tag} for {name}")


def decode_token_account(data: bytes) -> TokenAccount:
    """Unpack the fixed 165-byte SPL token account layout"""
    if len(data) != TOKEN_ACCOUNT_SIZE:
        raise DecodeError(
            f"Token account data is {len(data)} bytes, expected {TOKEN_ACCOUNT_SIZE}"
        )

    (
        mint,
        owner,
        amount,
        delegate_tag,
        delegate,
        state,
        native_tag,
        native_reserve,
        delegated_amount,
        close_tag,
        close_authority,
    ) = TOKEN_ACCOUNT_LAYOUT.unpack(data)

    if state not in ACCOUNT_STATES:
        raise DecodeError(f"Token account is not initialized (state={state})")

    delegate_key = _coption(delegate_tag, delegate, "delegate")
    close_key = _coption(close_tag, close_authority, "close_authority")

    return TokenAccount(
        mint=str(Pubkey.from_bytes(mint)),
        owner=str(Pubkey.from_bytes(owner)),
        amount=amount,
        state=ACCOUNT_STATES[state],
        delegate=str(Pubkey.from_bytes(delegate_key)) if delegate_key else None,
        is_native=_coption(native_tag, native_reserve, "is_native"),
        delegated_amount=delegated_amount,
        close_authority=str(Pubkey.from_bytes(close_key)) if close_key else None,
    )


def decode_account_data(data) -> bytes:
    """Raw bytes from a PubSub/RPC account `data` field ([payload, encoding])"""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if not isinstance(data, (list, tuple)) or len(data) != 2:
        raise DecodeError(f"Unexpected account data shape: {type(data).__name__}")

    payload, encoding = data
    try:
        if encoding == "base64":
            return base64.b64decode(payload, validate=True)
        if encoding == "base58":
            return base58.b58decode(payload)
    except (ValueError, TypeError) as e:
        raise DecodeError(f"Cannot decode {encoding} account data: {e}") from e
    raise DecodeError(f"Unsupported account data encoding: {encoding}")


def decode_lamports(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise DecodeError(f"Invalid lamports value: {value!r}")
    return value


def token_amount_to_ui(amount: int, decimals: int = WSOL_DECIMALS) -> float:
    return amount / 10**decimals


def validate_address(address: str) -> Pubkey:
    if not MIN_ADDRESS_LENGTH <= len(address) <= MAX_ADDRESS_LENGTH:
        raise DecodeError(f"Invalid address {address}: length {len(address)}")
    try:
        return Pubkey.from_string(address)
    except ValueError as e:
        raise DecodeError(f"Invalid address {address}: {e}") from e


def derive_wsol_ata(address: str) -> str:
    """Associated token account holding the wallet's wrapped SOL"""
    owner = validate_address(address)
    ata, _bump = Pubkey.find_program_address(
        [
            bytes(owner),
            bytes(Pubkey.from_string(TOKEN_PROGRAM_ID)),
            bytes(Pubkey.from_string(WSOL_MINT)),
        ],
        Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID),
    )
    return str(ata)


def build_watch_set(addresses: list[str]) -> WatchSet:
    watch = WatchSet(wallets=list(addresses))
    for address in addresses:
        try:
            ata = derive_wsol_ata(address)
        except DecodeError as e:
            logger.error(f"Cannot derive WSOL account for {address}: {e}")
            continue
        logger.debug(f"WSOL account of {short_address(address)}: {short_address(ata)}")
        watch.ata_to_wallet[ata] = address
    return watch
