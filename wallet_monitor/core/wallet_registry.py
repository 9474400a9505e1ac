"""Persistent list of tracked wallets (wallets.json)"""

import json
from dataclasses import asdict, dataclass
from pathlib import Path

from wallet_monitor.core.decoder import validate_address
from wallet_monitor.core.errors import ConfigError, DecodeError, PersistenceError
from wallet_monitor.core.logger import logger


@dataclass(frozen=True)
class WalletConfig:
    address: str
    name: str


class WalletRegistry:
    """JSON file holding [{"address": ..., "name": ...}, ...].

    Read once at startup (errors are fatal) and rewritten whenever a wallet
    is added or removed at runtime (errors are the caller's to log).
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> list[WalletConfig]:
        if not self.path.exists():
            raise ConfigError(f"Wallet list not found: {self.path}")

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read wallet list {self.path}: {e}") from e

        if isinstance(data, dict):
            data = data.get("wallets", [])
        if not isinstance(data, list):
            raise ConfigError(f"Wallet list {self.path} must be a JSON list")

        wallets = []
        seen_addresses, seen_names = set(), set()
        for i, entry in enumerate(data):
            if not isinstance(entry, dict) or not entry.get("address") or not entry.get("name"):
                raise ConfigError(f"Wallet entry #{i + 1} needs an address and a name")
            wallet = WalletConfig(address=str(entry["address"]).strip(), name=str(entry["name"]).strip())
            try:
                validate_address(wallet.address)
            except DecodeError as e:
                raise ConfigError(f"Wallet entry #{i + 1} ({wallet.name}): {e}") from e
            if wallet.address in seen_addresses or wallet.name in seen_names:
                raise ConfigError(f"Duplicate wallet entry #{i + 1}: {wallet.name}")
            seen_addresses.add(wallet.address)
            seen_names.add(wallet.name)
            wallets.append(wallet)

        logger.info(f"Loaded {len(wallets)} wallets from {self.path}")
        return wallets

    def save(self, wallets: list[WalletConfig]):
        payload = {"wallets": [asdict(w) for w in wallets]}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            raise PersistenceError(f"Cannot write wallet list {self.path}: {e}") from e

    def _current(self) -> list[WalletConfig]:
        try:
            return self.load()
        except ConfigError as e:
            logger.warning(f"Rewriting wallet list from scratch: {e}")
            return []

    def add(self, address: str, name: str):
        wallets = [w for w in self._current() if w.address != address]
        wallets.append(WalletConfig(address=address, name=name))
        self.save(wallets)

    def remove(self, address: str):
        self.save([w for w in self._current() if w.address != address])
