"""Error taxonomy for the wallet monitor"""


class WalletMonitorError(Exception):
    """Base class for all wallet monitor errors"""


class ConfigError(WalletMonitorError):
    """Missing or malformed startup configuration. Fatal."""


class TransportError(WalletMonitorError):
    """Connect, subscribe or stream failure. Recovered by reconnecting."""


class DecodeError(WalletMonitorError):
    """Malformed account or transaction payload"""


class PersistenceError(WalletMonitorError):
    """History or registry read/write failure"""


class ValidationError(WalletMonitorError):
    """Bad client input"""


class ConflictError(WalletMonitorError):
    """Add rejected because the wallet collides with a tracked one"""


class DuplicateWalletError(ConflictError):
    def __init__(self, address: str):
        super().__init__(f"Wallet {address} is already tracked")
        self.address = address


class DuplicateNameError(ConflictError):
    def __init__(self, name: str):
        super().__init__(f"Wallet name '{name}' is already in use")
        self.name = name


class NotFoundError(WalletMonitorError):
    """Query or removal on an unknown id"""


class WalletNotFoundError(NotFoundError):
    def __init__(self, address: str):
        super().__init__(f"Wallet {address} is not tracked")
        self.address = address
