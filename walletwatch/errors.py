"""Exception hierarchy shared by the engine, services and API."""


class WalletWatchError(Exception):
    """Base class for all walletwatch errors."""


class ConfigurationError(WalletWatchError):
    """Missing or inconsistent configuration. Fatal at startup, never retried."""


class TransientFetchError(WalletWatchError):
    """Exchange or network failure. The feed is retried at the next tick."""


class PersistenceError(WalletWatchError):
    """Records or checkpoints could not be durably stored."""
