"""Database models."""

from walletwatch.models.exchange_account import ExchangeAccount
from walletwatch.models.activity_record import ActivityRecord
from walletwatch.models.checkpoint import Checkpoint
from walletwatch.models.balance_snapshot import BalanceSnapshot, WalletBalance
from walletwatch.models.job_log import JobLog

__all__ = [
    "ExchangeAccount",
    "ActivityRecord",
    "Checkpoint",
    "BalanceSnapshot",
    "WalletBalance",
    "JobLog",
]
