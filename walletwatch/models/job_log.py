"""JobLog model: per-cycle execution log for each exchange account."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class JobLog(SQLModel, table=True):
    __tablename__ = "job_log"

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="exchange_account.id", index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str  # "success", "partial", "error", "skipped"
    action: str | None = None  # "cycle", "cycle_skipped_overlap", ...
    new_trades: int = 0
    new_open_orders: int = 0
    new_deposits: int = 0
    new_withdrawals: int = 0
    reference_balance: float | None = None
    message: str | None = None
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
