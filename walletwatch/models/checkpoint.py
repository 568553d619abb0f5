"""Checkpoint model: last successful poll time per (exchange, feed)."""

from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class Checkpoint(SQLModel, table=True):
    __tablename__ = "checkpoint"
    __table_args__ = (UniqueConstraint("exchange", "feed", name="uq_checkpoint_exchange_feed"),)

    id: int | None = Field(default=None, primary_key=True)
    exchange: str = Field(index=True)
    feed: str
    last_checked: datetime
