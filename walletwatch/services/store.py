"""SQLModel-backed persistence for checkpoints, activity and balance history.

Every method opens its own session. ``record_feed`` writes a feed's new
records and its checkpoint in one transaction, so a feed is either fully
recorded and checkpointed or not at all.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from walletwatch.errors import PersistenceError
from walletwatch.models.activity_record import ActivityRecord
from walletwatch.models.balance_snapshot import BalanceSnapshot, WalletBalance
from walletwatch.models.checkpoint import Checkpoint
from walletwatch.services.change_detector import advance, as_utc
from walletwatch.services.valuation import Valuation
from walletwatch.utils.constants import FEED_TRADES, SIDE_BUY

logger = logging.getLogger(__name__)


class Store:
    """Persistence collaborator of the account cycle."""

    def __init__(self, engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def get_checkpoint(self, exchange: str, feed: str) -> datetime | None:
        with Session(self.engine) as session:
            row = self._checkpoint_row(session, exchange, feed)
            return as_utc(row.last_checked) if row else None

    def set_checkpoint(self, exchange: str, feed: str, timestamp: datetime) -> datetime:
        try:
            with Session(self.engine) as session:
                value = self._advance_checkpoint(session, exchange, feed, timestamp)
                session.commit()
                return value
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not store {exchange}/{feed} checkpoint: {e}") from e

    # ------------------------------------------------------------------
    # Activity records
    # ------------------------------------------------------------------

    def existing_record_ids(self, exchange: str, feed: str, record_ids=None) -> set[str]:
        """Identifiers already stored for a feed, optionally narrowed to ``record_ids``."""
        stmt = select(ActivityRecord.record_id).where(
            ActivityRecord.exchange == exchange,
            ActivityRecord.feed == feed,
        )
        if record_ids is not None:
            ids = list(record_ids)
            if not ids:
                return set()
            stmt = stmt.where(ActivityRecord.record_id.in_(ids))
        with Session(self.engine) as session:
            return set(session.exec(stmt).all())

    def persist_records(self, records: list[ActivityRecord]) -> None:
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                session.add_all(records)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not store {len(records)} records: {e}") from e

    def record_feed(
        self,
        exchange: str,
        feed: str,
        records: list[ActivityRecord],
        checked_at: datetime,
    ) -> datetime:
        """Persist a feed's new records and advance its checkpoint atomically."""
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                session.add_all(records)
                value = self._advance_checkpoint(session, exchange, feed, checked_at)
                session.commit()
                return value
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Could not record {len(records)} {feed} for {exchange}: {e}"
            ) from e

    def list_records(
        self,
        exchange: str | None = None,
        feed: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ActivityRecord]:
        stmt = select(ActivityRecord).order_by(ActivityRecord.timestamp.desc())
        if exchange is not None:
            stmt = stmt.where(ActivityRecord.exchange == exchange)
        if feed is not None:
            stmt = stmt.where(ActivityRecord.feed == feed)
        with Session(self.engine) as session:
            return list(session.exec(stmt.offset(offset).limit(limit)).all())

    def get_average_buy_price(
        self,
        reference: str,
        currency: str,
        exchange: str,
        quantity: float,
    ) -> float:
        """Weighted price of the latest buys that make up ``quantity``; 0.0 without buys."""
        stmt = (
            select(ActivityRecord)
            .where(
                ActivityRecord.exchange == exchange,
                ActivityRecord.feed == FEED_TRADES,
                ActivityRecord.side == SIDE_BUY,
                ActivityRecord.base == reference,
                ActivityRecord.terms == currency,
            )
            .order_by(ActivityRecord.timestamp.desc())
        )
        with Session(self.engine) as session:
            buys = session.exec(stmt).all()

        filled = 0.0
        cost = 0.0
        for trade in buys:
            if filled >= quantity:
                break
            take = min(trade.quantity, quantity - filled)
            filled += take
            cost += take * trade.price

        if filled <= 0:
            return 0.0
        return cost / filled

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_balance_snapshot(self, exchange: str, approx_timestamp: datetime) -> BalanceSnapshot | None:
        """Latest snapshot taken at or before ``approx_timestamp``."""
        stmt = (
            select(BalanceSnapshot)
            .where(
                BalanceSnapshot.exchange == exchange,
                BalanceSnapshot.timestamp <= as_utc(approx_timestamp),
            )
            .order_by(BalanceSnapshot.timestamp.desc())
            .limit(1)
        )
        with Session(self.engine) as session:
            return session.exec(stmt).first()

    def latest_balance_snapshot(self, exchange: str) -> BalanceSnapshot | None:
        stmt = (
            select(BalanceSnapshot)
            .where(BalanceSnapshot.exchange == exchange)
            .order_by(BalanceSnapshot.timestamp.desc())
            .limit(1)
        )
        with Session(self.engine) as session:
            return session.exec(stmt).first()

    def persist_balance_snapshot(
        self,
        exchange: str,
        valuation: Valuation,
        reference: str,
        fiat: str,
        fiat_balance: float | None,
        timestamp: datetime,
    ) -> BalanceSnapshot:
        """Append a snapshot and its per-currency rows."""
        snapshot = BalanceSnapshot(
            exchange=exchange,
            timestamp=as_utc(timestamp),
            reference_currency=reference,
            reference_balance=valuation.total,
            fiat_currency=fiat,
            fiat_balance=fiat_balance,
            unpriced_currencies=",".join(valuation.unpriced),
        )
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                session.add(snapshot)
                session.flush()
                for holding in valuation.holdings:
                    session.add(WalletBalance(
                        snapshot_id=snapshot.id,
                        exchange=exchange,
                        timestamp=snapshot.timestamp,
                        currency=holding.currency,
                        quantity=holding.quantity,
                        price=holding.price,
                        reference_value=holding.reference_value,
                        percentage_change=holding.percentage_change,
                    ))
                session.commit()
                return snapshot
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not store balance snapshot for {exchange}: {e}") from e

    def latest_wallet_balances(self, exchange: str) -> list[WalletBalance]:
        latest = self.latest_balance_snapshot(exchange)
        if latest is None:
            return []
        stmt = select(WalletBalance).where(WalletBalance.snapshot_id == latest.id)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    def balance_history(self, exchange: str, since: datetime | None = None) -> list[BalanceSnapshot]:
        stmt = select(BalanceSnapshot).where(BalanceSnapshot.exchange == exchange)
        if since is not None:
            stmt = stmt.where(BalanceSnapshot.timestamp >= as_utc(since))
        with Session(self.engine) as session:
            return list(session.exec(stmt.order_by(BalanceSnapshot.timestamp)).all())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _checkpoint_row(session: Session, exchange: str, feed: str) -> Checkpoint | None:
        return session.exec(
            select(Checkpoint).where(Checkpoint.exchange == exchange, Checkpoint.feed == feed)
        ).first()

    def _advance_checkpoint(self, session: Session, exchange: str, feed: str, timestamp: datetime) -> datetime:
        row = self._checkpoint_row(session, exchange, feed)
        if row is None:
            value = advance(None, timestamp)
            session.add(Checkpoint(exchange=exchange, feed=feed, last_checked=value))
        else:
            value = advance(row.last_checked, timestamp)
            row.last_checked = value
            session.add(row)
        logger.debug(f"[{exchange}] {feed} checkpoint -> {value.isoformat()}")
        return value


def get_store() -> Store:
    """Store bound to the application engine."""
    from walletwatch.database import engine

    return Store(engine)
