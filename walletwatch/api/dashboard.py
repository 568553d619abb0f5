"""Dashboard API: summary stats and balance history."""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from sqlmodel import Session, select, func

from walletwatch.api.deps import require_api_token
from walletwatch.config import settings
from walletwatch.database import get_session
from walletwatch.models.activity_record import ActivityRecord
from walletwatch.models.exchange_account import ExchangeAccount
from walletwatch.services.store import Store, get_store

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"], dependencies=[Depends(require_api_token)])


@router.get("/summary")
def dashboard_summary(
    session: Session = Depends(get_session),
    store: Store = Depends(get_store),
):
    """Per-account latest balance and 24h change, plus record counts."""
    accounts = session.exec(select(ExchangeAccount)).all()
    counts = dict(
        session.exec(
            select(ActivityRecord.feed, func.count(ActivityRecord.id)).group_by(ActivityRecord.feed)
        ).all()
    )

    lookback = datetime.now(timezone.utc) - timedelta(hours=settings.balance_lookback_hours)
    balances = []
    for account in accounts:
        latest = store.latest_balance_snapshot(account.name)
        previous = store.get_balance_snapshot(account.name, lookback)
        change = None
        if latest and previous and previous.reference_balance:
            change = round(
                (latest.reference_balance - previous.reference_balance) / previous.reference_balance * 100, 2
            )
        balances.append({
            "account": account.name,
            "reference_currency": latest.reference_currency if latest else settings.reference_currency,
            "reference_balance": latest.reference_balance if latest else None,
            "fiat_currency": latest.fiat_currency if latest else settings.fiat_currency,
            "fiat_balance": latest.fiat_balance if latest else None,
            "change_pct": change,
            "timestamp": latest.timestamp.isoformat() if latest else None,
        })

    return {
        "total_accounts": len(accounts),
        "active_accounts": sum(1 for a in accounts if a.is_enabled),
        "records": counts,
        "balances": balances,
    }


@router.get("/balances/{account}")
def balance_history(
    account: str,
    hours: float | None = None,
    store: Store = Depends(get_store),
):
    """Balance curve for one account."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours) if hours else None
    return [
        {
            "timestamp": s.timestamp.isoformat(),
            "reference_balance": s.reference_balance,
            "fiat_balance": s.fiat_balance,
        }
        for s in store.balance_history(account, since)
    ]


@router.get("/wallet/{account}")
def latest_wallet(account: str, store: Store = Depends(get_store)):
    """Per-currency holdings from the latest snapshot."""
    return [
        {
            "currency": b.currency,
            "quantity": b.quantity,
            "price": b.price,
            "reference_value": b.reference_value,
            "percentage_change": b.percentage_change,
        }
        for b in store.latest_wallet_balances(account)
    ]
