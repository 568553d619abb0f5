"""Recorded activity API (trades, open orders, deposits, withdrawals)."""

from fastapi import APIRouter, Depends, HTTPException

from walletwatch.api.deps import require_api_token
from walletwatch.services.store import Store, get_store
from walletwatch.utils.constants import FEEDS

router = APIRouter(prefix="/api/activity", tags=["activity"], dependencies=[Depends(require_api_token)])


@router.get("")
def list_activity(
    account: str | None = None,
    feed: str | None = None,
    limit: int = 50,
    offset: int = 0,
    store: Store = Depends(get_store),
):
    if feed is not None and feed not in FEEDS:
        raise HTTPException(status_code=422, detail=f"feed must be one of: {', '.join(FEEDS)}")
    return store.list_records(exchange=account, feed=feed, limit=limit, offset=offset)
