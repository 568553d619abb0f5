"""CRUD API for exchange accounts."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from walletwatch.database import get_session
from walletwatch.models.exchange_account import ExchangeAccount
from walletwatch.schemas.account import AccountCreate, AccountUpdate, AccountRead
from walletwatch.services.encryption import encrypt
from walletwatch.api.deps import require_api_token

router = APIRouter(prefix="/api/accounts", tags=["accounts"], dependencies=[Depends(require_api_token)])

_SECRET_FIELDS = {
    "api_key": "api_key_encrypted",
    "api_secret": "api_secret_encrypted",
    "api_password": "api_password_encrypted",
}


def _get_or_404(session: Session, account_id: int) -> ExchangeAccount:
    account = session.get(ExchangeAccount, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.get("", response_model=list[AccountRead])
def list_accounts(
    enabled: bool | None = None,
    session: Session = Depends(get_session),
):
    stmt = select(ExchangeAccount)
    if enabled is not None:
        stmt = stmt.where(ExchangeAccount.is_enabled == enabled)
    return session.exec(stmt).all()


@router.post("", response_model=AccountRead, status_code=201)
def create_account(
    data: AccountCreate,
    session: Session = Depends(get_session),
):
    existing = session.exec(
        select(ExchangeAccount).where(ExchangeAccount.name == data.name)
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail=f"Account '{data.name}' already exists")

    payload = data.model_dump(exclude=set(_SECRET_FIELDS))
    account = ExchangeAccount(
        **payload,
        **{column: encrypt(getattr(data, field)) for field, column in _SECRET_FIELDS.items()},
    )
    session.add(account)
    session.commit()
    session.refresh(account)

    if account.is_enabled:
        from walletwatch.engine.scheduler import add_account_job
        add_account_job(account.id, account.schedule_interval)

    return account


@router.get("/{account_id}", response_model=AccountRead)
def get_account(account_id: int, session: Session = Depends(get_session)):
    return _get_or_404(session, account_id)


@router.put("/{account_id}", response_model=AccountRead)
def update_account(
    account_id: int,
    data: AccountUpdate,
    session: Session = Depends(get_session),
):
    account = _get_or_404(session, account_id)

    update_data = data.model_dump(exclude_unset=True)
    for field, column in _SECRET_FIELDS.items():
        if field in update_data:
            value = update_data.pop(field)
            if value is not None:
                setattr(account, column, encrypt(value))

    for key, value in update_data.items():
        if value is not None:
            setattr(account, key, value)
    account.updated_at = datetime.now(timezone.utc)

    session.add(account)
    session.commit()
    session.refresh(account)

    from walletwatch.engine.scheduler import sync_account_job
    sync_account_job(account)

    return account


@router.delete("/{account_id}", status_code=204)
def delete_account(account_id: int, session: Session = Depends(get_session)):
    account = _get_or_404(session, account_id)

    from walletwatch.engine.scheduler import remove_account_job
    remove_account_job(account_id)

    session.delete(account)
    session.commit()


@router.post("/{account_id}/toggle", response_model=AccountRead)
def toggle_account(account_id: int, session: Session = Depends(get_session)):
    account = _get_or_404(session, account_id)

    account.is_enabled = not account.is_enabled
    account.updated_at = datetime.now(timezone.utc)
    session.add(account)
    session.commit()
    session.refresh(account)

    from walletwatch.engine.scheduler import sync_account_job
    sync_account_job(account)

    return account


@router.post("/{account_id}/test")
async def test_account(account_id: int, session: Session = Depends(get_session)):
    """Test connectivity to the exchange using this account's keys."""
    account = _get_or_404(session, account_id)

    from walletwatch.engine.account_job import build_client
    from walletwatch.errors import ConfigurationError

    try:
        client = build_client(account)
    except (ConfigurationError, ValueError) as e:
        return {"status": "error", "message": str(e)}
    try:
        return await client.test_connection()
    finally:
        await client.close()
