"""System API: health check, scheduler status, job logs, manual trigger."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from walletwatch.database import get_session
from walletwatch.models.exchange_account import ExchangeAccount
from walletwatch.models.job_log import JobLog
from walletwatch.api.deps import require_api_token

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler", dependencies=[Depends(require_api_token)])
def scheduler_status():
    """Current scheduler state with job details."""
    from walletwatch.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.post("/trigger/{account_id}", dependencies=[Depends(require_api_token)])
async def trigger_account(account_id: int, session: Session = Depends(get_session)):
    """Manually run one cycle for an account, even if it is disabled."""
    if not session.get(ExchangeAccount, account_id):
        raise HTTPException(status_code=404, detail="Account not found")

    from walletwatch.engine.account_job import run_account_cycle
    result = await run_account_cycle(account_id, force=True)
    if result is None:
        return {"status": "skipped", "message": f"No cycle ran for account {account_id}"}
    return {
        "status": result.status,
        "new_records": result.new_records,
        "errors": result.errors,
        "reference_balance": result.reference_balance,
    }


@router.get("/logs", dependencies=[Depends(require_api_token)])
def job_logs(
    account_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(JobLog).order_by(JobLog.timestamp.desc())
    if account_id is not None:
        stmt = stmt.where(JobLog.account_id == account_id)
    if status is not None:
        stmt = stmt.where(JobLog.status == status)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()
