"""APScheduler integration for FastAPI.

Manages per-account interval jobs that run the polling cycle.
"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlmodel import Session, select

from walletwatch.database import engine
from walletwatch.models.exchange_account import ExchangeAccount
from walletwatch.utils.constants import INTERVAL_HOURS

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def _job_id(account_id: int) -> str:
    return f"account_{account_id}"


def _get_trigger(interval: str) -> IntervalTrigger:
    # Support arbitrary "<N>m" schedule intervals
    if interval.endswith("m") and interval[:-1].isdigit():
        return IntervalTrigger(minutes=int(interval[:-1]))
    hours = INTERVAL_HOURS.get(interval, 1.0)
    if hours < 1:
        return IntervalTrigger(minutes=int(hours * 60))
    return IntervalTrigger(hours=hours)


def add_account_job(account_id: int, schedule_interval: str, run_now: bool = True):
    """Add or replace the polling job for an exchange account."""
    from walletwatch.engine.account_job import run_account_cycle

    job_id = _job_id(account_id)

    if scheduler.get_job(job_id):
        scheduler.remove_job(job_id)

    trigger = _get_trigger(schedule_interval)
    # next_run_time=None would add the job paused, so only pass it to fire immediately
    extra = {"next_run_time": datetime.now(timezone.utc)} if run_now else {}
    scheduler.add_job(
        run_account_cycle,
        trigger=trigger,
        args=[account_id],
        id=job_id,
        name=f"Account {account_id}",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
        **extra,
    )
    logger.info(f"Scheduled account {account_id} every {schedule_interval}")


def remove_account_job(account_id: int):
    """Remove the polling job for an exchange account."""
    job_id = _job_id(account_id)
    if scheduler.get_job(job_id):
        scheduler.remove_job(job_id)
        logger.info(f"Removed job for account {account_id}")


def sync_account_job(account: ExchangeAccount):
    """Make the scheduler match an account's enable flag and interval."""
    if account.is_enabled:
        add_account_job(account.id, account.schedule_interval, run_now=False)
    else:
        remove_account_job(account.id)


def set_all_accounts_enabled(enabled: bool) -> int:
    """Enable or disable every account whose flag differs. Returns how many changed."""
    with Session(engine) as session:
        accounts = session.exec(
            select(ExchangeAccount).where(ExchangeAccount.is_enabled == (not enabled))
        ).all()
        for account in accounts:
            account.is_enabled = enabled
            account.updated_at = datetime.now(timezone.utc)
            session.add(account)
        session.commit()
        for account in accounts:
            session.refresh(account)
            sync_account_job(account)
        return len(accounts)


def start_scheduler():
    """Start the scheduler and load all enabled accounts."""
    with Session(engine) as session:
        accounts = session.exec(
            select(ExchangeAccount).where(ExchangeAccount.is_enabled == True)
        ).all()
        for account in accounts:
            add_account_job(account.id, account.schedule_interval)

    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
