"""CLI tool for admin operations.

Usage:
    python -m walletwatch.cli add-account
    python -m walletwatch.cli list-accounts
    python -m walletwatch.cli check <account>
"""

import asyncio
import getpass
import sys

import ccxt
from sqlmodel import Session, select

from walletwatch.config import settings, check_settings
from walletwatch.database import engine, create_db_and_tables
from walletwatch.errors import ConfigurationError
from walletwatch.models.exchange_account import ExchangeAccount
from walletwatch.services.encryption import encrypt
from walletwatch.utils.constants import VALID_INTERVALS
from walletwatch.utils.logging import setup_logging


def add_account():
    """Register an exchange account with encrypted API keys."""
    create_db_and_tables()

    name = input("Account name: ").strip()
    if not name:
        print("Account name cannot be empty.")
        sys.exit(1)

    with Session(engine) as session:
        existing = session.exec(select(ExchangeAccount).where(ExchangeAccount.name == name)).first()
        if existing:
            print(f"Account '{name}' already exists.")
            sys.exit(1)

    exchange_id = input("ccxt exchange id (e.g. binance): ").strip().lower()
    if exchange_id not in ccxt.exchanges:
        print(f"Unknown exchange id: {exchange_id}")
        sys.exit(1)

    api_key = getpass.getpass("API key: ").strip()
    api_secret = getpass.getpass("API secret: ").strip()
    if not api_key or not api_secret:
        print("API key and secret cannot be empty.")
        sys.exit(1)
    api_password = getpass.getpass("API password (leave empty if none): ").strip()

    interval = input(f"Schedule interval [{settings.default_schedule_interval}]: ").strip()
    interval = interval or settings.default_schedule_interval
    if interval not in VALID_INTERVALS:
        print(f"Interval must be one of: {', '.join(VALID_INTERVALS)}")
        sys.exit(1)

    try:
        account = ExchangeAccount(
            name=name,
            exchange_id=exchange_id,
            api_key_encrypted=encrypt(api_key),
            api_secret_encrypted=encrypt(api_secret),
            api_password_encrypted=encrypt(api_password),
            schedule_interval=interval,
        )
    except ConfigurationError as e:
        print(str(e))
        sys.exit(1)

    with Session(engine) as session:
        session.add(account)
        session.commit()

    print(f"\nAccount '{name}' ({exchange_id}) created, polling every {interval}.")


def list_accounts():
    create_db_and_tables()
    with Session(engine) as session:
        accounts = session.exec(select(ExchangeAccount).order_by(ExchangeAccount.name)).all()
    if not accounts:
        print("No accounts configured.")
        return
    for account in accounts:
        state = "enabled" if account.is_enabled else "disabled"
        print(f"{account.id:>4}  {account.name:<20} {account.exchange_id:<12} {account.schedule_interval:<4} {state}")


def check_account(name: str):
    """Run a single cycle for one account without the scheduler."""
    setup_logging()
    try:
        check_settings(settings)
    except ConfigurationError as e:
        print(str(e))
        sys.exit(1)
    create_db_and_tables()

    with Session(engine) as session:
        account = session.exec(select(ExchangeAccount).where(ExchangeAccount.name == name)).first()
    if not account:
        print(f"Account '{name}' not found.")
        sys.exit(1)

    from walletwatch.engine.account_job import run_account_cycle

    result = asyncio.run(run_account_cycle(account.id, force=True))
    if result is None:
        print("Cycle did not run; see log output.")
        sys.exit(1)
    print(f"Status: {result.status}")
    for feed, count in result.new_records.items():
        print(f"  new {feed}: {count}")
    if result.reference_balance is not None:
        print(f"  balance: {result.reference_balance:.8f} {settings.reference_currency}")
    for error in result.errors:
        print(f"  error: {error}")


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m walletwatch.cli <command>")
        print("Commands: add-account, list-accounts, check <account>")
        sys.exit(1)

    command = sys.argv[1]
    if command == "add-account":
        add_account()
    elif command == "list-accounts":
        list_accounts()
    elif command == "check":
        if len(sys.argv) < 3:
            print("Usage: python -m walletwatch.cli check <account>")
            sys.exit(1)
        check_account(sys.argv[2])
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
