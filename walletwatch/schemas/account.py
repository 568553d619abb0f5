"""Pydantic schemas for ExchangeAccount API."""

from datetime import datetime

import ccxt
from pydantic import BaseModel, Field, field_validator

from walletwatch.utils.constants import VALID_INTERVALS


def _clean_text(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("must not be empty")
    return text


def _check_exchange_id(value: str) -> str:
    exchange_id = value.strip().lower()
    if exchange_id not in ccxt.exchanges:
        raise ValueError(f"unknown ccxt exchange id: {exchange_id}")
    return exchange_id


def _check_interval(value: str) -> str:
    if value not in VALID_INTERVALS:
        allowed = ", ".join(VALID_INTERVALS)
        raise ValueError(f"must be one of: {allowed}")
    return value


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    exchange_id: str
    api_key: str  # Raw key material, encrypted before storage
    api_secret: str
    api_password: str = ""
    buy_notifications: bool = True
    sell_notifications: bool = True
    open_order_notifications: bool = False
    deposit_notifications: bool = True
    withdrawal_notifications: bool = True
    balance_notifications: bool = False
    schedule_interval: str = "1h"
    is_enabled: bool = True

    @field_validator("name", "api_key", "api_secret")
    @classmethod
    def _trim_required_text(cls, value: str) -> str:
        return _clean_text(value)

    @field_validator("exchange_id")
    @classmethod
    def _validate_exchange(cls, value: str) -> str:
        return _check_exchange_id(value)

    @field_validator("schedule_interval")
    @classmethod
    def _validate_interval(cls, value: str) -> str:
        return _check_interval(value)


class AccountUpdate(BaseModel):
    exchange_id: str | None = None
    api_key: str | None = None  # If provided, re-encrypts
    api_secret: str | None = None
    api_password: str | None = None
    buy_notifications: bool | None = None
    sell_notifications: bool | None = None
    open_order_notifications: bool | None = None
    deposit_notifications: bool | None = None
    withdrawal_notifications: bool | None = None
    balance_notifications: bool | None = None
    schedule_interval: str | None = None
    is_enabled: bool | None = None

    @field_validator("api_key", "api_secret")
    @classmethod
    def _trim_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _clean_text(value)

    @field_validator("exchange_id")
    @classmethod
    def _validate_optional_exchange(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _check_exchange_id(value)

    @field_validator("schedule_interval")
    @classmethod
    def _validate_optional_interval(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _check_interval(value)


class AccountRead(BaseModel):
    id: int
    name: str
    exchange_id: str
    buy_notifications: bool
    sell_notifications: bool
    open_order_notifications: bool
    deposit_notifications: bool
    withdrawal_notifications: bool
    balance_notifications: bool
    schedule_interval: str
    is_enabled: bool
    created_at: datetime
    updated_at: datetime
    # API key, secret and password are NEVER exposed

    model_config = {"from_attributes": True}
