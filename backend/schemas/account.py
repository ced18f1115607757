"""Pydantic schemas for accounts and transactions."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccountType(str, Enum):
    """Canonical account types (drive the backfill length)."""

    checking = "checking"
    savings = "savings"
    credit_card = "credit_card"
    investment = "investment"
    loan = "loan"


class AccountResponse(BaseModel):
    """Schema for a canonical account."""

    id: str
    tenant_id: str
    connection_id: Optional[str] = None
    provider_id: Optional[str] = None
    external_account_id: Optional[str] = None
    name: str
    name_user_edited: bool
    account_number: Optional[str] = None
    iban: Optional[str] = None
    bic: Optional[str] = None
    bank_name: Optional[str] = None
    account_type: Optional[str] = None
    currency: str
    current_balance: Optional[Decimal] = None
    status: str
    sync_enabled: bool
    last_synced_at: Optional[datetime] = None
    last_transactions_synced_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ManualAccountCreate(BaseModel):
    """Schema for creating an account without a connection."""

    tenant_id: str
    name: str = Field(min_length=1)
    account_type: AccountType = AccountType.checking
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    bank_name: Optional[str] = None
    iban: Optional[str] = None
    account_number: Optional[str] = None
    balance: Optional[Decimal] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class AccountUpdate(BaseModel):
    """Schema for renaming an account."""

    name: str = Field(min_length=1)


class TransactionResponse(BaseModel):
    """Schema for a canonical transaction."""

    id: str
    account_id: str
    connection_id: Optional[str] = None
    external_transaction_id: Optional[str] = None
    transaction_date: date
    amount: Decimal
    currency: str
    description: Optional[str] = None
    counterparty_name: Optional[str] = None
    category: Optional[str] = None
    reference: Optional[str] = None
    booking_status: str
    is_removed: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
