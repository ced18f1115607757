"""Account API endpoints."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import get_or_404
from database import get_db
from models import Account
from schemas import AccountResponse, AccountUpdate, ManualAccountCreate, TransactionResponse
from services.connection_service import ConnectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.get("", response_model=list[AccountResponse])
def list_accounts(
    tenant_id: str,
    include_closed: bool = True,
    db: Session = Depends(get_db),
):
    """List a tenant's canonical accounts."""
    return ConnectionService.list_accounts(db, tenant_id, include_closed=include_closed)


@router.post("", response_model=AccountResponse, status_code=201)
def create_manual_account(body: ManualAccountCreate, db: Session = Depends(get_db)):
    """Create an account that is not backed by a provider connection."""
    try:
        account = ConnectionService.create_manual_account(
            db,
            body.tenant_id,
            body.name,
            account_type=body.account_type.value,
            currency=body.currency,
            bank_name=body.bank_name,
            iban=body.iban,
            account_number=body.account_number,
            balance=body.balance,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    db.refresh(account)
    return account


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(account_id: str, db: Session = Depends(get_db)):
    """Get a specific account."""
    return get_or_404(db, Account, account_id, "Account not found")


@router.patch("/{account_id}", response_model=AccountResponse)
def rename_account(account_id: str, body: AccountUpdate, db: Session = Depends(get_db)):
    """Rename an account. Provider syncs never overwrite the new name."""
    account = get_or_404(db, Account, account_id, "Account not found")
    ConnectionService.rename_account(db, account, body.name)
    db.commit()
    db.refresh(account)
    logger.info("Account renamed: %s (id=%s)", account.name, account.id)
    return account


@router.get("/{account_id}/transactions", response_model=list[TransactionResponse])
def list_transactions(
    account_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    include_removed: bool = False,
    db: Session = Depends(get_db),
):
    """List an account's transactions in an optional date range, newest first."""
    get_or_404(db, Account, account_id, "Account not found")
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=422, detail="start_date must not be after end_date")
    return ConnectionService.list_transactions(
        db, account_id, start_date=start_date, end_date=end_date,
        include_removed=include_removed,
    )
