from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.debt import Debt, DebtKind, DebtStatus


class DebtCreate(BaseModel):
    """Request body to open a debt."""
    kind: DebtKind
    counterparty_name: str = Field(..., min_length=1, max_length=100)
    amount_cents: int
    account_id: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None


class DebtUpdate(BaseModel):
    """Editable details of a debt; amounts change only through payments."""
    counterparty_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    due_date: Optional[datetime] = None


class PaymentCreate(BaseModel):
    """Request body to add a payment to a debt."""
    amount_cents: int
    description: Optional[str] = None


class PaymentResponse(BaseModel):
    id: str
    amount_cents: int
    date: datetime
    description: str
    created_at: datetime


class DebtResponse(BaseModel):
    id: str
    kind: DebtKind
    counterparty_name: str
    original_amount_cents: int
    paid_amount_cents: int
    current_amount_cents: int
    account_id: str
    status: DebtStatus
    due_date: Optional[datetime] = None
    description: str
    payments: List[PaymentResponse]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_debt(cls, debt: Debt) -> "DebtResponse":
        return cls(
            id=str(debt.id),
            kind=debt.kind,
            counterparty_name=debt.counterparty_name,
            original_amount_cents=debt.original_amount_cents,
            paid_amount_cents=debt.paid_amount_cents,
            current_amount_cents=debt.current_amount_cents,
            account_id=debt.account_id,
            status=debt.status,
            due_date=debt.due_date,
            description=debt.description,
            payments=[PaymentResponse(**p.model_dump()) for p in debt.payments],
            created_at=debt.created_at,
            updated_at=debt.updated_at
        )


class DebtSummary(BaseModel):
    total_lent_outstanding_cents: int
    total_borrowed_outstanding_cents: int
    active_count: int
    paid_count: int


class DebtListResponse(BaseModel):
    debts: List[DebtResponse]
    summary: DebtSummary


class AccountDebtsResponse(BaseModel):
    account_id: str
    balance_cents: int
    debts: List[DebtResponse]
