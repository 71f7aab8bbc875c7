"""
Debt model - money lent to or borrowed from a named person.

Design principles:
- One document per debt, payments embedded and append-only
- All amounts in integer cents
- paid / current / status are derived from original amount and payments;
  the stored copies only exist so they can be queried
- Status: active → partial → paid (terminal)
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.base import MongoModel, PyObjectId, utcnow


class DebtKind(str, Enum):
    LENT = "lent"          # owner gave money away
    BORROWED = "borrowed"  # owner received money


class DebtStatus(str, Enum):
    ACTIVE = "active"
    PARTIAL = "partial"
    PAID = "paid"


def derive_status(paid_amount_cents: int, current_amount_cents: int) -> DebtStatus:
    if current_amount_cents <= 0:
        return DebtStatus.PAID
    if paid_amount_cents > 0:
        return DebtStatus.PARTIAL
    return DebtStatus.ACTIVE


# Embedded document, no separate collection
class DebtPayment(BaseModel):
    id: str = Field(default_factory=lambda: str(PyObjectId()))
    amount_cents: int = Field(gt=0)
    date: datetime = Field(default_factory=utcnow)
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class Debt(MongoModel):
    """
    Invariants (enforced on every construction):
    - paid_amount_cents == sum(p.amount_cents for p in payments)
    - current_amount_cents == max(0, original_amount_cents - paid_amount_cents)
    - status == derive_status(paid_amount_cents, current_amount_cents)
    """

    owner_id: str
    kind: DebtKind
    counterparty_name: str
    original_amount_cents: int = Field(gt=0)
    account_id: str
    description: str = ""
    due_date: Optional[datetime] = None
    payments: List[DebtPayment] = []

    # Derived, see _derive_amounts
    paid_amount_cents: int = 0
    current_amount_cents: int = 0
    status: DebtStatus = DebtStatus.ACTIVE

    version: int = 1

    @field_validator("counterparty_name", "account_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @model_validator(mode="after")
    def _derive_amounts(self) -> "Debt":
        self.paid_amount_cents = sum(p.amount_cents for p in self.payments)
        self.current_amount_cents = max(0, self.original_amount_cents - self.paid_amount_cents)
        self.status = derive_status(self.paid_amount_cents, self.current_amount_cents)
        return self

    def to_document(self) -> dict:
        doc = super().to_document()
        doc["kind"] = self.kind.value
        doc["status"] = self.status.value
        return doc

    def with_payment(self, payment: DebtPayment) -> "Debt":
        """Copy of this debt with one more payment and re-derived amounts."""
        data = self.model_dump(by_alias=True)
        data["payments"] = [*data["payments"], payment.model_dump()]
        return Debt(**data)

    def is_paid(self) -> bool:
        return self.status == DebtStatus.PAID
