from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from app.models.base import MongoModel, utcnow


class TransactionKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionEntry(MongoModel):
    """Append-only audit record of one money movement on an account."""

    owner_id: str
    amount_cents: int = Field(gt=0)
    description: str
    kind: TransactionKind
    category: str
    category_icon: str
    account_id: str
    date: datetime = Field(default_factory=utcnow)

    # Ledger bookkeeping
    debt_id: Optional[str] = None
    operation_id: Optional[str] = None

    def to_document(self) -> dict:
        doc = super().to_document()
        doc["kind"] = self.kind.value
        if doc.get("operation_id") is None:
            # sparse unique index only skips missing fields, not nulls
            doc.pop("operation_id", None)
        return doc
