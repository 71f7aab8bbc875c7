from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict
from bson import ObjectId


class AccountInDB(BaseModel):
    """The slice of an account document the debt ledger reads and adjusts."""
    id: ObjectId = Field(alias="_id")
    owner_id: str
    balance_cents: int = 0
    # Written by the accounts service, which may not set it
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(
        populate_by_name=True,
        from_attributes=True,
        arbitrary_types_allowed=True,
        extra="ignore"
    )
