from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.errors import NotFoundError, translate_persistence_errors
from app.models.account import AccountInDB


class AccountRepository:
    """Balance adjustments on accounts owned by the accounts service."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["accounts"]

    async def apply_delta(
        self,
        account_id: str,
        delta_cents: int,
        owner_id: Optional[str] = None,
        session=None
    ) -> None:
        """Add a signed amount to the account balance in a single $inc."""
        if not ObjectId.is_valid(account_id):
            raise NotFoundError("Account not found", details={"account_id": account_id})

        query = {"_id": ObjectId(account_id)}
        if owner_id is not None:
            query["owner_id"] = owner_id

        with translate_persistence_errors("update account balance"):
            result = await self.collection.update_one(
                query,
                {
                    "$inc": {"balance_cents": delta_cents},
                    "$set": {"updated_at": datetime.now(timezone.utc)}
                },
                session=session
            )
        if result.matched_count == 0:
            raise NotFoundError("Account not found", details={"account_id": account_id})

    async def get_account(self, account_id: str, owner_id: str) -> AccountInDB:
        """Get an account by id for an owner."""
        if not ObjectId.is_valid(account_id):
            raise NotFoundError("Account not found", details={"account_id": account_id})

        with translate_persistence_errors("load account"):
            doc = await self.collection.find_one({
                "_id": ObjectId(account_id),
                "owner_id": owner_id
            })
        if not doc:
            raise NotFoundError("Account not found", details={"account_id": account_id})
        return AccountInDB(**doc)
