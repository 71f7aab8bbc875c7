"""
DebtRepository - persistence of debts and their embedded payments.

Lists are sorted by created_at descending in Python after the query so the
store never needs a composite index for them. subscribe() pushes the whole
ordered snapshot on every change, never a diff.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.core.errors import ConflictError, NotFoundError, translate_persistence_errors
from app.models.debt import Debt

logger = logging.getLogger(__name__)

DERIVED_FIELDS = ("paid_amount_cents", "current_amount_cents", "status")
# Never rewritten by update()
IMMUTABLE_FIELDS = ("id", "_id", "created_at")

SnapshotListener = Callable[[List[Debt]], None]


def is_foreign_delete(change: dict, known_ids: Set[str]) -> bool:
    """True for a delete event of a debt that is not in the owner's snapshot."""
    if change.get("operationType") != "delete":
        return False
    return str(change["documentKey"]["_id"]) not in known_ids


class DebtRepository:
    """Debt database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["debts"]

    async def create(self, debt: Debt, session=None) -> str:
        """Insert a new debt and return its id."""
        with translate_persistence_errors("create debt"):
            result = await self.collection.insert_one(debt.to_document(), session=session)
        return str(result.inserted_id)

    async def restore(self, debt: Debt, session=None) -> None:
        """Re-insert a deleted debt under its original id."""
        with translate_persistence_errors("restore debt"):
            await self.collection.insert_one(debt.to_document(), session=session)

    async def get(self, debt_id: str, session=None) -> Debt:
        """Get a debt by id; raises NotFoundError for unknown or malformed ids."""
        if not ObjectId.is_valid(debt_id):
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})

        with translate_persistence_errors("load debt"):
            doc = await self.collection.find_one({"_id": ObjectId(debt_id)}, session=session)
        if not doc:
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})
        return self._from_document(doc)

    async def list_by_owner(self, owner_id: str) -> List[Debt]:
        """List all debts of an owner, newest first."""
        return await self._list({"owner_id": owner_id})

    async def list_by_owner_and_account(self, owner_id: str, account_id: str) -> List[Debt]:
        """List an owner's debts settled against one account, newest first."""
        return await self._list({"owner_id": owner_id, "account_id": account_id})

    async def update(
        self,
        debt_id: str,
        fields: dict,
        expected_version: Optional[int] = None,
        session=None
    ) -> Debt:
        """
        Set the given fields and bump the version.

        With expected_version the write only applies to that version of the
        document; losing the race raises ConflictError.
        """
        if not ObjectId.is_valid(debt_id):
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})

        updates = {k: v for k, v in fields.items() if k not in IMMUTABLE_FIELDS}
        updates["updated_at"] = datetime.now(timezone.utc)

        query = {"_id": ObjectId(debt_id)}
        if expected_version is not None:
            query["version"] = expected_version

        with translate_persistence_errors("update debt"):
            doc = await self.collection.find_one_and_update(
                query,
                {"$set": updates, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
                session=session
            )
            if doc is None and expected_version is not None:
                exists = await self.collection.count_documents(
                    {"_id": ObjectId(debt_id)}, session=session
                )
                if exists:
                    raise ConflictError(
                        "Debt was modified concurrently",
                        details={"debt_id": debt_id, "expected_version": expected_version}
                    )

        if doc is None:
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})
        return self._from_document(doc)

    async def delete(self, debt_id: str, session=None) -> None:
        """Hard-delete a debt."""
        if not ObjectId.is_valid(debt_id):
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})

        with translate_persistence_errors("delete debt"):
            result = await self.collection.delete_one({"_id": ObjectId(debt_id)}, session=session)
        if result.deleted_count == 0:
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})

    def subscribe(self, owner_id: str, on_change: SnapshotListener) -> Callable[[], None]:
        """
        Deliver the owner's ordered snapshot now and after every relevant change.

        Backed by a MongoDB change stream, so the server must be a replica set.
        Returns an idempotent unsubscribe callable.
        """
        task = asyncio.get_running_loop().create_task(self._watch(owner_id, on_change))

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()

        return unsubscribe

    # ===== PRIVATE HELPERS =====

    async def _watch(self, owner_id: str, on_change: SnapshotListener) -> None:
        # Deletes carry no fullDocument; they are filtered against the ids
        # of the last snapshot instead of the owner.
        pipeline = [
            {
                "$match": {
                    "$or": [
                        {"operationType": "delete"},
                        {"fullDocument.owner_id": owner_id}
                    ]
                }
            }
        ]
        known_ids: Set[str] = set()

        async def deliver() -> None:
            debts = await self.list_by_owner(owner_id)
            known_ids.clear()
            known_ids.update(str(debt.id) for debt in debts)
            on_change(debts)

        try:
            async with self.collection.watch(pipeline, full_document="updateLookup") as stream:
                await deliver()
                async for change in stream:
                    if is_foreign_delete(change, known_ids):
                        continue
                    await deliver()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Debt subscription for owner %s stopped", owner_id)

    async def _list(self, query: dict) -> List[Debt]:
        with translate_persistence_errors("list debts"):
            docs = await self.collection.find(query).to_list(None)
        debts = [self._from_document(doc) for doc in docs]
        debts.sort(key=lambda d: d.created_at, reverse=True)
        return debts

    def _from_document(self, doc: dict) -> Debt:
        debt = Debt(**doc)
        drift = {
            field: (doc.get(field), getattr(debt, field))
            for field in DERIVED_FIELDS
            if field in doc and doc[field] != getattr(debt, field)
        }
        if drift:
            logger.warning("Stored amounts of debt %s drifted from payments: %s", debt.id, drift)
        return debt
