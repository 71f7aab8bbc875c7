import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.core.errors import translate_persistence_errors
from app.models.transaction import TransactionEntry

logger = logging.getLogger(__name__)


class TransactionRepository:
    """Append-only writer for the transactions audit trail."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["transactions"]

    async def record(self, entry: TransactionEntry, session=None) -> str:
        """
        Append an entry and return its id.

        Entries carrying an operation_id are written at most once: a replay
        hits the unique index and returns the id of the entry already there.
        Inside a session transaction a duplicate key aborts the transaction,
        so the existing entry is looked up before inserting instead.
        """
        with translate_persistence_errors("record transaction"):
            if session is not None and entry.operation_id is not None:
                existing_id = await self._find_existing(entry.operation_id, session)
                if existing_id is not None:
                    return existing_id
            try:
                result = await self.collection.insert_one(entry.to_document(), session=session)
                return str(result.inserted_id)
            except DuplicateKeyError:
                if entry.operation_id is None or session is not None:
                    raise
                existing_id = await self._find_existing(entry.operation_id, session)
                if existing_id is None:
                    raise
                return existing_id

    async def _find_existing(self, operation_id: str, session) -> Optional[str]:
        existing = await self.collection.find_one({"operation_id": operation_id}, session=session)
        if existing is None:
            return None
        logger.info("Transaction for operation %s already recorded", operation_id)
        return str(existing["_id"])
