import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from app.core.errors import ConflictError, NotFoundError, PersistenceError
from app.main import app
from app.models.account import AccountInDB
from app.models.debt import Debt
from app.models.transaction import TransactionEntry
from app.services.debt_service import DebtLedgerService
from app.utils.keyed_lock import KeyedLock

OWNER_ID = "owner-1"


class FaultInjection:
    """Lets a test make the next call of a named method raise."""

    def __init__(self):
        self.failures: Dict[str, List[Exception]] = {}
        self.calls: List[str] = []

    def fail_next(self, method: str, exc: Optional[Exception] = None, times: int = 1):
        exc = exc or PersistenceError(f"{method} failed")
        self.failures.setdefault(method, []).extend([exc] * times)

    def _hit(self, method: str):
        self.calls.append(method)
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)


class InMemoryDebtStore(FaultInjection):
    """Debt store double with the same contract as DebtRepository."""

    def __init__(self):
        super().__init__()
        self.docs: Dict[str, Debt] = {}
        self.listeners: Dict[int, tuple] = {}
        self.subscribe_calls = 0
        self.read_delay = 0.0

    async def create(self, debt: Debt, session=None) -> str:
        self._hit("create")
        if str(debt.id) in self.docs:
            raise PersistenceError("duplicate debt id")
        self.docs[str(debt.id)] = debt.model_copy(deep=True)
        self._notify(debt.owner_id)
        return str(debt.id)

    async def restore(self, debt: Debt, session=None) -> None:
        self._hit("restore")
        self.docs[str(debt.id)] = debt.model_copy(deep=True)
        self._notify(debt.owner_id)

    async def get(self, debt_id: str, session=None) -> Debt:
        self._hit("get")
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        else:
            await asyncio.sleep(0)
        if debt_id not in self.docs:
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})
        return self.docs[debt_id].model_copy(deep=True)

    async def list_by_owner(self, owner_id: str) -> List[Debt]:
        self._hit("list_by_owner")
        return self._snapshot(lambda d: d.owner_id == owner_id)

    async def list_by_owner_and_account(self, owner_id: str, account_id: str) -> List[Debt]:
        self._hit("list_by_owner_and_account")
        return self._snapshot(lambda d: d.owner_id == owner_id and d.account_id == account_id)

    async def update(self, debt_id: str, fields: dict, expected_version=None, session=None) -> Debt:
        self._hit("update")
        current = self.docs.get(debt_id)
        if current is None:
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})
        if expected_version is not None and current.version != expected_version:
            raise ConflictError("Debt was modified concurrently")
        data = current.model_dump(by_alias=True)
        data.update({k: v for k, v in fields.items() if k not in ("id", "_id", "created_at")})
        data["version"] = current.version + 1
        data["updated_at"] = datetime.now(timezone.utc)
        updated = Debt(**data)
        self.docs[debt_id] = updated
        self._notify(updated.owner_id)
        return updated.model_copy(deep=True)

    async def delete(self, debt_id: str, session=None) -> None:
        self._hit("delete")
        debt = self.docs.pop(debt_id, None)
        if debt is None:
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})
        self._notify(debt.owner_id)

    def subscribe(self, owner_id: str, on_change: Callable) -> Callable[[], None]:
        self.subscribe_calls += 1
        token = self.subscribe_calls
        self.listeners[token] = (owner_id, on_change)
        on_change(self._snapshot(lambda d: d.owner_id == owner_id))

        def unsubscribe():
            self.listeners.pop(token, None)

        return unsubscribe

    def _snapshot(self, predicate) -> List[Debt]:
        debts = [d.model_copy(deep=True) for d in self.docs.values() if predicate(d)]
        debts.sort(key=lambda d: d.created_at, reverse=True)
        return debts

    def _notify(self, owner_id: str):
        for listener_owner, on_change in list(self.listeners.values()):
            if listener_owner == owner_id:
                on_change(self._snapshot(lambda d: d.owner_id == owner_id))


class InMemoryAccounts(FaultInjection):
    def __init__(self):
        super().__init__()
        self.balances: Dict[str, int] = {}
        self.owners: Dict[str, str] = {}
        self.delta_delay = 0.0

    def open(self, balance_cents: int, owner_id: str = OWNER_ID) -> str:
        account_id = str(ObjectId())
        self.balances[account_id] = balance_cents
        self.owners[account_id] = owner_id
        return account_id

    async def apply_delta(
        self, account_id: str, delta_cents: int, owner_id: Optional[str] = None, session=None
    ) -> None:
        self._hit("apply_delta")
        await asyncio.sleep(self.delta_delay)
        if account_id not in self.balances:
            raise NotFoundError("Account not found", details={"account_id": account_id})
        if owner_id is not None and self.owners[account_id] != owner_id:
            raise NotFoundError("Account not found", details={"account_id": account_id})
        self.balances[account_id] += delta_cents

    async def get_account(self, account_id: str, owner_id: str) -> AccountInDB:
        if self.owners.get(account_id) != owner_id:
            raise NotFoundError("Account not found", details={"account_id": account_id})
        return AccountInDB(
            _id=ObjectId(account_id),
            owner_id=owner_id,
            balance_cents=self.balances[account_id],
            updated_at=datetime.now(timezone.utc)
        )


class InMemoryTransactions(FaultInjection):
    def __init__(self):
        super().__init__()
        self.entries: List[TransactionEntry] = []

    async def record(self, entry: TransactionEntry, session=None) -> str:
        self._hit("record")
        for existing in self.entries:
            if entry.operation_id and existing.operation_id == entry.operation_id:
                return str(existing.id)
        self.entries.append(entry)
        return str(entry.id)


@pytest.fixture
def debt_store():
    return InMemoryDebtStore()


@pytest.fixture
def accounts():
    return InMemoryAccounts()


@pytest.fixture
def transactions():
    return InMemoryTransactions()


@pytest.fixture
def ledger(debt_store, accounts, transactions):
    """Ledger in compensation mode over the in-memory collaborators."""
    return DebtLedgerService(
        debts=debt_store,
        accounts=accounts,
        transactions=transactions,
        use_transactions=False,
        locks=KeyedLock(),
        timeout_seconds=5
    )


@pytest.fixture
def mock_db():
    """Motor database double: every collection method is an AsyncMock."""
    db = MagicMock()
    collections: Dict[str, MagicMock] = {}

    def collection(name):
        if name not in collections:
            coll = MagicMock()
            coll.insert_one = AsyncMock()
            coll.find_one = AsyncMock()
            coll.find_one_and_update = AsyncMock()
            coll.update_one = AsyncMock()
            coll.delete_one = AsyncMock()
            coll.count_documents = AsyncMock()
            collections[name] = coll
        return collections[name]

    db.__getitem__.side_effect = collection
    return db


@pytest.fixture
def client():
    """Test client; used without its context manager so startup never dials Mongo."""
    return TestClient(app)
