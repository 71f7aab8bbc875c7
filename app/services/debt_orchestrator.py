"""
DebtOrchestrator - an owner's view of the debt ledger.

Holds the latest snapshot of the owner's debts as an immutable tuple and
recomputes every aggregate from it on demand. A subscription delivery always
replaces the snapshot wholesale.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from app.core.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    OperationTimeoutError,
    PartialFailureError,
    ValidationError,
)
from app.models.debt import Debt, DebtKind, DebtStatus
from app.repositories.debt_repo import DebtRepository
from app.services.debt_service import DebtLedgerService

logger = logging.getLogger(__name__)

Snapshot = Tuple[Debt, ...]


# ===== AGGREGATES =====

def outstanding_total(debts: Iterable[Debt], kind: DebtKind) -> int:
    return sum(
        d.current_amount_cents for d in debts
        if d.kind == kind and d.status != DebtStatus.PAID
    )


def active_debts(debts: Iterable[Debt]) -> List[Debt]:
    return [d for d in debts if d.status != DebtStatus.PAID]


def paid_debts(debts: Iterable[Debt]) -> List[Debt]:
    return [d for d in debts if d.status == DebtStatus.PAID]


def summarize(debts: Iterable[Debt]) -> Dict[str, int]:
    debts = tuple(debts)
    return {
        "total_lent_outstanding_cents": outstanding_total(debts, DebtKind.LENT),
        "total_borrowed_outstanding_cents": outstanding_total(debts, DebtKind.BORROWED),
        "active_count": len(active_debts(debts)),
        "paid_count": len(paid_debts(debts)),
    }


def user_message(exc: Exception, fallback: str) -> str:
    """Map a ledger failure to the message shown to the owner."""
    if isinstance(exc, ValidationError):
        return exc.message
    if isinstance(exc, NotFoundError):
        return "Debt not found"
    if isinstance(exc, ConflictError):
        return "The debt was changed elsewhere, please try again"
    if isinstance(exc, PartialFailureError):
        return "The operation was only partly applied and needs to be reconciled"
    if isinstance(exc, OperationTimeoutError):
        return "The operation timed out; check your balance before retrying"
    return fallback


class DebtOrchestrator:
    def __init__(self, owner_id: str, ledger: DebtLedgerService, store: DebtRepository):
        self.owner_id = owner_id
        self.ledger = ledger
        self.store = store

        self.debts: Snapshot = ()
        self.is_loading = False
        self.error: Optional[str] = None

        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listener: Optional[Callable[[Snapshot], Any]] = None

    # ===== DERIVED STATE =====

    @property
    def total_lent_outstanding(self) -> int:
        return outstanding_total(self.debts, DebtKind.LENT)

    @property
    def total_borrowed_outstanding(self) -> int:
        return outstanding_total(self.debts, DebtKind.BORROWED)

    @property
    def active_debts(self) -> List[Debt]:
        return active_debts(self.debts)

    @property
    def paid_debts(self) -> List[Debt]:
        return paid_debts(self.debts)

    def summary(self) -> Dict[str, int]:
        return summarize(self.debts)

    @property
    def is_listening(self) -> bool:
        return self._unsubscribe is not None

    # ===== LOADING =====

    async def load_debts(self) -> bool:
        self.is_loading = True
        self.error = None
        try:
            self._replace_snapshot(await self.ledger.list_debts(self.owner_id))
            return True
        except Exception as exc:
            logger.exception("Error loading debts for owner %s", self.owner_id)
            self.error = user_message(exc, "Debts could not be loaded")
            return False
        finally:
            self.is_loading = False

    async def get_debts_by_account(self, account_id: str) -> List[Debt]:
        try:
            return await self.ledger.list_by_account(self.owner_id, account_id)
        except LedgerError:
            logger.exception("Error getting debts for account %s", account_id)
            return []

    # ===== COMMANDS =====

    async def create_debt(
        self,
        kind: DebtKind,
        counterparty_name: str,
        amount_cents: int,
        account_id: str,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None
    ) -> bool:
        return await self._command(
            "Debt could not be created",
            self.ledger.create_debt(
                self.owner_id, kind, counterparty_name, amount_cents,
                account_id, description, due_date
            )
        )

    async def add_payment(self, debt_id: str, amount_cents: int, description: Optional[str] = None) -> bool:
        return await self._command(
            "Payment could not be added",
            self.ledger.add_payment(debt_id, amount_cents, description, owner_id=self.owner_id)
        )

    async def update_debt_details(self, debt_id: str, changes: Dict[str, Any]) -> bool:
        return await self._command(
            "Debt could not be updated",
            self.ledger.update_debt_details(debt_id, changes, owner_id=self.owner_id)
        )

    async def delete_debt(self, debt_id: str) -> bool:
        return await self._command(
            "Debt could not be deleted",
            self.ledger.delete_debt(debt_id, owner_id=self.owner_id)
        )

    # ===== SUBSCRIPTION =====

    def start_listening(self, on_snapshot: Optional[Callable[[Snapshot], Any]] = None) -> None:
        """Attach the live subscription; a second call keeps the first one."""
        if on_snapshot is not None:
            self._listener = on_snapshot
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.store.subscribe(self.owner_id, self._replace_snapshot)

    def stop_listening(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def dispose(self) -> None:
        self.stop_listening()
        self._listener = None

    # ===== PRIVATE HELPERS =====

    def _replace_snapshot(self, debts: Iterable[Debt]) -> None:
        self.debts = tuple(debts)
        if self._listener is not None:
            self._listener(self.debts)

    async def _command(self, fallback: str, operation) -> bool:
        self.is_loading = True
        self.error = None
        try:
            await operation
        except LedgerError as exc:
            if isinstance(exc, PartialFailureError):
                logger.error("Ledger needs reconciliation: %s", exc.to_dict())
            else:
                logger.warning("Debt command rejected for owner %s: %s", self.owner_id, exc)
            self.error = user_message(exc, fallback)
            self.is_loading = False
            return False
        except Exception:
            logger.exception("Unexpected error in debt command for owner %s", self.owner_id)
            self.error = fallback
            self.is_loading = False
            return False

        if not self.is_listening:
            await self.load_debts()
        self.is_loading = False
        return True
