"""
DebtLedgerService - the debt sub-ledger.

Every financial event on a debt is settled against its account and the
transaction audit trail:

| Event              | lent                          | borrowed                      |
|--------------------|-------------------------------|-------------------------------|
| debt created       | balance -= amount, expense    | balance += amount, income     |
| payment            | balance += amount, income     | balance -= amount, expense    |
| debt deleted (R)   | balance += R, income          | balance -= R, expense         |

Deleting only neutralizes the outstanding remainder R; the original creation
and the payments already recorded stay in the audit trail.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.errors import NotFoundError, OperationTimeoutError, ValidationError
from app.models.base import utcnow
from app.models.debt import Debt, DebtKind, DebtPayment
from app.models.transaction import TransactionEntry, TransactionKind
from app.repositories.account_repo import AccountRepository
from app.repositories.debt_repo import DebtRepository
from app.repositories.transaction_repo import TransactionRepository
from app.services.settlement_service import SettlementRunner, SettlementStep
from app.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

CREATED = "created"
PAYMENT = "payment"
CANCELLED = "cancelled"

# (balance sign, transaction kind) per event and debt kind
SIGN_CONVENTION: Dict[Tuple[str, DebtKind], Tuple[int, TransactionKind]] = {
    (CREATED, DebtKind.LENT): (-1, TransactionKind.EXPENSE),
    (CREATED, DebtKind.BORROWED): (1, TransactionKind.INCOME),
    (PAYMENT, DebtKind.LENT): (1, TransactionKind.INCOME),
    (PAYMENT, DebtKind.BORROWED): (-1, TransactionKind.EXPENSE),
    (CANCELLED, DebtKind.LENT): (1, TransactionKind.INCOME),
    (CANCELLED, DebtKind.BORROWED): (-1, TransactionKind.EXPENSE),
}

CATEGORY_ICONS = {
    (CREATED, DebtKind.LENT): "person-add-outline",
    (CREATED, DebtKind.BORROWED): "person-remove-outline",
    (PAYMENT, DebtKind.LENT): "checkmark-circle-outline",
    (PAYMENT, DebtKind.BORROWED): "checkmark-circle-outline",
    (CANCELLED, DebtKind.LENT): "close-circle-outline",
    (CANCELLED, DebtKind.BORROWED): "close-circle-outline",
}

EDITABLE_FIELDS = ("counterparty_name", "description", "due_date")

# Shared by every service instance in the process
debt_locks = KeyedLock()


def new_operation_id() -> str:
    return uuid.uuid4().hex


def describe_event(event: str, debt: Debt) -> str:
    name = debt.counterparty_name
    if event == CREATED:
        return f"Lent to {name}" if debt.kind == DebtKind.LENT else f"Borrowed from {name}"
    if event == PAYMENT:
        return f"{name} debt payment"
    return f"Cancellation of {name} debt"


class DebtLedgerService:
    def __init__(
        self,
        debts: DebtRepository,
        accounts: AccountRepository,
        transactions: TransactionRepository,
        client=None,
        use_transactions: Optional[bool] = None,
        locks: Optional[KeyedLock] = None,
        timeout_seconds: Optional[float] = None
    ):
        self.debts = debts
        self.accounts = accounts
        self.transactions = transactions
        if use_transactions is None:
            use_transactions = settings.MONGODB_USE_TRANSACTIONS
        self.runner = SettlementRunner(client, use_transactions)
        self.locks = locks if locks is not None else debt_locks
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else settings.LEDGER_OPERATION_TIMEOUT_SECONDS
        )

    # ===== COMMANDS =====

    async def create_debt(
        self,
        owner_id: str,
        kind: DebtKind,
        counterparty_name: str,
        amount_cents: int,
        account_id: str,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None
    ) -> Debt:
        """Open a debt and move its amount out of (lent) or into (borrowed) the account."""
        self._require_positive(amount_cents, "Debt amount")
        if not counterparty_name or not counterparty_name.strip():
            raise ValidationError("Counterparty name is required")
        if not account_id or not account_id.strip():
            raise ValidationError("Account is required")

        try:
            debt = Debt(
                owner_id=owner_id,
                kind=kind,
                counterparty_name=counterparty_name,
                original_amount_cents=amount_cents,
                account_id=account_id,
                description=description or "",
                due_date=due_date
            )
        except PydanticValidationError as exc:
            errors = [
                {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ]
            raise ValidationError("Invalid debt", details={"errors": errors}) from exc

        # Foreign accounts look exactly like missing ones
        await self.accounts.get_account(debt.account_id, owner_id)

        operation_id = new_operation_id()
        debt_id = str(debt.id)
        steps = [
            SettlementStep(
                "create_debt",
                lambda session: self.debts.create(debt, session=session),
                lambda session: self.debts.delete(debt_id, session=session)
            ),
            *self._settlement_steps(CREATED, debt, debt.original_amount_cents, operation_id)
        ]

        await self._with_timeout(operation_id, self.runner.run(operation_id, steps))
        logger.info(
            "Created %s debt %s for %s cents (operation %s)",
            debt.kind.value, debt_id, amount_cents, operation_id
        )
        return debt

    async def add_payment(
        self,
        debt_id: str,
        amount_cents: int,
        description: Optional[str] = None,
        owner_id: Optional[str] = None
    ) -> Debt:
        """Record a partial or full payment and settle it against the account."""
        self._require_positive(amount_cents, "Payment amount")
        operation_id = new_operation_id()
        return await self._with_timeout(
            operation_id,
            self._add_payment(operation_id, debt_id, amount_cents, description, owner_id)
        )

    async def update_debt_details(
        self,
        debt_id: str,
        changes: Dict[str, Any],
        owner_id: Optional[str] = None
    ) -> Debt:
        """Edit the descriptive fields of a debt; amounts are never touched here."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                "Only counterparty name, description and due date can be edited",
                details={"fields": sorted(unknown)}
            )
        if "counterparty_name" in changes:
            name = changes["counterparty_name"]
            if not name or not str(name).strip():
                raise ValidationError("Counterparty name is required")
            changes = {**changes, "counterparty_name": str(name).strip()}
        if "description" in changes and changes["description"] is None:
            changes = {**changes, "description": ""}

        operation_id = new_operation_id()
        return await self._with_timeout(
            operation_id, self._update_details(debt_id, changes, owner_id)
        )

    async def delete_debt(self, debt_id: str, owner_id: Optional[str] = None) -> Debt:
        """Remove a debt and give back its outstanding remainder to the account."""
        operation_id = new_operation_id()
        return await self._with_timeout(
            operation_id, self._delete_debt(operation_id, debt_id, owner_id)
        )

    # ===== QUERIES =====

    async def get_debt(self, debt_id: str, owner_id: Optional[str] = None) -> Debt:
        debt = await self.debts.get(debt_id)
        if owner_id is not None and debt.owner_id != owner_id:
            raise NotFoundError("Debt not found", details={"debt_id": debt_id})
        return debt

    async def list_debts(self, owner_id: str) -> List[Debt]:
        return await self.debts.list_by_owner(owner_id)

    async def list_by_account(self, owner_id: str, account_id: str) -> List[Debt]:
        return await self.debts.list_by_owner_and_account(owner_id, account_id)

    # ===== PRIVATE HELPERS =====

    async def _add_payment(
        self,
        operation_id: str,
        debt_id: str,
        amount_cents: int,
        description: Optional[str],
        owner_id: Optional[str]
    ) -> Debt:
        async with self.locks.hold(debt_id):
            debt = await self.get_debt(debt_id, owner_id)
            if debt.is_paid():
                raise ValidationError(
                    "Debt is already paid",
                    details={"debt_id": debt_id}
                )
            if amount_cents > debt.current_amount_cents:
                raise ValidationError(
                    "Payment amount exceeds the remaining debt",
                    details={
                        "amount_cents": amount_cents,
                        "current_amount_cents": debt.current_amount_cents
                    }
                )

            payment = DebtPayment(amount_cents=amount_cents, description=description or "")
            updated = debt.with_payment(payment)
            new_fields = self._payment_fields(updated)
            old_fields = self._payment_fields(debt)

            steps = [
                SettlementStep(
                    "append_payment",
                    lambda session: self.debts.update(
                        debt_id, new_fields, expected_version=debt.version, session=session
                    ),
                    lambda session: self.debts.update(
                        debt_id, old_fields, expected_version=debt.version + 1, session=session
                    )
                ),
                *self._settlement_steps(PAYMENT, debt, amount_cents, operation_id)
            ]
            results = await self.runner.run(operation_id, steps)

        saved: Debt = results[0]
        logger.info(
            "Payment of %s cents on debt %s, now %s with %s cents outstanding (operation %s)",
            amount_cents, debt_id, saved.status.value, saved.current_amount_cents, operation_id
        )
        return saved

    async def _update_details(self, debt_id: str, changes: Dict[str, Any], owner_id: Optional[str]) -> Debt:
        async with self.locks.hold(debt_id):
            debt = await self.get_debt(debt_id, owner_id)
            if not changes:
                return debt
            updated = await self.debts.update(debt_id, changes, expected_version=debt.version)
        logger.info("Updated details of debt %s: %s", debt_id, sorted(changes))
        return updated

    async def _delete_debt(self, operation_id: str, debt_id: str, owner_id: Optional[str]) -> Debt:
        async with self.locks.hold(debt_id):
            debt = await self.get_debt(debt_id, owner_id)
            remaining = debt.current_amount_cents

            steps = [
                SettlementStep(
                    "delete_debt",
                    lambda session: self.debts.delete(debt_id, session=session),
                    lambda session: self.debts.restore(debt, session=session)
                )
            ]
            # A paid debt has nothing outstanding to give back.
            if remaining > 0:
                steps.extend(self._settlement_steps(CANCELLED, debt, remaining, operation_id))
            await self.runner.run(operation_id, steps)

        logger.info(
            "Deleted %s debt %s, reversed %s cents (operation %s)",
            debt.kind.value, debt_id, remaining, operation_id
        )
        return debt

    def _settlement_steps(
        self,
        event: str,
        debt: Debt,
        amount_cents: int,
        operation_id: str
    ) -> List[SettlementStep]:
        sign, transaction_kind = SIGN_CONVENTION[(event, debt.kind)]
        delta = sign * amount_cents
        entry = TransactionEntry(
            owner_id=debt.owner_id,
            amount_cents=amount_cents,
            description=describe_event(event, debt),
            kind=transaction_kind,
            category=settings.DEBT_CATEGORY,
            category_icon=CATEGORY_ICONS[(event, debt.kind)],
            account_id=debt.account_id,
            date=utcnow(),
            debt_id=str(debt.id),
            operation_id=operation_id
        )
        return [
            SettlementStep(
                "apply_balance_delta",
                lambda session: self.accounts.apply_delta(
                    debt.account_id, delta, owner_id=debt.owner_id, session=session
                ),
                lambda session: self.accounts.apply_delta(
                    debt.account_id, -delta, owner_id=debt.owner_id, session=session
                )
            ),
            SettlementStep(
                "record_transaction",
                lambda session: self.transactions.record(entry, session=session)
            )
        ]

    @staticmethod
    def _payment_fields(debt: Debt) -> Dict[str, Any]:
        return {
            "payments": [p.model_dump() for p in debt.payments],
            "paid_amount_cents": debt.paid_amount_cents,
            "current_amount_cents": debt.current_amount_cents,
            "status": debt.status.value
        }

    @staticmethod
    def _require_positive(amount_cents: int, label: str) -> None:
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
            raise ValidationError(f"{label} must be a whole number of cents")
        if amount_cents <= 0:
            raise ValidationError(f"{label} must be positive", details={"amount_cents": amount_cents})

    async def _with_timeout(self, operation_id: str, operation):
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error("Ledger operation %s timed out, outcome unknown", operation_id)
            raise OperationTimeoutError(
                "Ledger operation timed out; its outcome must be reconciled",
                details={"operation_id": operation_id}
            ) from exc
