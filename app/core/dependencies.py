from fastapi import Depends

from app.db.mongo import get_client, get_db
from app.repositories.account_repo import AccountRepository
from app.repositories.debt_repo import DebtRepository
from app.repositories.transaction_repo import TransactionRepository
from app.services.debt_service import DebtLedgerService


def get_debt_repository(db = Depends(get_db)) -> DebtRepository:
    return DebtRepository(db)


def get_account_repository(db = Depends(get_db)) -> AccountRepository:
    return AccountRepository(db)


def get_ledger_service(
    db = Depends(get_db),
    client = Depends(get_client)
) -> DebtLedgerService:
    """Ledger service wired to the shared Mongo collections."""
    return DebtLedgerService(
        debts=DebtRepository(db),
        accounts=AccountRepository(db),
        transactions=TransactionRepository(db),
        client=client
    )
