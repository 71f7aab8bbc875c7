from fastapi import APIRouter, Depends

from app.core.auth import get_current_owner_id
from app.core.dependencies import get_account_repository, get_ledger_service
from app.repositories.account_repo import AccountRepository
from app.schemas.debt import AccountDebtsResponse, DebtResponse
from app.services.debt_service import DebtLedgerService

router = APIRouter()


@router.get("/{account_id}/debts", response_model=AccountDebtsResponse)
async def list_account_debts(
    account_id: str,
    owner_id: str = Depends(get_current_owner_id),
    accounts: AccountRepository = Depends(get_account_repository),
    ledger: DebtLedgerService = Depends(get_ledger_service)
):
    """List the debts settled against one of the owner's accounts."""
    account = await accounts.get_account(account_id, owner_id)
    debts = await ledger.list_by_account(owner_id, account_id)
    return AccountDebtsResponse(
        account_id=account_id,
        balance_cents=account.balance_cents,
        debts=[DebtResponse.from_debt(d) for d in debts]
    )
