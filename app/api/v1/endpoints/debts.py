import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from app.core.auth import decode_owner_id, get_current_owner_id
from app.core.dependencies import get_debt_repository, get_ledger_service
from app.repositories.debt_repo import DebtRepository
from app.schemas.debt import (
    DebtCreate,
    DebtListResponse,
    DebtResponse,
    DebtSummary,
    DebtUpdate,
    PaymentCreate,
)
from app.services.debt_orchestrator import DebtOrchestrator, summarize
from app.services.debt_service import DebtLedgerService

logger = logging.getLogger(__name__)

router = APIRouter()


def _list_response(debts) -> DebtListResponse:
    return DebtListResponse(
        debts=[DebtResponse.from_debt(d) for d in debts],
        summary=DebtSummary(**summarize(debts))
    )


@router.get("/", response_model=DebtListResponse)
async def list_debts(
    owner_id: str = Depends(get_current_owner_id),
    ledger: DebtLedgerService = Depends(get_ledger_service)
):
    """List the current owner's debts, newest first, with outstanding totals."""
    return _list_response(await ledger.list_debts(owner_id))


@router.get("/summary", response_model=DebtSummary)
async def get_summary(
    owner_id: str = Depends(get_current_owner_id),
    ledger: DebtLedgerService = Depends(get_ledger_service)
):
    return DebtSummary(**summarize(await ledger.list_debts(owner_id)))


@router.post("/", response_model=DebtResponse, status_code=status.HTTP_201_CREATED)
async def create_debt(
    payload: DebtCreate,
    owner_id: str = Depends(get_current_owner_id),
    ledger: DebtLedgerService = Depends(get_ledger_service)
):
    """Open a debt and settle its amount against the account."""
    debt = await ledger.create_debt(
        owner_id,
        payload.kind,
        payload.counterparty_name,
        payload.amount_cents,
        payload.account_id,
        payload.description,
        payload.due_date
    )
    return DebtResponse.from_debt(debt)


@router.websocket("/stream")
async def stream_debts(
    websocket: WebSocket,
    token: str = Query(...),
    ledger: DebtLedgerService = Depends(get_ledger_service),
    store: DebtRepository = Depends(get_debt_repository)
):
    """Push the owner's full debt list and totals on every change."""
    try:
        owner_id = decode_owner_id(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    snapshots: asyncio.Queue = asyncio.Queue()
    orchestrator = DebtOrchestrator(owner_id, ledger, store)
    orchestrator.start_listening(snapshots.put_nowait)

    async def forward_snapshots():
        while True:
            snapshot = await snapshots.get()
            await websocket.send_json(_list_response(snapshot).model_dump(mode="json"))

    sender = asyncio.create_task(forward_snapshots())
    try:
        # Clients never send anything; reading only detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Debt stream for owner %s closed by client", owner_id)
    finally:
        sender.cancel()
        orchestrator.dispose()


@router.get("/{debt_id}", response_model=DebtResponse)
async def get_debt(
    debt_id: str,
    owner_id: str = Depends(get_current_owner_id),
    ledger: DebtLedgerService = Depends(get_ledger_service)
):
    return DebtResponse.from_debt(await ledger.get_debt(debt_id, owner_id))


@router.patch("/{debt_id}", response_model=DebtResponse)
async def update_debt(
    debt_id: str,
    payload: DebtUpdate,
    owner_id: str = Depends(get_current_owner_id),
    ledger: DebtLedgerService = Depends(get_ledger_service)
):
    """Edit counterparty name, description or due date."""
    debt = await ledger.update_debt_details(
        debt_id, payload.model_dump(exclude_unset=True), owner_id=owner_id
    )
    return DebtResponse.from_debt(debt)


@router.post("/{debt_id}/payments", response_model=DebtResponse)
async def add_payment(
    debt_id: str,
    payload: PaymentCreate,
    owner_id: str = Depends(get_current_owner_id),
    ledger: DebtLedgerService = Depends(get_ledger_service)
):
    """Add a payment (never more than what is still outstanding)."""
    debt = await ledger.add_payment(
        debt_id, payload.amount_cents, payload.description, owner_id=owner_id
    )
    return DebtResponse.from_debt(debt)


@router.delete("/{debt_id}", response_model=DebtResponse)
async def delete_debt(
    debt_id: str,
    owner_id: str = Depends(get_current_owner_id),
    ledger: DebtLedgerService = Depends(get_ledger_service)
):
    """Delete a debt, giving back what was still outstanding to the account."""
    return DebtResponse.from_debt(await ledger.delete_debt(debt_id, owner_id=owner_id))
