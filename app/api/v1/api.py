from fastapi import APIRouter
from app.api.v1.endpoints import accounts, debts

api_router = APIRouter()

api_router.include_router(debts.router, prefix="/debts", tags=["debts"])
api_router.include_router(accounts.router, prefix="/accounts", tags=["accounts"])
