from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from statement_ingest.api.dependencies import get_ledger
from statement_ingest.api.schemas import CatalogResponse
from statement_ingest.errors import TransactionStoreError
from statement_ingest.models import Account, Category
from statement_ingest.stores.base import LedgerBackend

router = APIRouter()


@router.get("/api/categories", response_model=list[Category])
async def get_categories(
    ledger: Annotated[LedgerBackend, Depends(get_ledger)],
) -> list[Category]:
    try:
        return await ledger.get_categories()
    except TransactionStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/api/accounts", response_model=list[Account])
async def get_accounts(
    ledger: Annotated[LedgerBackend, Depends(get_ledger)],
) -> list[Account]:
    try:
        return await ledger.get_accounts()
    except TransactionStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/api/catalog", response_model=CatalogResponse)
async def get_catalog(
    ledger: Annotated[LedgerBackend, Depends(get_ledger)],
) -> CatalogResponse:
    try:
        categories = await ledger.get_categories()
        accounts = await ledger.get_accounts()
    except TransactionStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return CatalogResponse(categories=categories, accounts=accounts)
