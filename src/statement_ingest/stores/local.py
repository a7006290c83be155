import asyncio
import json
import os
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from statement_ingest.errors import TransactionStoreError
from statement_ingest.logger import get_logger
from statement_ingest.models import Account, Category, StoredTransaction, TransactionCreate
from statement_ingest.stores.base import LedgerBackend

logger = get_logger(__name__)


class LocalLedger(LedgerBackend):
    """JSON-file ledger for running without a remote ledger API.

    Catalogs are read from ``categories.json`` and ``accounts.json``; created
    transactions are appended to ``transactions.json`` in creation order.
    """

    def __init__(self, data_dir: str = ".") -> None:
        self.transactions_path = os.path.join(data_dir, "transactions.json")
        self.categories_path = os.path.join(data_dir, "categories.json")
        self.accounts_path = os.path.join(data_dir, "accounts.json")
        self._lock = asyncio.Lock()
        self.transactions: list[dict[str, Any]] = []
        self.load()

    def load(self) -> None:
        self.transactions = _read_list(self.transactions_path)

    def save(self) -> None:
        try:
            with open(self.transactions_path, "w", encoding="utf-8") as f:
                json.dump(self.transactions, f, indent=2)
        except OSError as exc:
            raise TransactionStoreError(f"Could not write {self.transactions_path}: {exc}") from exc

    async def get_categories(self) -> list[Category]:
        return _read_models(Category, self.categories_path)

    async def get_accounts(self) -> list[Account]:
        return _read_models(Account, self.accounts_path)

    async def get_recent_transactions(self, limit: int) -> list[StoredTransaction]:
        if limit <= 0:
            return []
        recent = []
        for item in reversed(self.transactions[-limit:]):
            try:
                recent.append(StoredTransaction.model_validate(item))
            except ValidationError:
                logger.warning("[LEDGER] Skipping unreadable local transaction: %s", item.get("id"))
        return recent

    async def create_transaction(self, payload: TransactionCreate) -> StoredTransaction:
        record = {"id": str(uuid4()), **payload.model_dump(mode="json", by_alias=True)}
        async with self._lock:
            self.transactions.append(record)
            try:
                self.save()
            except TransactionStoreError:
                self.transactions.pop()
                raise
        return StoredTransaction.model_validate(record)

    async def update_transaction(self, transaction_id: str, fields: dict[str, Any]) -> None:
        async with self._lock:
            for record in self.transactions:
                if record.get("id") == transaction_id:
                    previous = dict(record)
                    record.update(fields)
                    try:
                        self.save()
                    except TransactionStoreError:
                        record.clear()
                        record.update(previous)
                        raise
                    return
        raise TransactionStoreError(f"Transaction {transaction_id} not found")


def _read_list(path: str) -> list[dict[str, Any]]:
    if not os.path.exists(path):
        return []
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise TransactionStoreError(f"Could not read {path}: {exc}") from exc
    if not isinstance(data, list):
        raise TransactionStoreError(f"{path} must contain a JSON list")
    return data


def _read_models(model: Any, path: str) -> list[Any]:
    try:
        return [model.model_validate(item) for item in _read_list(path)]
    except ValidationError as exc:
        raise TransactionStoreError(f"Invalid entry in {path}: {exc}") from exc
