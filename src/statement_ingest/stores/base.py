from abc import ABC, abstractmethod
from typing import Any

from statement_ingest.models import Account, Category, StoredTransaction, TransactionCreate


class LedgerBackend(ABC):
    """Durable transaction store plus the household catalogs.

    Implementations raise ``TransactionStoreError`` on failure.
    """

    @abstractmethod
    async def get_categories(self) -> list[Category]:
        pass

    @abstractmethod
    async def get_accounts(self) -> list[Account]:
        pass

    @abstractmethod
    async def get_recent_transactions(self, limit: int) -> list[StoredTransaction]:
        """Most recently created transactions first."""
        pass

    @abstractmethod
    async def create_transaction(self, payload: TransactionCreate) -> StoredTransaction:
        pass

    @abstractmethod
    async def update_transaction(self, transaction_id: str, fields: dict[str, Any]) -> None:
        """Apply camelCase ``fields`` to an existing transaction."""
        pass

    async def aclose(self) -> None:
        return None
