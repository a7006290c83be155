from collections.abc import Callable, Sequence
from io import BytesIO
from typing import Any

import pytest
from pypdf import PdfWriter

from statement_ingest.capabilities.base import DuplicateReviewer, StatementExtractor
from statement_ingest.documents.segmenter import DocumentPage
from statement_ingest.domain.comparable import ComparableSummary
from statement_ingest.errors import TransactionStoreError
from statement_ingest.models import (
    Account,
    Category,
    DuplicateLink,
    StoredTransaction,
    TransactionCreate,
)
from statement_ingest.stores.base import LedgerBackend


def build_pdf(page_count: int) -> bytes:
    writer = PdfWriter()
    for _ in range(page_count):
        writer.add_blank_page(width=612, height=792)
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def raw_tx(description: str, amount: float = 10.0, occurred_at: str = "2024-01-05", **extra: Any) -> dict[str, Any]:
    return {
        "type": "EXPENSE",
        "amount": amount,
        "occurredAt": occurred_at,
        "description": description,
        **extra,
    }


class ScriptedExtractor(StatementExtractor):
    """Returns canned raw candidates per page number; exceptions are raised."""

    def __init__(self, pages: dict[int, list[dict[str, Any]] | Exception]) -> None:
        self.pages = pages
        self.calls: list[int] = []

    def extract(
        self,
        page: DocumentPage,
        *,
        categories: Sequence[Category],
        accounts: Sequence[Account],
    ) -> list[dict[str, Any]]:
        self.calls.append(page.page_number)
        result = self.pages.get(page.page_number, [])
        if isinstance(result, Exception):
            raise result
        return [dict(item) for item in result]


class ScriptedReviewer(DuplicateReviewer):
    def __init__(self, respond: Callable[[Sequence[ComparableSummary]], list[DuplicateLink]]) -> None:
        self.respond = respond
        self.calls: list[tuple[list[ComparableSummary], list[DuplicateLink]]] = []

    def review(
        self,
        summaries: Sequence[ComparableSummary],
        hints: Sequence[DuplicateLink],
    ) -> list[DuplicateLink]:
        self.calls.append((list(summaries), list(hints)))
        return self.respond(summaries)


class InMemoryLedger(LedgerBackend):
    def __init__(
        self,
        *,
        categories: list[Category] | None = None,
        accounts: list[Account] | None = None,
        recent: list[StoredTransaction] | None = None,
        fail_descriptions: set[str] | None = None,
    ) -> None:
        self.categories = categories or []
        self.accounts = accounts or []
        self.recent = recent or []
        self.fail_descriptions = fail_descriptions or set()
        self.created: list[tuple[str, TransactionCreate]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []

    async def get_categories(self) -> list[Category]:
        return self.categories

    async def get_accounts(self) -> list[Account]:
        return self.accounts

    async def get_recent_transactions(self, limit: int) -> list[StoredTransaction]:
        return self.recent[:limit]

    async def create_transaction(self, payload: TransactionCreate) -> StoredTransaction:
        if payload.description in self.fail_descriptions:
            raise TransactionStoreError(f"Rejected {payload.description}")
        transaction_id = f"tx-{len(self.created) + 1}"
        self.created.append((transaction_id, payload))
        return StoredTransaction(
            id=transaction_id,
            occurred_at=payload.occurred_at,
            amount=payload.amount,
            description=payload.description,
            possible_duplicate=payload.possible_duplicate,
            duplicate_of_transaction_id=payload.duplicate_of_transaction_id,
        )

    async def update_transaction(self, transaction_id: str, fields: dict[str, Any]) -> None:
        self.updates.append((transaction_id, fields))

    def created_by_description(self, description: str) -> tuple[str, TransactionCreate]:
        for transaction_id, payload in self.created:
            if payload.description == description:
                return transaction_id, payload
        raise KeyError(description)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
