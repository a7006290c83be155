from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from statement_ingest.domain.normalize import normalize_date

TransactionType = Literal["EXPENSE", "INCOME", "TRANSFER"]
Provenance = Literal["new", "existing"]
DuplicateReferenceStatus = Literal["none", "existing", "new", "pending"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Category(CamelModel):
    id: str
    name: str
    type: Literal["EXPENSE", "INCOME"]


class Account(CamelModel):
    id: str
    name: str
    type: str


class StoredTransaction(CamelModel):
    """A transaction as the ledger returns it."""
    id: str
    occurred_at: date
    amount: float
    description: str | None = None
    possible_duplicate: bool = False
    duplicate_of_transaction_id: str | None = None

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _calendar_day(cls, value: Any) -> Any:
        # Ledgers commonly return timestamps; keep only the UTC day.
        if isinstance(value, str | date):
            return normalize_date(value)
        return value


class DuplicateSummary(CamelModel):
    description: str
    occurred_at: str
    amount: float


class DuplicateLink(CamelModel):
    duplicate_id: str
    original_id: str
    reason: str | None = None


class CandidateTransaction(CamelModel):
    """A validated, not yet persisted transaction extracted from one page."""
    temp_id: str
    type: TransactionType
    amount: float
    occurred_at: date
    description: str
    note: str | None = None
    category_id: str | None = None
    from_account_id: str | None = None
    to_account_id: str | None = None
    possible_duplicate: bool = False
    duplicate_of_id: str | None = None
    duplicate_of_summary: DuplicateSummary | None = None
    duplicate_reason: str | None = None


class TransactionCreate(CamelModel):
    type: TransactionType
    amount: float
    occurred_at: date
    description: str | None = None
    note: str | None = None
    category_id: str | None = None
    from_account_id: str | None = None
    to_account_id: str | None = None
    reviewed: bool = False
    possible_duplicate: bool = False
    duplicate_of_transaction_id: str | None = None
