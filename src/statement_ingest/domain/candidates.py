import re
from collections.abc import Collection, Iterable
from datetime import date
from typing import Any
from uuid import uuid4

from pydantic import Field, ValidationError, field_validator

from statement_ingest.logger import get_logger
from statement_ingest.models import CamelModel, CandidateTransaction, TransactionType

logger = get_logger(__name__)

MIN_DESCRIPTION_LENGTH = 3

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ExtractedTransaction(CamelModel):
    """Raw candidate as returned by the extraction capability.

    Validation failures here are expected noise from imperfect extraction;
    callers drop the record instead of failing the page.
    """
    type: TransactionType
    amount: float = Field(gt=0, strict=True, allow_inf_nan=False)
    occurred_at: date
    description: str
    note: str | None = None
    category_id: str | None = None
    from_account_id: str | None = None
    to_account_id: str | None = None
    possible_duplicate: bool | None = None

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _complete_iso_date(cls, value: Any) -> date:
        if not isinstance(value, str) or not _ISO_DATE.match(value):
            raise ValueError("date must be YYYY-MM-DD")
        return date.fromisoformat(value)

    @field_validator("description")
    @classmethod
    def _untruncated_description(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < MIN_DESCRIPTION_LENGTH:
            raise ValueError("description missing or truncated")
        return stripped

    @field_validator("note", "category_id", "from_account_id", "to_account_id", mode="before")
    @classmethod
    def _collapse_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)


def new_temp_id() -> str:
    return str(uuid4())


def to_candidate(
    extracted: ExtractedTransaction,
    *,
    category_ids: Collection[str] | None = None,
    account_ids: Collection[str] | None = None,
    temp_id: str | None = None,
) -> CandidateTransaction:
    category_id = extracted.category_id
    if extracted.type == "TRANSFER":
        category_id = None
    elif category_id is not None and category_ids is not None and category_id not in category_ids:
        logger.debug("[EXTRACT] Clearing unknown category reference %s.", category_id)
        category_id = None

    from_account_id = extracted.from_account_id
    to_account_id = extracted.to_account_id
    if account_ids is not None:
        if from_account_id is not None and from_account_id not in account_ids:
            from_account_id = None
        if to_account_id is not None and to_account_id not in account_ids:
            to_account_id = None

    return CandidateTransaction(
        temp_id=temp_id or new_temp_id(),
        type=extracted.type,
        amount=extracted.amount,
        occurred_at=extracted.occurred_at,
        description=extracted.description,
        note=extracted.note.strip() if extracted.note else None,
        category_id=category_id,
        from_account_id=from_account_id,
        to_account_id=to_account_id,
        possible_duplicate=bool(extracted.possible_duplicate),
    )


def parse_candidates(
    raw_items: Iterable[Any],
    *,
    category_ids: Collection[str] | None = None,
    account_ids: Collection[str] | None = None,
) -> list[CandidateTransaction]:
    candidates: list[CandidateTransaction] = []
    dropped = 0
    for raw in raw_items:
        if not isinstance(raw, dict):
            dropped += 1
            continue
        try:
            extracted = ExtractedTransaction.model_validate(raw)
        except ValidationError as exc:
            dropped += 1
            logger.debug(
                "[EXTRACT] Dropping invalid candidate (%s): %s",
                ", ".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc")),
                raw,
            )
            continue
        candidates.append(to_candidate(
            extracted,
            category_ids=category_ids,
            account_ids=account_ids,
        ))

    if dropped:
        logger.debug("[EXTRACT] Dropped %d invalid candidate(s).", dropped)
    return candidates
