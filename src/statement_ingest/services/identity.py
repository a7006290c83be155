from collections.abc import Sequence
from dataclasses import dataclass

from statement_ingest.domain.normalize import normalize_date
from statement_ingest.logger import get_logger
from statement_ingest.models import DuplicateReferenceStatus, DuplicateSummary, StoredTransaction

logger = get_logger(__name__)


@dataclass(frozen=True)
class DuplicateReference:
    transaction_id: str | None
    summary: DuplicateSummary | None
    status: DuplicateReferenceStatus


NO_REFERENCE = DuplicateReference(transaction_id=None, summary=None, status="none")


def summarize_record(record: StoredTransaction) -> DuplicateSummary:
    return DuplicateSummary(
        description=record.description or "No description",
        occurred_at=normalize_date(record.occurred_at),
        amount=float(record.amount),
    )


class IdentityMap:
    """Run-scoped lookup tables keyed by plain string ids.

    ``durable`` holds every record with a ledger id (stored context plus records
    created in this run). ``created`` maps a candidate temp id to its ledger id.
    ``pending`` maps a temp id that is not durable yet to the ledger ids of
    records waiting to point at it.
    """

    def __init__(self, existing: Sequence[StoredTransaction] = ()) -> None:
        self._durable: dict[str, DuplicateSummary] = {
            record.id: summarize_record(record) for record in existing
        }
        self._created: dict[str, str] = {}
        self._created_summaries: dict[str, DuplicateSummary] = {}
        self._pending: dict[str, list[str]] = {}

    def resolve(
        self,
        reference_id: str | None,
        fallback: DuplicateSummary | None = None,
    ) -> DuplicateReference:
        if not reference_id:
            return NO_REFERENCE

        if reference_id in self._durable:
            return DuplicateReference(
                transaction_id=reference_id,
                summary=self._durable[reference_id],
                status="existing",
            )

        if reference_id in self._created:
            return DuplicateReference(
                transaction_id=self._created[reference_id],
                summary=self._created_summaries.get(reference_id),
                status="new",
            )

        return DuplicateReference(transaction_id=None, summary=fallback, status="pending")

    def record_created(self, temp_id: str, record: StoredTransaction) -> list[str]:
        """Register a persisted candidate and hand back the ids waiting on it."""
        summary = summarize_record(record)
        self._created[temp_id] = record.id
        self._created_summaries[temp_id] = summary
        self._durable[record.id] = summary
        return self._pending.pop(temp_id, [])

    def add_pending(self, reference_id: str, transaction_id: str) -> None:
        self._pending.setdefault(reference_id, []).append(transaction_id)

    def abandon_pending(self) -> int:
        """Drop every unresolved obligation; the waiting records keep no reference."""
        abandoned = 0
        for reference_id, waiting in self._pending.items():
            abandoned += len(waiting)
            logger.warning(
                "[PERSIST] Abandoning duplicate link to %s for %d transaction(s): %s",
                reference_id,
                len(waiting),
                ", ".join(waiting),
            )
        self._pending.clear()
        return abandoned
