from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any

from statement_ingest.domain.normalize import normalize_amount, normalize_date, normalize_description
from statement_ingest.models import (
    CandidateTransaction,
    DuplicateSummary,
    Provenance,
    StoredTransaction,
)


@dataclass(frozen=True)
class ComparableSummary:
    id: str
    source: Provenance
    occurred_at: str
    amount: float
    description: str
    normalized_description: str
    normalized_amount: float
    order: int

    @property
    def group_key(self) -> tuple[str, float, str]:
        return (self.occurred_at, self.normalized_amount, self.normalized_description)

    def to_summary(self) -> DuplicateSummary:
        return DuplicateSummary(
            description=self.description,
            occurred_at=self.occurred_at,
            amount=self.amount,
        )

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


def summarize_stored(transaction: StoredTransaction, order: int) -> ComparableSummary:
    description = transaction.description or ""
    return ComparableSummary(
        id=transaction.id,
        source="existing",
        occurred_at=normalize_date(transaction.occurred_at),
        amount=float(transaction.amount),
        description=description,
        normalized_description=normalize_description(description),
        normalized_amount=normalize_amount(transaction.amount),
        order=order,
    )


def summarize_candidate(candidate: CandidateTransaction, order: int) -> ComparableSummary:
    return ComparableSummary(
        id=candidate.temp_id,
        source="new",
        occurred_at=normalize_date(candidate.occurred_at),
        amount=float(candidate.amount),
        description=candidate.description,
        normalized_description=normalize_description(candidate.description),
        normalized_amount=normalize_amount(candidate.amount),
        order=order,
    )


def build_comparable_summaries(
    existing: Sequence[StoredTransaction],
    candidates: Sequence[CandidateTransaction],
) -> tuple[list[ComparableSummary], dict[str, ComparableSummary]]:
    """Summarize stored records first, then run candidates in discovery order."""
    summaries = [summarize_stored(tx, order) for order, tx in enumerate(existing)]
    offset = len(summaries)
    summaries.extend(
        summarize_candidate(candidate, offset + index)
        for index, candidate in enumerate(candidates)
    )
    summary_by_id = {summary.id: summary for summary in summaries}
    return summaries, summary_by_id
