"""Two-pass duplicate detection over the comparable set.

Pass A groups records on the normalized (date, amount, description) key and
links every ``new`` member of a group to its canonical record. Pass B asks the
duplicate reviewer for a second opinion; its links are applied afterwards and
win over Pass A for the same candidate. Pass B is advisory: any failure leaves
the Pass A results in place.
"""
import asyncio
from collections import defaultdict
from collections.abc import Sequence

from statement_ingest.capabilities.base import DuplicateReviewer
from statement_ingest.domain.comparable import ComparableSummary, build_comparable_summaries
from statement_ingest.logger import get_logger
from statement_ingest.models import CandidateTransaction, DuplicateLink, StoredTransaction

logger = get_logger(__name__)


def describe_match(summary: ComparableSummary) -> str:
    return (
        f"Matches {summary.description or 'another transaction'} "
        f"on {summary.occurred_at} for €{summary.amount:.2f}"
    )


def pick_canonical(group: Sequence[ComparableSummary]) -> ComparableSummary:
    """Stored records beat new ones; otherwise the earliest discovered wins."""
    return min(group, key=lambda summary: (summary.source != "existing", summary.order))


def find_local_duplicate_links(summaries: Sequence[ComparableSummary]) -> list[DuplicateLink]:
    groups: dict[tuple[str, float, str], list[ComparableSummary]] = defaultdict(list)
    for summary in summaries:
        groups[summary.group_key].append(summary)

    links: list[DuplicateLink] = []
    for group in groups.values():
        if len(group) < 2:
            continue

        canonical = pick_canonical(group)
        for summary in group:
            if summary.id == canonical.id or summary.source != "new":
                continue
            links.append(DuplicateLink(
                duplicate_id=summary.id,
                original_id=canonical.id,
                reason=describe_match(canonical),
            ))
    return links


def _leads_to(
    start_id: str,
    target_id: str,
    candidate_by_id: dict[str, CandidateTransaction],
) -> bool:
    """True when following duplicate_of_id from ``start_id`` reaches ``target_id``."""
    seen: set[str] = set()
    current: str | None = start_id
    while current is not None and current not in seen:
        if current == target_id:
            return True
        seen.add(current)
        candidate = candidate_by_id.get(current)
        current = candidate.duplicate_of_id if candidate is not None else None
    return False


def apply_duplicate_links(
    candidates: Sequence[CandidateTransaction],
    links: Sequence[DuplicateLink],
    summary_by_id: dict[str, ComparableSummary],
) -> int:
    """Annotate ``candidates`` in place. Returns how many links were applied.

    Only candidates of the current page can be annotated, so the duplicate side
    is always a ``new`` record. Links to unknown originals, self links and
    links that would close a cycle among candidates are skipped.
    """
    if not links:
        return 0

    candidate_by_id = {candidate.temp_id: candidate for candidate in candidates}
    applied = 0
    for link in links:
        candidate = candidate_by_id.get(link.duplicate_id)
        if candidate is None:
            continue
        if link.original_id == link.duplicate_id:
            continue
        summary = summary_by_id.get(link.original_id)
        if summary is None:
            logger.debug(
                "[DUPLICATES] Ignoring link %s -> %s: unknown original.",
                link.duplicate_id,
                link.original_id,
            )
            continue
        if _leads_to(link.original_id, candidate.temp_id, candidate_by_id):
            logger.debug(
                "[DUPLICATES] Ignoring link %s -> %s: it would close a cycle.",
                link.duplicate_id,
                link.original_id,
            )
            continue

        candidate.possible_duplicate = True
        candidate.duplicate_of_id = link.original_id
        candidate.duplicate_of_summary = summary.to_summary()
        candidate.duplicate_reason = link.reason or describe_match(summary)
        applied += 1
    return applied


class DuplicateDetector:
    def __init__(self, reviewer: DuplicateReviewer | None = None) -> None:
        self.reviewer = reviewer

    async def mark(
        self,
        existing: Sequence[StoredTransaction],
        prior_candidates: Sequence[CandidateTransaction],
        candidates: Sequence[CandidateTransaction],
    ) -> None:
        """Set duplicate fields on ``candidates`` against the whole comparable set.

        ``prior_candidates`` are the candidates of earlier pages of this run.
        """
        summaries, summary_by_id = build_comparable_summaries(
            existing,
            [*prior_candidates, *candidates],
        )

        heuristic_links = find_local_duplicate_links(summaries)
        applied = apply_duplicate_links(candidates, heuristic_links, summary_by_id)
        if applied:
            logger.info("[DUPLICATES] Heuristic flagged %d candidate(s).", applied)

        if len(summaries) < 2 or self.reviewer is None:
            return

        try:
            review_links = await asyncio.to_thread(self.reviewer.review, summaries, heuristic_links)
        except Exception as exc:
            logger.warning("[DUPLICATES] Cross-check failed, keeping heuristic results: %s", exc)
            return

        applied = apply_duplicate_links(candidates, review_links, summary_by_id)
        logger.debug(
            "[DUPLICATES] Cross-check applied %d of %d link(s).",
            applied,
            len(review_links),
        )
