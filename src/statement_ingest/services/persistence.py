import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from contextlib import aclosing
from typing import Any

from statement_ingest.domain.stream import (
    complete_chunk,
    encode_chunk,
    error_chunk,
    progress_chunk,
    transaction_chunk,
)
from statement_ingest.logger import get_logger
from statement_ingest.models import CandidateTransaction, StoredTransaction, TransactionCreate
from statement_ingest.services.extraction import ExtractionEvent, ProgressEvent, TransactionEvent
from statement_ingest.services.identity import DuplicateReference, IdentityMap
from statement_ingest.stores.base import LedgerBackend

logger = get_logger(__name__)

_CANDIDATE_ONLY_FIELDS = {"temp_id", "duplicate_of_id", "duplicate_of_summary", "duplicate_reason"}


def build_create_payload(
    candidate: CandidateTransaction,
    duplicate_of_transaction_id: str | None,
) -> TransactionCreate:
    return TransactionCreate(
        type=candidate.type,
        amount=candidate.amount,
        occurred_at=candidate.occurred_at,
        description=candidate.description,
        note=candidate.note,
        category_id=candidate.category_id,
        from_account_id=candidate.from_account_id,
        to_account_id=candidate.to_account_id,
        reviewed=False,
        possible_duplicate=candidate.possible_duplicate,
        duplicate_of_transaction_id=duplicate_of_transaction_id,
    )


def build_transaction_payload(
    candidate: CandidateTransaction,
    reference: DuplicateReference,
    *,
    created_id: str | None,
) -> dict[str, Any]:
    payload = candidate.model_dump(mode="json", by_alias=True, exclude=_CANDIDATE_ONLY_FIELDS)
    if created_id is not None:
        payload["id"] = created_id
    summary = reference.summary or candidate.duplicate_of_summary
    payload["duplicateOfTransactionId"] = reference.transaction_id
    payload["duplicateOfSummary"] = summary.model_dump(mode="json", by_alias=True) if summary else None
    payload["duplicateReason"] = candidate.duplicate_reason
    return payload


class PersistenceCoordinator:
    """Persists extracted candidates and streams the NDJSON output protocol.

    Owns the run's identity map. Duplicate references to candidates that are
    not persisted yet are parked as pending and backfilled with an update once
    the referenced candidate gets its ledger id.
    """

    def __init__(
        self,
        store: LedgerBackend,
        existing: Sequence[StoredTransaction] = (),
    ) -> None:
        self.store = store
        self._identities = IdentityMap(existing)
        self.transaction_count = 0
        self.created_count = 0

    async def stream(self, events: AsyncIterator[ExtractionEvent]) -> AsyncGenerator[str, None]:
        try:
            async with aclosing(events):
                async for event in events:
                    if isinstance(event, ProgressEvent):
                        logger.info("[UPLOAD] Processing page %s/%s.", event.page_number, event.total_pages)
                        yield encode_chunk(progress_chunk(event.page_number, event.total_pages))
                    elif isinstance(event, TransactionEvent):
                        chunk = await self.persist(event)
                        yield encode_chunk(chunk)
        except Exception as exc:
            logger.exception("[UPLOAD] Streaming transactions failed.")
            yield encode_chunk(error_chunk(str(exc) or "Failed to process document"))
            return
        finally:
            self._identities.abandon_pending()

        logger.info(
            "[UPLOAD] Complete. Transactions: %s, created: %s.",
            self.transaction_count,
            self.created_count,
        )
        yield encode_chunk(complete_chunk(self.transaction_count, self.created_count))

    async def persist(self, event: TransactionEvent) -> dict[str, Any]:
        candidate = event.transaction
        self.transaction_count += 1

        reference = self._identities.resolve(
            candidate.duplicate_of_id,
            candidate.duplicate_of_summary,
        )

        try:
            # Shielded so a client disconnect does not cut a write in half.
            created = await asyncio.shield(
                self.store.create_transaction(build_create_payload(candidate, reference.transaction_id))
            )
        except Exception as exc:
            logger.error(
                "[PERSIST] Failed to create transaction '%s' from page %s: %s",
                candidate.description,
                event.page_number,
                exc,
            )
            return transaction_chunk(
                build_transaction_payload(candidate, reference, created_id=None),
                status=reference.status,
                page_number=event.page_number,
                total_so_far=self.transaction_count,
                error=str(exc) or "Failed to create",
            )

        self.created_count += 1
        waiting = self._identities.record_created(candidate.temp_id, created)
        if waiting:
            await self._backfill(created.id, waiting)

        if reference.status == "pending" and candidate.duplicate_of_id:
            self._identities.add_pending(candidate.duplicate_of_id, created.id)
            logger.debug(
                "[PERSIST] Transaction %s waits for duplicate original %s.",
                created.id,
                candidate.duplicate_of_id,
            )

        return transaction_chunk(
            build_transaction_payload(candidate, reference, created_id=created.id),
            status=reference.status,
            page_number=event.page_number,
            total_so_far=self.transaction_count,
        )

    async def _backfill(self, original_id: str, waiting: list[str]) -> None:
        results = await asyncio.shield(asyncio.gather(
            *(
                self.store.update_transaction(transaction_id, {"duplicateOfTransactionId": original_id})
                for transaction_id in waiting
            ),
            return_exceptions=True,
        ))
        for transaction_id, result in zip(waiting, results):
            if isinstance(result, BaseException):
                logger.error(
                    "[PERSIST] Failed to link transaction %s to duplicate original %s: %s",
                    transaction_id,
                    original_id,
                    result,
                )
            else:
                logger.debug("[PERSIST] Linked transaction %s to duplicate original %s.", transaction_id, original_id)
