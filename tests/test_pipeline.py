import asyncio
import json
import logging
from typing import Any

import pytest
from conftest import InMemoryLedger, ScriptedExtractor, ScriptedReviewer, build_pdf, raw_tx

from statement_ingest.duplicates.detector import DuplicateDetector
from statement_ingest.models import DuplicateLink, StoredTransaction
from statement_ingest.services.extraction import ExtractionDriver
from statement_ingest.services.page_extractor import PageExtractor
from statement_ingest.services.persistence import PersistenceCoordinator


async def run_upload(
    data: bytes,
    extractor: ScriptedExtractor,
    ledger: InMemoryLedger,
    *,
    mime_type: str = "application/pdf",
    reviewer: ScriptedReviewer | None = None,
) -> list[dict[str, Any]]:
    existing = await ledger.get_recent_transactions(20)
    driver = ExtractionDriver(PageExtractor(extractor, DuplicateDetector(reviewer)))
    coordinator = PersistenceCoordinator(ledger, existing)
    events = driver.run(data, mime_type, categories=[], accounts=[], existing=existing)
    return [json.loads(line) async for line in coordinator.stream(events)]


def of_type(chunks: list[dict[str, Any]], chunk_type: str) -> list[dict[str, Any]]:
    return [chunk["data"] for chunk in chunks if chunk["type"] == chunk_type]


@pytest.mark.anyio
async def test_three_page_statement_streams_in_order() -> None:
    extractor = ScriptedExtractor({
        1: [raw_tx("Grocery Store", 12.5), raw_tx("Gas Station", 40)],
        2: [raw_tx("Bookshop", 8.99), raw_tx("Cinema Tickets", 22)],
        3: [raw_tx("Pharmacy", 5.25), raw_tx("Salary", 2500, type="INCOME")],
    })
    ledger = InMemoryLedger()

    chunks = await run_upload(build_pdf(3), extractor, ledger)

    assert [chunk["type"] for chunk in chunks] == [
        "progress", "transaction", "transaction",
        "progress", "transaction", "transaction",
        "progress", "transaction", "transaction",
        "complete",
    ]
    assert of_type(chunks, "progress") == [
        {"pageNumber": 1, "totalPages": 3},
        {"pageNumber": 2, "totalPages": 3},
        {"pageNumber": 3, "totalPages": 3},
    ]
    transactions = of_type(chunks, "transaction")
    assert [t["totalSoFar"] for t in transactions] == [1, 2, 3, 4, 5, 6]
    assert [t["pageNumber"] for t in transactions] == [1, 1, 2, 2, 3, 3]
    assert all(t["duplicateReferenceStatus"] == "none" for t in transactions)
    assert all("error" not in t for t in transactions)
    assert transactions[0]["transaction"]["id"] == "tx-1"
    assert transactions[0]["transaction"]["occurredAt"] == "2024-01-05"
    assert "tempId" not in transactions[0]["transaction"]
    assert chunks[-1]["data"] == {"totalTransactions": 6, "createdCount": 6}
    assert extractor.calls == [1, 2, 3]
    assert all(payload.reviewed is False for _, payload in ledger.created)


@pytest.mark.anyio
async def test_duplicate_across_pages_points_at_created_record() -> None:
    extractor = ScriptedExtractor({
        1: [raw_tx("Coffee Shop", 4.5)],
        2: [raw_tx("coffee-shop", 4.5)],
    })
    ledger = InMemoryLedger()

    chunks = await run_upload(build_pdf(2), extractor, ledger)

    first, second = of_type(chunks, "transaction")
    assert first["duplicateReferenceStatus"] == "none"
    assert second["duplicateReferenceStatus"] == "new"
    assert second["transaction"]["possibleDuplicate"] is True
    assert second["transaction"]["duplicateOfTransactionId"] == first["transaction"]["id"]
    assert second["transaction"]["duplicateOfSummary"] == {
        "description": "Coffee Shop",
        "occurredAt": "2024-01-05",
        "amount": 4.5,
    }
    _, payload = ledger.created[1]
    assert payload.possible_duplicate is True
    assert payload.duplicate_of_transaction_id == "tx-1"
    assert ledger.updates == []


@pytest.mark.anyio
async def test_duplicate_of_stored_transaction() -> None:
    ledger = InMemoryLedger(recent=[
        StoredTransaction(id="old-7", occurred_at="2024-01-05T10:00:00Z", amount=15, description="Gym Membership"),
    ])
    extractor = ScriptedExtractor({1: [raw_tx("Gym membership", 15)]})

    chunks = await run_upload(build_pdf(1), extractor, ledger)

    [transaction] = of_type(chunks, "transaction")
    assert transaction["duplicateReferenceStatus"] == "existing"
    assert transaction["transaction"]["duplicateOfTransactionId"] == "old-7"
    assert transaction["transaction"]["duplicateReason"] == "Matches Gym Membership on 2024-01-05 for €15.00"
    assert ledger.created[0][1].duplicate_of_transaction_id == "old-7"


@pytest.mark.anyio
async def test_forward_reference_is_backfilled() -> None:
    def link_first_to_second(summaries):
        by_description = {summary.description: summary.id for summary in summaries}
        return [DuplicateLink(
            duplicate_id=by_description["Card Payment Amazon"],
            original_id=by_description["Amazon EU Sarl"],
            reason="Same order",
        )]

    extractor = ScriptedExtractor({
        1: [raw_tx("Card Payment Amazon", 31.2), raw_tx("Amazon EU Sarl", 31.2)],
    })
    ledger = InMemoryLedger()

    chunks = await run_upload(
        build_pdf(1), extractor, ledger, reviewer=ScriptedReviewer(link_first_to_second),
    )

    first, second = of_type(chunks, "transaction")
    assert first["duplicateReferenceStatus"] == "pending"
    assert first["transaction"]["duplicateOfTransactionId"] is None
    assert first["transaction"]["duplicateOfSummary"]["description"] == "Amazon EU Sarl"
    assert first["transaction"]["duplicateReason"] == "Same order"
    assert second["duplicateReferenceStatus"] == "none"

    first_id, first_payload = ledger.created_by_description("Card Payment Amazon")
    second_id, _ = ledger.created_by_description("Amazon EU Sarl")
    assert first_payload.duplicate_of_transaction_id is None
    assert ledger.updates == [(first_id, {"duplicateOfTransactionId": second_id})]
    assert chunks[-1]["data"] == {"totalTransactions": 2, "createdCount": 2}


@pytest.mark.anyio
async def test_pending_reference_to_failed_record_is_abandoned(caplog: pytest.LogCaptureFixture) -> None:
    def link_first_to_second(summaries):
        return [DuplicateLink(duplicate_id=summaries[0].id, original_id=summaries[1].id)]

    extractor = ScriptedExtractor({1: [raw_tx("Card Payment Amazon"), raw_tx("Amazon EU Sarl")]})
    ledger = InMemoryLedger(fail_descriptions={"Amazon EU Sarl"})

    with caplog.at_level(logging.WARNING):
        chunks = await run_upload(
            build_pdf(1), extractor, ledger, reviewer=ScriptedReviewer(link_first_to_second),
        )

    first, second = of_type(chunks, "transaction")
    assert first["duplicateReferenceStatus"] == "pending"
    assert "error" in second
    assert ledger.updates == []
    created_id, _ = ledger.created_by_description("Card Payment Amazon")
    abandoned = [r.getMessage() for r in caplog.records if "Abandoning duplicate link" in r.getMessage()]
    assert len(abandoned) == 1
    assert created_id in abandoned[0]
    assert chunks[-1]["data"] == {"totalTransactions": 2, "createdCount": 1}


@pytest.mark.anyio
async def test_invalid_candidates_are_dropped() -> None:
    extractor = ScriptedExtractor({1: [
        raw_tx("Grocery Store", 12.5),
        raw_tx("Negative Refund", -3),
        raw_tx("Broken Date", occurred_at="2024-13"),
        raw_tx(""),
        raw_tx("ab"),
        raw_tx("Text Amount", "12.50"),
    ]})
    ledger = InMemoryLedger()

    chunks = await run_upload(build_pdf(1), extractor, ledger)

    transactions = of_type(chunks, "transaction")
    assert [t["transaction"]["description"] for t in transactions] == ["Grocery Store"]
    assert chunks[-1]["data"] == {"totalTransactions": 1, "createdCount": 1}


@pytest.mark.anyio
async def test_failed_page_is_skipped() -> None:
    extractor = ScriptedExtractor({
        1: [raw_tx("Grocery Store")],
        2: RuntimeError("model timed out"),
        3: [raw_tx("Pharmacy")],
    })
    ledger = InMemoryLedger()

    chunks = await run_upload(build_pdf(3), extractor, ledger)

    assert [chunk["type"] for chunk in chunks] == [
        "progress", "transaction", "progress", "progress", "transaction", "complete",
    ]
    assert of_type(chunks, "progress")[1] == {"pageNumber": 2, "totalPages": 3}
    assert [t["pageNumber"] for t in of_type(chunks, "transaction")] == [1, 3]


@pytest.mark.anyio
async def test_failed_create_does_not_stop_the_run() -> None:
    extractor = ScriptedExtractor({1: [
        raw_tx("Grocery Store"),
        raw_tx("Rejected Row"),
        raw_tx("Pharmacy"),
    ]})
    ledger = InMemoryLedger(fail_descriptions={"Rejected Row"})

    chunks = await run_upload(build_pdf(1), extractor, ledger)

    transactions = of_type(chunks, "transaction")
    assert [("error" in t) for t in transactions] == [False, True, False]
    assert transactions[1]["error"] == "Rejected Rejected Row"
    assert "id" not in transactions[1]["transaction"]
    assert [t["totalSoFar"] for t in transactions] == [1, 2, 3]
    assert chunks[-1]["data"] == {"totalTransactions": 3, "createdCount": 2}


@pytest.mark.anyio
async def test_unreadable_document_emits_single_error() -> None:
    extractor = ScriptedExtractor({})
    ledger = InMemoryLedger()

    chunks = await run_upload(b"definitely not a pdf", extractor, ledger)

    assert [chunk["type"] for chunk in chunks] == ["error"]
    assert chunks[0]["data"]["error"]
    assert extractor.calls == []
    assert ledger.created == []


@pytest.mark.anyio
async def test_image_is_a_single_page() -> None:
    extractor = ScriptedExtractor({1: [raw_tx("Parking Meter", 2)]})
    ledger = InMemoryLedger()

    chunks = await run_upload(b"\x89PNG fake", extractor, ledger, mime_type="image/png")

    assert of_type(chunks, "progress") == [{"pageNumber": 1, "totalPages": 1}]
    assert chunks[-1]["data"] == {"totalTransactions": 1, "createdCount": 1}


class SlowLedger(InMemoryLedger):
    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.finished = asyncio.Event()

    async def create_transaction(self, payload):
        self.started.set()
        await asyncio.sleep(0.05)
        created = await super().create_transaction(payload)
        self.finished.set()
        return created


@pytest.mark.anyio
async def test_disconnect_lets_current_write_finish_and_stops_paging() -> None:
    extractor = ScriptedExtractor({
        1: [raw_tx("Grocery Store"), raw_tx("Pharmacy")],
        2: [raw_tx("Bookshop")],
    })
    ledger = SlowLedger()
    driver = ExtractionDriver(PageExtractor(extractor, DuplicateDetector()))
    coordinator = PersistenceCoordinator(ledger)
    events = driver.run(build_pdf(2), "application/pdf", categories=[], accounts=[], existing=[])
    chunks: list[dict[str, Any]] = []

    async def consume() -> None:
        async for line in coordinator.stream(events):
            chunks.append(json.loads(line))

    consumer = asyncio.create_task(consume())
    await asyncio.wait_for(ledger.started.wait(), timeout=5)
    consumer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await consumer

    await asyncio.wait_for(ledger.finished.wait(), timeout=5)
    assert [payload.description for _, payload in ledger.created] == ["Grocery Store"]
    assert extractor.calls == [1]
    assert [chunk["type"] for chunk in chunks] == ["progress"]
