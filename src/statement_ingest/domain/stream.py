import json
from typing import Any

from statement_ingest.models import DuplicateReferenceStatus


def encode_chunk(chunk: dict[str, Any]) -> str:
    return json.dumps(chunk) + "\n"


def progress_chunk(page_number: int, total_pages: int) -> dict[str, Any]:
    return {
        "type": "progress",
        "data": {"pageNumber": page_number, "totalPages": total_pages},
    }


def transaction_chunk(
    transaction: dict[str, Any],
    *,
    status: DuplicateReferenceStatus,
    page_number: int,
    total_so_far: int,
    error: str | None = None,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "transaction": transaction,
        "duplicateReferenceStatus": status,
        "pageNumber": page_number,
        "totalSoFar": total_so_far,
    }
    if error is not None:
        data["error"] = error
    return {"type": "transaction", "data": data}


def complete_chunk(total_transactions: int, created_count: int) -> dict[str, Any]:
    return {
        "type": "complete",
        "data": {"totalTransactions": total_transactions, "createdCount": created_count},
    }


def error_chunk(message: str) -> dict[str, Any]:
    return {"type": "error", "data": {"error": message}}
