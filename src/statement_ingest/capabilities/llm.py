import base64
import json
import os
from collections.abc import Sequence
from typing import Any

from openai import OpenAI
from pydantic import ValidationError

from statement_ingest.capabilities.base import DuplicateReviewer, StatementExtractor
from statement_ingest.capabilities.prompts import (
    DUPLICATE_REVIEW_INSTRUCTIONS,
    build_duplicate_review_input,
    build_extraction_prompt,
)
from statement_ingest.documents.segmenter import DocumentPage, is_pdf
from statement_ingest.domain.comparable import ComparableSummary
from statement_ingest.errors import DuplicateReviewError, ExtractionError
from statement_ingest.logger import get_logger
from statement_ingest.models import Account, Category, DuplicateLink

logger = get_logger(__name__)

JSON_OUTPUT = {"format": {"type": "json_object"}}


def build_client(api_key: str | None = None, base_url: str | None = None) -> OpenAI:
    return OpenAI(
        api_key=api_key or os.getenv("OPENAI_API_KEY"),
        base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
    )


def extract_output_text(response: object) -> str | None:
    output_text = getattr(response, "output_text", None)
    if output_text:
        return output_text

    output = getattr(response, "output", None)
    if not output:
        return None

    parts: list[str] = []
    for item in output:
        content = getattr(item, "content", None)
        if not content:
            continue
        for block in content:
            block_type = getattr(block, "type", None)
            if block_type in {"output_text", "text"}:
                text = getattr(block, "text", None)
                if text:
                    parts.append(text)

    if parts:
        return "".join(parts)
    return None


def _parse_json_object(text: str | None) -> dict[str, Any]:
    if not text:
        raise ValueError("empty response")
    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError("response is not a JSON object")
    return payload


def page_content_block(page: DocumentPage) -> dict[str, Any]:
    encoded = base64.b64encode(page.content).decode("ascii")
    data_url = f"data:{page.mime_type};base64,{encoded}"
    if is_pdf(page.mime_type):
        return {
            "type": "input_file",
            "filename": f"page-{page.page_number}.pdf",
            "file_data": data_url,
        }
    return {"type": "input_image", "image_url": data_url}


class LLMStatementExtractor(StatementExtractor):
    def __init__(self, client: OpenAI | None = None, model: str = "gpt-4o-mini"):
        self.client = client or build_client()
        self.model = model

    def extract(
        self,
        page: DocumentPage,
        *,
        categories: Sequence[Category],
        accounts: Sequence[Account],
    ) -> list[dict[str, Any]]:
        prompt = build_extraction_prompt(
            categories,
            accounts,
            page.page_number,
            page.total_pages,
        )
        try:
            response = self.client.responses.create(
                model=self.model,
                instructions="You extract transactions from bank statements and answer in JSON.",
                input=[{
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": prompt},
                        page_content_block(page),
                    ],
                }],
                text=JSON_OUTPUT,
                temperature=0.0,
            )
            payload = _parse_json_object(extract_output_text(response))
        except Exception as exc:
            raise ExtractionError(f"Extraction failed for page {page.page_number}: {exc}") from exc

        transactions = payload.get("transactions")
        if not isinstance(transactions, list):
            raise ExtractionError(f"Extraction response for page {page.page_number} has no transactions list")
        logger.debug(
            "[EXTRACT] Page %s/%s returned %d raw candidate(s).",
            page.page_number,
            page.total_pages,
            len(transactions),
        )
        return transactions


class LLMDuplicateReviewer(DuplicateReviewer):
    def __init__(self, client: OpenAI | None = None, model: str = "gpt-4o-mini"):
        self.client = client or build_client()
        self.model = model

    def review(
        self,
        summaries: Sequence[ComparableSummary],
        hints: Sequence[DuplicateLink],
    ) -> list[DuplicateLink]:
        try:
            response = self.client.responses.create(
                model=self.model,
                instructions=DUPLICATE_REVIEW_INSTRUCTIONS,
                input=build_duplicate_review_input(summaries, hints),
                text=JSON_OUTPUT,
                temperature=0.0,
            )
            payload = _parse_json_object(extract_output_text(response))
        except Exception as exc:
            raise DuplicateReviewError(f"Duplicate review failed: {exc}") from exc

        entries = payload.get("duplicates") or []
        if not isinstance(entries, list):
            raise DuplicateReviewError("Duplicate review response has no duplicates list")

        links: list[DuplicateLink] = []
        for entry in entries:
            try:
                links.append(DuplicateLink.model_validate(entry))
            except ValidationError:
                logger.debug("[DUPLICATES] Ignoring malformed review entry: %s", entry)

        logger.debug(
            "[DUPLICATES] Review returned %d link(s) for %d transaction(s), %d heuristic hint(s).",
            len(links),
            len(summaries),
            len(hints),
        )
        return links
