import asyncio
from collections.abc import Sequence

from statement_ingest.capabilities.base import StatementExtractor
from statement_ingest.documents.segmenter import DocumentPage
from statement_ingest.domain.candidates import parse_candidates
from statement_ingest.duplicates.detector import DuplicateDetector
from statement_ingest.logger import get_logger
from statement_ingest.models import Account, CandidateTransaction, Category, StoredTransaction

logger = get_logger(__name__)


class PageExtractor:
    def __init__(
        self,
        extractor: StatementExtractor,
        detector: DuplicateDetector,
    ) -> None:
        self.extractor = extractor
        self.detector = detector

    async def extract(
        self,
        page: DocumentPage,
        *,
        categories: Sequence[Category],
        accounts: Sequence[Account],
        existing: Sequence[StoredTransaction],
        prior_candidates: Sequence[CandidateTransaction],
    ) -> list[CandidateTransaction]:
        """Extract, validate and duplicate-annotate the candidates of one page.

        Raises whatever the extraction capability raises; the caller decides
        whether a page failure is fatal.
        """
        raw_items = await asyncio.to_thread(
            self.extractor.extract,
            page,
            categories=categories,
            accounts=accounts,
        )

        candidates = parse_candidates(
            raw_items,
            category_ids={category.id for category in categories},
            account_ids={account.id for account in accounts},
        )
        logger.info(
            "[EXTRACT] Page %s/%s: %d valid of %d extracted candidate(s).",
            page.page_number,
            page.total_pages,
            len(candidates),
            len(raw_items),
        )

        if candidates:
            await self.detector.mark(existing, prior_candidates, candidates)
        return candidates
