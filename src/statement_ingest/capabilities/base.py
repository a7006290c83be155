from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from statement_ingest.documents.segmenter import DocumentPage
from statement_ingest.domain.comparable import ComparableSummary
from statement_ingest.models import Account, Category, DuplicateLink


class StatementExtractor(ABC):
    @abstractmethod
    def extract(
        self,
        page: DocumentPage,
        *,
        categories: Sequence[Category],
        accounts: Sequence[Account],
    ) -> list[dict[str, Any]]:
        """Return the raw candidate objects visible on one page."""
        pass


class DuplicateReviewer(ABC):
    @abstractmethod
    def review(
        self,
        summaries: Sequence[ComparableSummary],
        hints: Sequence[DuplicateLink],
    ) -> list[DuplicateLink]:
        """Return (duplicate, original) pairs among the comparable set."""
        pass
