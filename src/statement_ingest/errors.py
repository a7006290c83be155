class StatementIngestError(Exception):
    """Base error for the statement ingestion pipeline."""


class DocumentSegmentationError(StatementIngestError):
    """Raised when a source document cannot be split into pages. Aborts the run."""


class ExtractionError(StatementIngestError):
    """Raised when the extraction capability fails for a page."""


class DuplicateReviewError(StatementIngestError):
    """Raised when the duplicate cross-check returns an unusable answer."""


class TransactionStoreError(StatementIngestError):
    """Raised when the ledger rejects or fails a read or write."""
