from dataclasses import dataclass
from io import BytesIO

from pypdf import PdfReader, PdfWriter

from statement_ingest.errors import DocumentSegmentationError
from statement_ingest.logger import get_logger

logger = get_logger(__name__)

PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True)
class DocumentPage:
    content: bytes
    mime_type: str
    page_number: int
    total_pages: int


def is_pdf(mime_type: str) -> bool:
    return mime_type == PDF_MIME_TYPE


def is_image(mime_type: str) -> bool:
    return mime_type.startswith("image/")


def is_supported_mime_type(mime_type: str) -> bool:
    return is_pdf(mime_type) or is_image(mime_type)


def split_pdf_into_pages(data: bytes) -> list[bytes]:
    """Split a PDF into standalone single-page PDFs, preserving page order."""
    try:
        reader = PdfReader(BytesIO(data))
        page_buffers: list[bytes] = []
        for page in reader.pages:
            writer = PdfWriter()
            writer.add_page(page)
            buffer = BytesIO()
            writer.write(buffer)
            page_buffers.append(buffer.getvalue())
    except Exception as exc:
        logger.error("[SEGMENT] Failed to split PDF into pages: %s", exc)
        raise DocumentSegmentationError("Failed to split PDF into pages") from exc
    return page_buffers


def segment_document(data: bytes, mime_type: str) -> list[DocumentPage]:
    """Turn an upload into pages. Still images are one page and are not parsed."""
    if is_image(mime_type):
        return [DocumentPage(content=data, mime_type=mime_type, page_number=1, total_pages=1)]
    if not is_pdf(mime_type):
        raise DocumentSegmentationError(f"Unsupported document type: {mime_type or 'unknown'}")

    buffers = split_pdf_into_pages(data)
    total_pages = len(buffers)
    logger.info("[SEGMENT] Split document into %d page(s).", total_pages)
    return [
        DocumentPage(
            content=buffer,
            mime_type=PDF_MIME_TYPE,
            page_number=index + 1,
            total_pages=total_pages,
        )
        for index, buffer in enumerate(buffers)
    ]
