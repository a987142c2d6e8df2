"""
Reference document retrieval and PDF text extraction
"""

import asyncio

import fitz  # PyMuPDF

from oncovoice.core.exceptions import (
    BlobNotFoundError,
    DocumentNotFoundError,
    DocumentProcessingError,
    StorageError,
)
from oncovoice.core.logging import get_logger
from oncovoice.services.blob_store import LocalBlobStore

logger = get_logger(__name__)


def extract_pdf_text(pdf_data: bytes) -> str:
    """Returns the plain text of every page, pages separated by blank lines."""
    try:
        with fitz.open(stream=pdf_data, filetype="pdf") as document:
            pages = [page.get_text("text") for page in document]
    except (RuntimeError, ValueError) as e:
        raise DocumentProcessingError(f"Invalid PDF file: {e}")
    logger.info(f"PDF has {len(pages)} pages")
    return "\n\n".join(page.strip() for page in pages if page.strip())


class DocumentService:
    """Fetches a team's reference document and extracts its text."""

    def __init__(self, blob_store: LocalBlobStore):
        self.blob_store = blob_store

    async def exists(self, document_url: str) -> bool:
        return await self.blob_store.exists(document_url)

    async def extract_text(self, document_url: str) -> str:
        logger.info(f"Extracting text from PDF: {document_url}")
        try:
            pdf_data = await self.blob_store.fetch(document_url)
        except BlobNotFoundError as e:
            raise DocumentNotFoundError(f"PDF file not found: {e.message}", details={"document_url": document_url})
        except StorageError as e:
            raise DocumentProcessingError(f"PDF extraction error: {e.message}", details={"document_url": document_url})

        text = await asyncio.to_thread(extract_pdf_text, pdf_data)
        if not text:
            raise DocumentProcessingError("PDF contains no extractable text", details={"document_url": document_url})
        logger.info(f"Extracted {len(text)} characters of text from PDF")
        return text
