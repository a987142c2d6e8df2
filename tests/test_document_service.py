"""Tests for reference document text extraction."""

import pytest

from oncovoice.core.exceptions import DocumentNotFoundError, DocumentProcessingError
from oncovoice.services.document_service import DocumentService, extract_pdf_text

from conftest import make_pdf


class TestExtractPdfText:
    def test_pages_are_joined(self):
        text = extract_pdf_text(make_pdf("Pneumonitis grading", "Dose interruption"))

        assert "Pneumonitis grading" in text
        assert "Dose interruption" in text
        assert text.index("Pneumonitis") < text.index("Dose")

    def test_invalid_pdf(self):
        with pytest.raises(DocumentProcessingError):
            extract_pdf_text(b"this is not a pdf")


class TestDocumentService:
    async def test_extracts_stored_document(self, blob_store):
        blob = await blob_store.put("documents/1-ILD.pdf", make_pdf("T-DXd associated ILD"), "application/pdf")

        text = await DocumentService(blob_store).extract_text(blob.url)

        assert "T-DXd associated ILD" in text

    async def test_missing_document(self, blob_store):
        with pytest.raises(DocumentNotFoundError):
            await DocumentService(blob_store).extract_text("http://test/blobs/documents/none.pdf")

    async def test_document_without_text(self, blob_store):
        blob = await blob_store.put("documents/blank.pdf", make_pdf(""), "application/pdf")

        with pytest.raises(DocumentProcessingError, match="no extractable text"):
            await DocumentService(blob_store).extract_text(blob.url)
