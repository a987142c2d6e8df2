"""Tests for the reference document upload command."""

from pathlib import Path

import pytest

from oncovoice.config import settings
from oncovoice.core.exceptions import BlobExistsError
from oncovoice.upload_documents import main, upload_documents

PDF_DATA = b"%PDF-1.4\n" + b"0" * 64


async def test_uploads_numbered_pdfs(tmp_path, blob_store):
    source = tmp_path / "pdfs"
    source.mkdir()
    (source / "1-ILD and cancer therapy combined.pdf").write_bytes(PDF_DATA)
    (source / "10-ADCs combined.pdf").write_bytes(PDF_DATA)
    (source / "agenda.pdf").write_bytes(PDF_DATA)

    uploaded = await upload_documents(source, blob_store)

    assert sorted(uploaded) == [1, 10]
    assert uploaded[1] == "http://test/blobs/documents/1-ILD%20and%20cancer%20therapy%20combined.pdf"
    assert await blob_store.fetch(uploaded[10]) == PDF_DATA


def test_main_stores_into_configured_blob_dir(tmp_path):
    (tmp_path / "2-HER2.pdf").write_bytes(PDF_DATA)

    assert main([str(tmp_path)]) == 0

    assert (Path(settings.blob_storage_dir) / "documents" / "2-HER2.pdf").read_bytes() == PDF_DATA


def test_main_rejects_missing_directory(tmp_path):
    assert main([str(tmp_path / "missing")]) == 1


def test_main_rejects_non_pdf_content(tmp_path):
    (tmp_path / "3-fake.pdf").write_bytes(b"")

    assert main([str(tmp_path)]) == 1


async def test_republishing_keeps_existing_document(tmp_path, blob_store):
    source = tmp_path / "pdfs"
    source.mkdir()
    (source / "4-ADCs.pdf").write_bytes(PDF_DATA)
    uploaded = await upload_documents(source, blob_store)

    (source / "4-ADCs.pdf").write_bytes(PDF_DATA + b"revised")
    with pytest.raises(BlobExistsError):
        await upload_documents(source, blob_store)

    assert await blob_store.fetch(uploaded[4]) == PDF_DATA


def test_main_replace_overwrites_published_document(tmp_path):
    (tmp_path / "5-lung.pdf").write_bytes(PDF_DATA)
    assert main([str(tmp_path)]) == 0

    (tmp_path / "5-lung.pdf").write_bytes(PDF_DATA + b"revised")
    assert main([str(tmp_path)]) == 1
    assert main([str(tmp_path), "--replace"]) == 0

    assert (Path(settings.blob_storage_dir) / "documents" / "5-lung.pdf").read_bytes() == PDF_DATA + b"revised"
