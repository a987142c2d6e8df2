"""
Publishes reference PDFs to the blob store.

    python -m oncovoice.upload_documents ./pdfs

Every PDF whose filename starts with a team number ("1-ILD and cancer
therapy combined.pdf") is stored under documents/ and the resulting
team -> URL mapping is printed as JSON, ready for the "documents" section
of the event configuration.

Documents already in the store are left alone unless --replace is given.
"""

import argparse
import asyncio
import json
import re
import sys
from pathlib import Path
from typing import Dict

from oncovoice.config import settings
from oncovoice.core.exceptions import OncoVoiceError
from oncovoice.core.logging import setup_logging, get_logger
from oncovoice.services.audio_processor import AudioProcessor
from oncovoice.services.blob_store import LocalBlobStore

logger = get_logger(__name__)

TEAM_PREFIX = re.compile(r"^(\d+)-")


async def upload_documents(directory: Path, blob_store: LocalBlobStore, replace: bool = False) -> Dict[int, str]:
    validator = AudioProcessor(settings.supported_document_formats, settings.max_document_size_bytes, kind="document")
    uploaded = {}
    for path in sorted(directory.glob("*.pdf")):
        match = TEAM_PREFIX.match(path.name)
        if not match:
            logger.warning(f"Skipping {path.name}: filename does not start with a team number")
            continue

        data = path.read_bytes()
        content_type = validator.validate(data, "application/pdf", path.name)
        blob = await blob_store.put(f"documents/{path.name}", data, content_type, overwrite=replace)
        uploaded[int(match.group(1))] = blob.url
        logger.info(f"Uploaded {path.name} -> {blob.url}")
    return uploaded


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Upload reference PDFs to the blob store")
    parser.add_argument("directory", type=Path, help="Directory containing the team PDFs")
    parser.add_argument("--replace", action="store_true", help="Overwrite documents that were already published")
    args = parser.parse_args(argv)

    # stdout carries the JSON mapping
    setup_logging(stream=sys.stderr)
    if not args.directory.is_dir():
        logger.error(f"Not a directory: {args.directory}")
        return 1

    blob_store = LocalBlobStore(settings.blob_storage_dir, settings.blob_public_base_url)
    try:
        uploaded = asyncio.run(upload_documents(args.directory, blob_store, replace=args.replace))
    except OncoVoiceError as e:
        logger.error(f"Upload failed: {e.message}")
        return 1

    print(json.dumps({str(team_id): url for team_id, url in sorted(uploaded.items())}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
