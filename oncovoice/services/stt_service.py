"""
Speech-to-Text Service
Uses the OpenAI transcription endpoint with a fixed language hint.
"""

import os
import time
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

from openai import AsyncOpenAI, OpenAIError

from oncovoice.config import settings
from oncovoice.core.exceptions import (
    AudioNotFoundError,
    BlobNotFoundError,
    StorageError,
    TranscriptionError,
)
from oncovoice.core.logging import get_logger, audit_logger
from oncovoice.services.blob_store import LocalBlobStore

logger = get_logger(__name__)


def resolve_audio_file_info(audio_url: str, content_type: Optional[str], filename: Optional[str]) -> Tuple[str, str]:
    """Derives the upload filename and MIME type from the hints or the URL."""
    url_name = os.path.basename(unquote(urlparse(audio_url).path))
    ext = None
    for candidate in (filename, url_name):
        if candidate and "." in candidate:
            ext = candidate.rsplit(".", 1)[1].lower()
            break
    ext = ext or "mp3"

    mime_type = content_type or f"audio/{'mp4' if ext == 'm4a' else ext}"
    final_name = filename or url_name or f"audio.{ext}"
    if "." not in final_name:
        final_name = f"{final_name}.{ext}"
    return final_name, mime_type


class STTService:
    """Service for Speech-to-Text transcription."""

    def __init__(self, blob_store: LocalBlobStore, client: AsyncOpenAI = None):
        self.blob_store = blob_store
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = settings.stt_model
        self.language = settings.transcription_language

    async def transcribe(
        self,
        audio_url: str,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
        request_id: str = None
    ) -> str:
        """
        Fetches the stored recording and returns its transcript text.
        No retry is attempted; failures surface as typed errors.
        """
        try:
            audio_data = await self.blob_store.fetch(audio_url)
        except BlobNotFoundError as e:
            raise AudioNotFoundError(f"Audio file not found: {e.message}", details={"audio_url": audio_url})
        except StorageError as e:
            raise TranscriptionError(f"Failed to fetch audio: {e.message}", details={"audio_url": audio_url})

        final_name, mime_type = resolve_audio_file_info(audio_url, content_type, filename)
        logger.info(f"Transcribing {final_name} ({mime_type}, {len(audio_data)} bytes) with {self.model}")

        start = time.monotonic()
        try:
            transcription = await self.client.audio.transcriptions.create(
                file=(final_name, audio_data, mime_type),
                model=self.model,
                language=self.language,
            )
        except OpenAIError as e:
            audit_logger.log_external_api_call(
                request_id=request_id,
                service="openai",
                endpoint="audio.transcriptions",
                success=False,
                response_time_ms=int((time.monotonic() - start) * 1000),
            )
            logger.error(f"Transcription failed: {e}", exc_info=True)
            raise TranscriptionError(f"OpenAI API error: {e}", details={"audio_url": audio_url})

        audit_logger.log_external_api_call(
            request_id=request_id,
            service="openai",
            endpoint="audio.transcriptions",
            success=True,
            response_time_ms=int((time.monotonic() - start) * 1000),
            model=self.model,
        )

        text = (transcription.text or "").strip()
        logger.info(f"Transcription successful: {len(text)} characters")
        return text
