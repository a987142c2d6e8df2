"""
Narration Service
Synthesizes spoken audio of the criticism text and stores the clip.
"""

import time

from openai import AsyncOpenAI, OpenAIError

from oncovoice.config import settings
from oncovoice.core.exceptions import NarrationError, StorageError
from oncovoice.core.logging import get_logger, audit_logger
from oncovoice.services.blob_store import LocalBlobStore, timestamp_ms, unique_suffix

logger = get_logger(__name__)

# Upper bound of the speech endpoint's input
MAX_NARRATION_CHARS = 4096


class NarrationService:
    """Text-to-speech for analysis critiques."""

    def __init__(self, blob_store: LocalBlobStore, client: AsyncOpenAI = None):
        self.blob_store = blob_store
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = settings.tts_model
        self.voice = settings.tts_voice

    async def synthesize(self, text: str, request_id: str = None) -> bytes:
        if not text.strip():
            raise NarrationError("Nothing to narrate")
        if len(text) > MAX_NARRATION_CHARS:
            logger.warning(f"Narration text truncated from {len(text)} to {MAX_NARRATION_CHARS} characters")
            text = text[:MAX_NARRATION_CHARS]

        start = time.monotonic()
        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=self.voice,
                input=text,
                response_format="mp3",
            )
        except OpenAIError as e:
            audit_logger.log_external_api_call(
                request_id=request_id,
                service="openai",
                endpoint="audio.speech",
                success=False,
                response_time_ms=int((time.monotonic() - start) * 1000),
            )
            raise NarrationError(f"OpenAI API error: {e}")

        audit_logger.log_external_api_call(
            request_id=request_id,
            service="openai",
            endpoint="audio.speech",
            success=True,
            response_time_ms=int((time.monotonic() - start) * 1000),
            model=self.model,
        )
        return response.content

    async def narrate(self, team_id: int, text: str, request_id: str = None) -> str:
        """Synthesizes `text` and returns the URL of the stored clip."""
        audio = await self.synthesize(text, request_id=request_id)
        pathname = f"narration/team-{team_id}-criticism-{timestamp_ms()}-{unique_suffix()}.mp3"
        try:
            blob = await self.blob_store.put(pathname, audio, "audio/mpeg")
        except StorageError as e:
            raise NarrationError(f"Failed to store narration: {e.message}")
        logger.info(f"Narration stored for team {team_id}: {blob.url}")
        return blob.url
