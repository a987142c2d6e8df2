"""
Audio upload validation
"""

import io
import os
from typing import Optional, Dict, Any
from mutagen import File as MutagenFile
from oncovoice.config import settings
from oncovoice.core.exceptions import (
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from oncovoice.core.logging import get_logger

logger = get_logger(__name__)

GENERIC_CONTENT_TYPES = {None, "", "application/octet-stream", "binary/octet-stream"}

EXTENSION_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".pdf": "application/pdf",
}

CONTENT_TYPE_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/m4a": "m4a",
    "audio/wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "application/pdf": "pdf",
}


class AudioProcessor:
    """Validates uploaded recordings (or, with kind="document", PDFs) before they are stored."""

    def __init__(self, supported_formats=None, max_size_bytes: int = None, kind: str = "audio"):
        self.supported_formats = list(supported_formats or settings.supported_audio_formats)
        self.max_size_bytes = max_size_bytes or settings.max_audio_size_bytes
        self.kind = kind

    def validate(self, audio_data: bytes, content_type: Optional[str], filename: Optional[str]) -> str:
        """
        Checks an upload against the allow-list and the size ceiling.
        Returns the effective content type (sniffed when the browser sent a
        generic one).
        """
        if not audio_data:
            raise ValidationError(f"No {self.kind} data received.", field=self.kind)

        if content_type:
            content_type = content_type.split(";", 1)[0].strip().lower()
        if content_type in GENERIC_CONTENT_TYPES:
            content_type = self.detect_content_type(audio_data, filename)

        if content_type not in self.supported_formats:
            logger.warning(f"Unsupported {self.kind} format: {content_type}. Supported: {self.supported_formats}")
            raise UnsupportedMediaTypeError(
                f"Unsupported {self.kind} format: {content_type}. Please use one of {self.supported_formats}",
                details={"content_type": content_type},
            )

        if len(audio_data) > self.max_size_bytes:
            max_mb = self.max_size_bytes // (1024 * 1024)
            raise PayloadTooLargeError(
                f"{self.kind.capitalize()} file exceeds {max_mb}MB. Please use a smaller file.",
                details={"size": len(audio_data), "max_size": self.max_size_bytes},
            )

        return content_type

    @staticmethod
    def extension_for(content_type: str, filename: Optional[str] = None) -> str:
        """File extension used for stored blobs."""
        if filename:
            _, ext = os.path.splitext(filename)
            if ext:
                return ext.lstrip(".").lower()
        return CONTENT_TYPE_EXTENSIONS.get(content_type, "bin")

    @staticmethod
    def detect_content_type(audio_data: bytes, filename: Optional[str] = None) -> str:
        """Detects Content-Type based on file signature or filename."""
        # MP4/M4A carries 'ftyp' a few bytes in
        if b'ftyp' in audio_data[4:12]:
            return "audio/mp4"

        signatures = {
            b'ID3': "audio/mpeg",      # MP3 with ID3 Tag
            b'\xff\xfb': "audio/mpeg",  # MP3 frame
            b'\xff\xf3': "audio/mpeg",  # MP3 frame
            b'\xff\xf2': "audio/mpeg",  # MP3 frame
            b'RIFF': "audio/wav",
            b'OggS': "audio/ogg",
            b'\x1a\x45\xdf\xa3': "audio/webm",  # EBML header
            b'%PDF': "application/pdf",
        }
        for signature, detected_type in signatures.items():
            if audio_data.startswith(signature):
                logger.info(f"Detected content type: {detected_type} (signature)")
                return detected_type

        if filename:
            _, ext = os.path.splitext(filename)
            if ext.lower() in EXTENSION_CONTENT_TYPES:
                logger.info(f"Guessed content type from filename: {EXTENSION_CONTENT_TYPES[ext.lower()]}")
                return EXTENSION_CONTENT_TYPES[ext.lower()]

        logger.warning("Could not detect specific audio type. Falling back to 'application/octet-stream'.")
        return "application/octet-stream"

    @staticmethod
    def extract_metadata(audio_data: bytes) -> Dict[str, Any]:
        """Extracts duration and stream info with mutagen; empty when unreadable."""
        try:
            audio = MutagenFile(io.BytesIO(audio_data))
        except Exception as e:
            logger.warning(f"Could not extract metadata using mutagen: {e}")
            return {}
        if audio is None or audio.info is None:
            return {}
        return {
            "duration_seconds": float(getattr(audio.info, "length", 0.0) or 0.0),
            "bitrate": getattr(audio.info, "bitrate", None),
            "sample_rate": getattr(audio.info, "sample_rate", None),
            "channels": getattr(audio.info, "channels", None),
        }
