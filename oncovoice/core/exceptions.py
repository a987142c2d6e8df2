"""
Exception taxonomy for the OncoVoice Engine.
Every error carries the HTTP status it is reported with.
"""

from typing import Any, Dict, Optional


class OncoVoiceError(Exception):
    """Base exception for the OncoVoice Engine."""

    status_code = 500
    default_error_code = "internal_error"

    def __init__(self, message: str, error_code: str = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}


# --- Client input errors ---

class ValidationError(OncoVoiceError):
    """Missing or invalid request fields."""

    status_code = 400
    default_error_code = "validation_error"

    def __init__(self, message: str, field: str = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class UnsupportedMediaTypeError(OncoVoiceError):
    status_code = 415
    default_error_code = "unsupported_media_type"


class PayloadTooLargeError(OncoVoiceError):
    status_code = 413
    default_error_code = "payload_too_large"


class UploadTokenError(OncoVoiceError):
    status_code = 401
    default_error_code = "invalid_upload_token"


# --- Upstream-not-found errors ---

class TeamNotFoundError(OncoVoiceError):
    status_code = 404
    default_error_code = "team_not_found"

    def __init__(self, team_id: int):
        super().__init__(f"Team {team_id} not found", details={"team_id": team_id})
        self.team_id = team_id


class DocumentNotFoundError(OncoVoiceError):
    status_code = 404
    default_error_code = "document_not_found"


class AudioNotFoundError(OncoVoiceError):
    status_code = 404
    default_error_code = "audio_not_found"


# --- Provider / integration errors ---

class StorageError(OncoVoiceError):
    default_error_code = "storage_error"


class BlobNotFoundError(StorageError):
    status_code = 404
    default_error_code = "blob_not_found"


class BlobExistsError(StorageError):
    """Blobs are write-once; a pathname can only be stored once."""

    status_code = 409
    default_error_code = "blob_exists"


class TranscriptionError(OncoVoiceError):
    default_error_code = "transcription_error"


class DocumentProcessingError(OncoVoiceError):
    default_error_code = "document_processing_error"


class AnalysisError(OncoVoiceError):
    default_error_code = "analysis_error"


class NarrationError(OncoVoiceError):
    default_error_code = "narration_error"
