"""
Pydantic Models for API Requests
"""

from typing import Optional
from pydantic import BaseModel, Field


class TranscribeRequest(BaseModel):
    """Request Model for transcribing a stored recording"""
    audio_url: str = Field(min_length=1, description="URL returned by the upload endpoint")
    content_type: Optional[str] = Field(default=None, description="MIME type hint for the recording")
    filename: Optional[str] = Field(default=None, description="Filename hint for the recording")


class AnalyzeRequest(BaseModel):
    """Request Model for starting a team's analysis"""
    team_id: int = Field(description="Team identifier")
    transcript: str = Field(min_length=1, description="Transcript of the discussion")
    audio_url: Optional[str] = Field(default=None, description="Uploaded recording, kept on the result record")


class UploadTokenRequest(BaseModel):
    """Request Model for a direct browser-to-storage upload"""
    filename: str = Field(min_length=1, description="Original filename of the upload")
    team_id: int = Field(description="Team identifier")
