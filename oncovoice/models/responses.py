"""
Pydantic Models for API Responses and stored records
"""

from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, field_validator


class ResultStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    EXTRACTING_DOCUMENT = "extracting_document"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AnalysisResult(BaseModel):
    """Structured analysis of a clinical discussion against its reference document"""
    summary: str = Field(description="Two to three paragraphs summarizing the main points discussed in the recording")
    conclusion: str = Field(description="One to two paragraphs with the key takeaways and conclusions of the discussion")
    criticism: str = Field(
        description=(
            "Two to three paragraphs critically comparing the discussion with the scientific source: "
            "alignment, contradictions with evidence-based practice, missing critical information, "
            "strengths and areas for improvement"
        )
    )

    @field_validator("summary", "conclusion", "criticism")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class TeamResult(BaseModel):
    """Stored outcome (or in-progress marker) of one team's analysis run"""
    team_id: int
    team_name: str
    transcript: str = ""
    summary: str = ""
    conclusion: str = ""
    criticism: str = ""
    narration_url: Optional[str] = None
    audio_url: Optional[str] = None
    document_url: Optional[str] = None
    status: ResultStatus = ResultStatus.IDLE
    error: Optional[str] = None
    submission_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None


class UploadResponse(BaseModel):
    success: bool = True
    audio_url: str
    pathname: str
    content_type: str
    size: int
    filename: Optional[str] = None


class BlobUploadResponse(BaseModel):
    success: bool = True
    url: str
    pathname: str
    content_type: str
    size: int


class UploadTokenResponse(BaseModel):
    success: bool = True
    pathname: str
    token: str
    upload_url: str
    expires_at: datetime


class TranscribeResponse(BaseModel):
    success: bool = True
    transcript: str


class AnalyzeResponse(BaseModel):
    """Immediate acknowledgment; completion is observable via the results endpoint"""
    success: bool = True
    status: ResultStatus = ResultStatus.PROCESSING
    team_id: int
    submission_id: str


class ResultsResponse(BaseModel):
    success: bool = True
    results: Dict[str, Optional[TeamResult]]


class TeamResultResponse(BaseModel):
    success: bool = True
    result: Optional[TeamResult] = None


class TeamInfo(BaseModel):
    id: int
    name: str
    topic_name: str
    session_id: int
    color: str
    has_document: bool


class TeamsResponse(BaseModel):
    success: bool = True
    teams: List[TeamInfo]


class SessionInfo(BaseModel):
    id: int
    name: str
    teams: List[int]


class SessionsResponse(BaseModel):
    success: bool = True
    sessions: List[SessionInfo]


class ClientConfigResponse(BaseModel):
    """Settings the dashboard and upload page need"""
    app_name: str
    refresh_interval_seconds: int
    fast_refresh_interval_seconds: int
    max_audio_size_mb: int
    supported_audio_formats: List[str]


class HealthCheckResponse(BaseModel):
    """Health Check Response"""
    status: str = Field(description="Service Status (healthy/unhealthy)")
    timestamp: datetime = Field(description="Check time")
    version: str = Field(description="Service version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    details: Optional[Dict[str, Any]] = Field(default=None)


class ErrorResponse(BaseModel):
    """Standardized error response"""
    success: bool = False
    error: str = Field(description="Error type")
    message: str = Field(description="Error description")
    details: Optional[Dict[str, Any]] = Field(default=None)
    request_id: Optional[str] = Field(default=None)
    timestamp: datetime


class RateLimitResponse(BaseModel):
    """Rate Limit Exceeded Response"""
    success: bool = False
    error: str = Field(default="rate_limit_exceeded")
    message: str
    limit: int
    window: int
    timestamp: datetime
