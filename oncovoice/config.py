"""
Central configuration for the OncoVoice Engine service
"""

from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from enum import Enum


PACKAGE_DIR = Path(__file__).resolve().parent


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class STTModel(str, Enum):
    WHISPER_1 = "whisper-1"
    GPT_4O_MINI_TRANSCRIBE = "gpt-4o-mini-transcribe"
    GPT_4O_TRANSCRIBE = "gpt-4o-transcribe"


class ModelName(str, Enum):
    GPT_4_TURBO_PREVIEW = "gpt-4-turbo-preview"
    GPT_4O = "gpt-4o"
    GPT_4O_MINI = "gpt-4o-mini"
    GPT_4_1 = "gpt-4.1"


class TTSVoice(str, Enum):
    ALLOY = "alloy"
    ECHO = "echo"
    FABLE = "fable"
    ONYX = "onyx"
    NOVA = "nova"
    SHIMMER = "shimmer"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Environment
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # API Configuration
    api_title: str = Field(default="OncoVoice Engine API")
    api_description: str = Field(default="Clinical discussion transcription and analysis service")
    api_version: str = Field(default="1.0.0")
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3001)
    api_secret_key: str = Field(...)

    # External Service APIs
    openai_api_key: str = Field(...)

    # STT Configuration
    stt_model: str = Field(default=STTModel.WHISPER_1.value)
    # Discussions are mixed Arabic/English; the hint is fixed per deployment
    transcription_language: str = Field(default="ar")

    # LLM Configuration
    llm_model: str = Field(default=ModelName.GPT_4O.value)
    llm_temperature: float = Field(default=0.7)
    llm_max_tokens: int = Field(default=2000)

    # Narration (text-to-speech)
    enable_narration: bool = Field(default=True)
    tts_model: str = Field(default="tts-1")
    tts_voice: str = Field(default=TTSVoice.NOVA.value)

    # Result store
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="")

    # Blob storage
    blob_storage_dir: str = Field(default="./storage/blobs")
    blob_public_base_url: str = Field(default="http://localhost:3001/blobs")

    # Event configuration (teams, sessions, reference documents)
    teams_config_path: str = Field(default=str(PACKAGE_DIR / "teams.json"))

    # Upload Limits
    max_audio_size_mb: int = Field(default=25)  # Whisper upload ceiling
    max_document_size_mb: int = Field(default=10)
    supported_audio_formats: List[str] = Field(
        default=["audio/mpeg", "audio/mp3", "audio/mp4", "audio/x-m4a", "audio/m4a", "audio/wav", "audio/webm"]
    )
    supported_document_formats: List[str] = Field(default=["application/pdf"])
    upload_token_expire_minutes: int = Field(default=15)
    token_algorithm: str = Field(default="HS256")

    # Analysis worker
    worker_concurrency: int = Field(default=2)
    worker_shutdown_timeout: float = Field(default=30.0)  # seconds

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_requests: int = Field(default=20)
    rate_limit_window: int = Field(default=60)  # seconds

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:3001",
        ]
    )
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: List[str] = Field(default=["GET", "POST", "PUT"])
    cors_allow_headers: List[str] = Field(default=["*"])

    # Dashboard
    enable_dashboard: bool = Field(default=True)
    dashboard_refresh_interval: int = Field(default=30)  # seconds
    dashboard_fast_refresh_interval: int = Field(default=3)  # seconds, while a record is processing

    # Monitoring
    enable_metrics: bool = Field(default=True)

    @property
    def max_audio_size_bytes(self) -> int:
        return self.max_audio_size_mb * 1024 * 1024

    @property
    def max_document_size_bytes(self) -> int:
        return self.max_document_size_mb * 1024 * 1024


# Global settings instance
settings = Settings()
