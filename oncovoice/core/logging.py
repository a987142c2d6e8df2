"""
Strukturiertes Logging Setup für OncoVoice Engine
"""

import logging
from datetime import datetime, timezone
from typing import Optional, TextIO

import structlog

from oncovoice.config import settings, Environment


def setup_logging(stream: Optional[TextIO] = None):
    """
    Konfiguriert strukturiertes Logging.
    Log-Zeilen gehen nach stdout, sofern kein anderer Stream übergeben wird.
    """
    processors = [
        # request_id/team_id aus bind_request_context()
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.environment == Environment.DEVELOPMENT:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream is None))
    else:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(stream),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    """Erstellt einen konfigurierten Logger"""
    return structlog.get_logger(name or __name__)


def bind_request_context(**values):
    """Hängt Kontext (z.B. request_id) an alle Log-Einträge der aktuellen Task"""
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v is not None})


def clear_request_context():
    structlog.contextvars.clear_contextvars()


class AuditLogger:
    """Audit-Events: API-Aufrufe, Uploads, Provider-Calls, Statuswechsel"""

    def __init__(self):
        self.logger = get_logger("audit")

    def _emit(self, event: str, level: str = "info", **fields):
        fields["timestamp"] = datetime.now(timezone.utc).isoformat()
        getattr(self.logger, level)(event, **fields)

    def log_api_request(
        self,
        request_id: str,
        endpoint: str,
        method: str,
        status_code: int,
        duration_ms: int,
        user_agent: str = None,
        ip_address: str = None,
        **kwargs
    ):
        level = "warning" if status_code >= 500 else "info"
        self._emit(
            "api_request",
            level,
            request_id=request_id,
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            duration_ms=duration_ms,
            user_agent=user_agent,
            ip_address=ip_address,
            **kwargs
        )

    def log_audio_processing(
        self,
        request_id: str,
        team_id: int,
        audio_size_bytes: int,
        content_type: str,
        audio_duration: Optional[float] = None,
        **kwargs
    ):
        """Eingegangene Aufnahme mit den von mutagen gelesenen Metadaten"""
        self._emit(
            "audio_upload",
            request_id=request_id,
            team_id=team_id,
            size_bytes=audio_size_bytes,
            content_type=content_type,
            duration_seconds=audio_duration,
            **kwargs
        )

    def log_external_api_call(
        self,
        request_id: str,
        service: str,
        endpoint: str,
        success: bool,
        response_time_ms: int,
        **kwargs
    ):
        self._emit(
            "external_api_call",
            "info" if success else "warning",
            request_id=request_id,
            service=service,
            endpoint=endpoint,
            success=success,
            response_time_ms=response_time_ms,
            **kwargs
        )

    def log_pipeline_transition(self, request_id: str, team_id: int, submission_id: str, status: str, **kwargs):
        """Statuswechsel eines Analyse-Laufs (processing -> completed/failed)"""
        self._emit(
            "analysis_status",
            request_id=request_id,
            team_id=team_id,
            submission_id=submission_id,
            status=status,
            **{k: v for k, v in kwargs.items() if v is not None}
        )

    def log_error(self, request_id: str, error_type: str, error_message: str, stack_trace: str = None, **kwargs):
        self._emit(
            "error_event",
            "error",
            request_id=request_id,
            error_type=error_type,
            error_message=error_message,
            stack_trace=stack_trace,
            **kwargs
        )


# Global audit logger instance
audit_logger = AuditLogger()
