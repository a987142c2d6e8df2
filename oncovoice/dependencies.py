"""
Service container built at startup and injected into request handlers
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from oncovoice.config import Settings
from oncovoice.core.logging import get_logger
from oncovoice.services.analysis_pipeline import AnalysisJob, AnalysisPipeline, AnalysisWorker
from oncovoice.services.audio_processor import AudioProcessor
from oncovoice.services.blob_store import LocalBlobStore
from oncovoice.services.document_service import DocumentService
from oncovoice.services.llm_service import LLMService
from oncovoice.services.result_store import ResultStore, create_result_store
from oncovoice.services.stt_service import STTService
from oncovoice.services.tts_service import NarrationService
from oncovoice.teams import EventConfig, load_event_config
from oncovoice.models.responses import TeamResult

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    event_config: EventConfig
    blob_store: LocalBlobStore
    result_store: ResultStore
    audio_processor: AudioProcessor
    document_processor: AudioProcessor
    stt_service: STTService
    worker: AnalysisWorker

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        event_config: Optional[EventConfig] = None,
        blob_store: Optional[LocalBlobStore] = None,
        result_store: Optional[ResultStore] = None,
        stt_service: Optional[STTService] = None,
        document_service: Optional[DocumentService] = None,
        llm_service: Optional[LLMService] = None,
        narration_service: Optional[NarrationService] = None,
        on_complete=None,
    ) -> "ServiceContainer":
        """Wires the services; any of them can be supplied pre-built."""
        blob_store = blob_store or LocalBlobStore(settings.blob_storage_dir, settings.blob_public_base_url)
        event_config = event_config or load_event_config(
            settings.teams_config_path, document_base_url=blob_store.public_base_url
        )
        result_store = result_store or create_result_store(settings.redis_url, settings.redis_key_prefix)

        if narration_service is None and settings.enable_narration:
            narration_service = NarrationService(blob_store)

        pipeline = AnalysisPipeline(
            event_config=event_config,
            result_store=result_store,
            document_service=document_service or DocumentService(blob_store),
            llm_service=llm_service or LLMService(),
            narration_service=narration_service,
            enable_narration=settings.enable_narration,
        )
        worker = AnalysisWorker(
            pipeline,
            concurrency=settings.worker_concurrency,
            shutdown_timeout=settings.worker_shutdown_timeout,
            on_complete=on_complete or log_completion,
        )
        return cls(
            settings=settings,
            event_config=event_config,
            blob_store=blob_store,
            result_store=result_store,
            audio_processor=AudioProcessor(settings.supported_audio_formats, settings.max_audio_size_bytes),
            document_processor=AudioProcessor(
                settings.supported_document_formats, settings.max_document_size_bytes, kind="document"
            ),
            stt_service=stt_service or STTService(blob_store),
            worker=worker,
        )

    async def start(self) -> None:
        await self.worker.start()

    async def shutdown(self) -> None:
        try:
            await self.worker.stop()
        finally:
            await self.result_store.close()


async def log_completion(job: AnalysisJob, record: TeamResult) -> None:
    logger.info(
        f"[{job.request_id}] Analysis for team {record.team_id} finished with status {record.status.value}"
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
