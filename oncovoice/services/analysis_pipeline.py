"""
Analysis orchestration.

`AnalysisWorker.submit` validates the request, writes the "processing"
record and hands an `AnalysisJob` to the `AnalysisWorker`; the caller gets
its answer before any model call is made. The worker runs the remaining
steps (document, model, narration, final write) and acknowledges every job
through a completion callback.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from oncovoice.core.exceptions import DocumentNotFoundError
from oncovoice.core.logging import get_logger, audit_logger, bind_request_context, clear_request_context
from oncovoice.models.responses import ResultStatus, TeamResult
from oncovoice.services.document_service import DocumentService
from oncovoice.services.llm_service import LLMService
from oncovoice.services.result_store import ResultStore
from oncovoice.services.tts_service import NarrationService
from oncovoice.teams import EventConfig, Team

logger = get_logger(__name__)

SHUTDOWN_ERROR = "Service shut down before analysis completed"


@dataclass
class AnalysisJob:
    submission_id: str
    team: Team
    transcript: str
    document_url: str
    record: TeamResult
    request_id: Optional[str] = None
    enqueued_at: float = field(default_factory=time.monotonic)


CompletionCallback = Callable[[AnalysisJob, TeamResult], Awaitable[None]]


class AnalysisPipeline:
    """Runs one team's analysis from the accepted request to the final record."""

    def __init__(
        self,
        event_config: EventConfig,
        result_store: ResultStore,
        document_service: DocumentService,
        llm_service: LLMService,
        narration_service: Optional[NarrationService] = None,
        enable_narration: bool = True,
    ):
        self.event_config = event_config
        self.result_store = result_store
        self.document_service = document_service
        self.llm_service = llm_service
        self.narration_service = narration_service
        self.enable_narration = enable_narration and narration_service is not None

    async def prepare(
        self,
        team_id: int,
        transcript: str,
        audio_url: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AnalysisJob:
        """
        Resolves the team's document and writes the "processing" record.
        Raises before touching the store when the team, its document mapping
        or the mapped document itself is missing.
        """
        team = self.event_config.get_team(team_id)
        document_url = self.event_config.document_url_for_team(team_id)
        if not await self.document_service.exists(document_url):
            raise DocumentNotFoundError(
                f"Reference document for team {team_id} is not available",
                details={"team_id": team_id, "document_url": document_url},
            )

        submission_id = uuid.uuid4().hex
        record = TeamResult(
            team_id=team.id,
            team_name=team.name,
            transcript=transcript,
            audio_url=audio_url,
            document_url=document_url,
            status=ResultStatus.PROCESSING,
            submission_id=submission_id,
        )
        await self.result_store.set(team.id, record)
        audit_logger.log_pipeline_transition(
            request_id=request_id,
            team_id=team.id,
            submission_id=submission_id,
            status=ResultStatus.PROCESSING.value,
        )
        return AnalysisJob(
            submission_id=submission_id,
            team=team,
            transcript=transcript,
            document_url=document_url,
            record=record,
            request_id=request_id,
        )

    async def run(self, job: AnalysisJob) -> TeamResult:
        """Document, model, optional narration, then the final write."""
        team_id = job.team.id
        try:
            document_text = await self.document_service.extract_text(job.document_url)
            analysis = await self.llm_service.analyze(job.transcript, document_text, request_id=job.request_id)
        except Exception as e:
            logger.error(f"[{job.request_id}] Analysis failed for team {team_id}: {e}", exc_info=True)
            audit_logger.log_error(
                request_id=job.request_id,
                error_type=type(e).__name__,
                error_message=str(e),
                team_id=team_id,
                submission_id=job.submission_id,
            )
            return await self._finish(job, ResultStatus.FAILED, error=str(e) or type(e).__name__)

        narration_url = await self._narrate(job, analysis.criticism)
        return await self._finish(
            job,
            ResultStatus.COMPLETED,
            summary=analysis.summary,
            conclusion=analysis.conclusion,
            criticism=analysis.criticism,
            narration_url=narration_url,
        )

    async def abandon(self, job: AnalysisJob, reason: str = SHUTDOWN_ERROR) -> TeamResult:
        """Marks a job the worker could not finish as failed."""
        logger.warning(f"Abandoning analysis for team {job.team.id} ({job.submission_id}): {reason}")
        return await self._finish(job, ResultStatus.FAILED, error=reason)

    async def _narrate(self, job: AnalysisJob, text: str) -> Optional[str]:
        if not self.enable_narration:
            return None
        try:
            return await self.narration_service.narrate(job.team.id, text, request_id=job.request_id)
        except Exception as e:
            # Narration is optional; the analysis still completes without audio
            logger.warning(f"[{job.request_id}] Narration failed for team {job.team.id}: {e}")
            return None

    async def _finish(self, job: AnalysisJob, status: ResultStatus, **fields) -> TeamResult:
        record = job.record.model_copy(
            update={
                "status": status,
                "completed_at": datetime.now(timezone.utc).isoformat(),
                **fields,
            }
        )
        await self.result_store.set(job.team.id, record)
        audit_logger.log_pipeline_transition(
            request_id=job.request_id,
            team_id=job.team.id,
            submission_id=job.submission_id,
            status=status.value,
            duration_ms=int((time.monotonic() - job.enqueued_at) * 1000),
            error=fields.get("error"),
        )
        return record


class AnalysisWorker:
    """
    Queue of accepted analysis jobs consumed by a fixed pool of tasks.

    `stop()` drains the queue for up to `shutdown_timeout` seconds; whatever
    is still queued or running afterwards is cancelled and recorded as failed.
    """

    def __init__(
        self,
        pipeline: AnalysisPipeline,
        concurrency: int = 2,
        shutdown_timeout: float = 30.0,
        on_complete: Optional[CompletionCallback] = None,
    ):
        self.pipeline = pipeline
        self.concurrency = max(1, concurrency)
        self.shutdown_timeout = shutdown_timeout
        self.on_complete = on_complete
        self._queue: "asyncio.Queue[AnalysisJob]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._in_flight: Dict[str, AnalysisJob] = {}
        self._accepting = False

    @property
    def running(self) -> bool:
        return bool(self._tasks) and self._accepting

    @property
    def pending(self) -> int:
        return self._queue.qsize() + len(self._in_flight)

    async def start(self) -> None:
        if self._tasks:
            return
        self._accepting = True
        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"analysis-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Analysis worker started with {self.concurrency} tasks")

    async def submit(
        self,
        team_id: int,
        transcript: str,
        audio_url: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AnalysisJob:
        """Writes the "processing" record and queues the job."""
        if not self._accepting:
            raise RuntimeError("Analysis worker is not running")
        job = await self.pipeline.prepare(team_id, transcript, audio_url=audio_url, request_id=request_id)
        self._queue.put_nowait(job)
        logger.info(f"[{request_id}] Queued analysis for team {team_id} ({job.submission_id}), pending: {self.pending}")
        return job

    async def join(self) -> None:
        """Waits until every queued job has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._accepting = False
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Analysis worker drain timed out with {self.pending} jobs outstanding")

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        leftovers = list(self._in_flight.values())
        self._in_flight.clear()
        while not self._queue.empty():
            leftovers.append(self._queue.get_nowait())
            self._queue.task_done()
        for job in leftovers:
            try:
                record = await self.pipeline.abandon(job)
            except Exception as e:
                logger.error(f"Could not record job {job.submission_id} as failed: {e}", exc_info=True)
                continue
            await self._acknowledge(job, record)
        logger.info("Analysis worker stopped")

    async def _consume(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            clear_request_context()
            bind_request_context(request_id=job.request_id, team_id=job.team.id, submission_id=job.submission_id)
            self._in_flight[job.submission_id] = job
            try:
                record = await self.pipeline.run(job)
            except asyncio.CancelledError:
                # Left in _in_flight so stop() records it as failed
                self._queue.task_done()
                raise
            except Exception as e:
                # The result store itself failed; nothing more can be recorded
                logger.error(f"Worker {index} could not finish job {job.submission_id}: {e}", exc_info=True)
                self._in_flight.pop(job.submission_id, None)
                self._queue.task_done()
                continue

            self._in_flight.pop(job.submission_id, None)
            await self._acknowledge(job, record)
            self._queue.task_done()

    async def _acknowledge(self, job: AnalysisJob, record: TeamResult) -> None:
        if self.on_complete is None:
            return
        try:
            await self.on_complete(job, record)
        except Exception as e:
            logger.error(f"Completion callback failed for job {job.submission_id}: {e}", exc_info=True)
