"""Tests for the analysis pipeline and its background worker."""

import asyncio

import pytest

from oncovoice.config import settings
from oncovoice.core.exceptions import (
    AnalysisError, DocumentNotFoundError, NarrationError, StorageError, TeamNotFoundError,
)
from oncovoice.dependencies import ServiceContainer
from oncovoice.models.responses import ResultStatus
from oncovoice.services.analysis_pipeline import SHUTDOWN_ERROR, AnalysisPipeline, AnalysisWorker
from oncovoice.services.result_store import InMemoryResultStore

from conftest import TEAM_1_DOCUMENT, TEAM_2_DOCUMENT, FakeLLMService, FakeNarrationService, wait_until


class FlakyResultStore(InMemoryResultStore):
    """In-memory store whose writes can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.failed_writes = []
        self.closed = False

    async def set(self, team_id, record):
        if self.fail_writes:
            self.failed_writes.append(team_id)
            raise StorageError("Result store unavailable")
        await super().set(team_id, record)

    async def close(self):
        self.closed = True


@pytest.fixture
def pipeline(event_config, result_store, document_service, llm_service, narration_service):
    return AnalysisPipeline(
        event_config=event_config,
        result_store=result_store,
        document_service=document_service,
        llm_service=llm_service,
        narration_service=narration_service,
    )


@pytest.fixture
async def worker(pipeline):
    completed = []

    async def on_complete(job, record):
        completed.append((job.submission_id, record.status))

    worker = AnalysisWorker(pipeline, concurrency=2, shutdown_timeout=1.0, on_complete=on_complete)
    worker.completed = completed
    await worker.start()
    yield worker
    await worker.stop()


class TestAnalysisPipeline:
    async def test_prepare_writes_processing_record(self, pipeline, result_store):
        job = await pipeline.prepare(1, "transcript", audio_url="http://test/blobs/a.webm")

        record = await result_store.get(1)
        assert record.status == ResultStatus.PROCESSING
        assert record.transcript == "transcript"
        assert record.audio_url == "http://test/blobs/a.webm"
        assert record.document_url == TEAM_1_DOCUMENT
        assert record.submission_id == job.submission_id

    async def test_prepare_without_document_writes_nothing(self, pipeline, result_store, llm_service):
        with pytest.raises(DocumentNotFoundError):
            await pipeline.prepare(3, "transcript")

        assert await result_store.get(3) is None
        assert llm_service.calls == []

    async def test_prepare_with_unpublished_document_writes_nothing(
        self, pipeline, result_store, document_service, llm_service
    ):
        document_service.missing.add(TEAM_2_DOCUMENT)

        with pytest.raises(DocumentNotFoundError) as exc_info:
            await pipeline.prepare(2, "transcript")

        assert exc_info.value.details["document_url"] == TEAM_2_DOCUMENT
        assert await result_store.get(2) is None
        assert document_service.calls == []
        assert llm_service.calls == []

    async def test_prepare_unknown_team(self, pipeline, result_store):
        with pytest.raises(TeamNotFoundError):
            await pipeline.prepare(99, "transcript")

    async def test_run_completes_record(self, pipeline, result_store, document_service, narration_service):
        job = await pipeline.prepare(1, "we talked about ILD")

        record = await pipeline.run(job)

        assert record.status == ResultStatus.COMPLETED
        assert record.summary == "Summary of: we talked about ILD"
        assert record.criticism == "Dose modification guidance was missing."
        assert record.narration_url == "http://test/blobs/narration/team-1-criticism-1.mp3"
        assert record.completed_at is not None
        assert document_service.calls == [TEAM_1_DOCUMENT]
        assert narration_service.calls == [(1, "Dose modification guidance was missing.")]
        assert await result_store.get(1) == record

    async def test_narration_failure_still_completes(
        self, event_config, result_store, document_service, llm_service
    ):
        pipeline = AnalysisPipeline(
            event_config,
            result_store,
            document_service,
            llm_service,
            narration_service=FakeNarrationService(error=NarrationError("TTS unavailable")),
        )
        job = await pipeline.prepare(1, "transcript")

        record = await pipeline.run(job)

        assert record.status == ResultStatus.COMPLETED
        assert record.narration_url is None
        assert record.summary

    async def test_narration_disabled(self, event_config, result_store, document_service, llm_service, narration_service):
        pipeline = AnalysisPipeline(
            event_config, result_store, document_service, llm_service,
            narration_service=narration_service, enable_narration=False,
        )
        job = await pipeline.prepare(1, "transcript")

        record = await pipeline.run(job)

        assert record.status == ResultStatus.COMPLETED
        assert record.narration_url is None
        assert narration_service.calls == []

    async def test_model_failure_records_failed(self, event_config, result_store, document_service):
        pipeline = AnalysisPipeline(
            event_config,
            result_store,
            document_service,
            FakeLLMService(error=AnalysisError("Failed to analyze content: boom")),
        )
        job = await pipeline.prepare(1, "transcript")

        record = await pipeline.run(job)

        assert record.status == ResultStatus.FAILED
        assert record.error == "Failed to analyze content: boom"
        assert record.transcript == "transcript"
        assert (await result_store.get(1)).status == ResultStatus.FAILED


class TestAnalysisWorker:
    async def test_submit_returns_before_analysis(self, worker, result_store, llm_service):
        llm_service.gates["slow"] = asyncio.Event()

        job = await worker.submit(1, "slow")

        assert (await result_store.get(1)).status == ResultStatus.PROCESSING
        llm_service.gates["slow"].set()
        await worker.join()
        assert (await result_store.get(1)).status == ResultStatus.COMPLETED
        assert worker.completed == [(job.submission_id, ResultStatus.COMPLETED)]

    async def test_submit_rejected_mapping_is_not_queued(self, worker, result_store):
        with pytest.raises(DocumentNotFoundError):
            await worker.submit(3, "transcript")

        assert worker.pending == 0
        assert await result_store.get(3) is None

    async def test_resubmission_keeps_last_completed_write(self, worker, result_store, llm_service):
        llm_service.gates["first"] = asyncio.Event()

        first = await worker.submit(1, "first")
        second = await worker.submit(1, "second")

        async def second_done():
            record = await result_store.get(1)
            return record.status == ResultStatus.COMPLETED and record.submission_id == second.submission_id

        await wait_until(second_done)

        llm_service.gates["first"].set()
        await worker.join()

        record = await result_store.get(1)
        assert record.submission_id == first.submission_id
        assert record.summary == "Summary of: first"

    async def test_teams_are_processed_independently(self, worker, result_store):
        await worker.submit(1, "one")
        await worker.submit(2, "two")
        await worker.join()

        results = await result_store.list([1, 2, 3])
        assert results["team-1"].summary == "Summary of: one"
        assert results["team-2"].summary == "Summary of: two"
        assert results["team-3"] is None

    async def test_submit_after_stop_is_refused(self, pipeline):
        worker = AnalysisWorker(pipeline)
        await worker.start()
        await worker.stop()

        assert not worker.running
        with pytest.raises(RuntimeError):
            await worker.submit(1, "late")

    async def test_stop_records_unfinished_jobs_as_failed(self, pipeline, result_store, llm_service):
        acknowledged = []

        async def on_complete(job, record):
            acknowledged.append(record.status)

        worker = AnalysisWorker(pipeline, concurrency=1, shutdown_timeout=0.05, on_complete=on_complete)
        await worker.start()
        llm_service.gates["stuck"] = asyncio.Event()
        llm_service.gates["queued"] = asyncio.Event()

        await worker.submit(1, "stuck")
        await worker.submit(2, "queued")
        await worker.stop()

        for team_id in (1, 2):
            record = await result_store.get(team_id)
            assert record.status == ResultStatus.FAILED
            assert record.error == SHUTDOWN_ERROR
        assert acknowledged == [ResultStatus.FAILED, ResultStatus.FAILED]

    async def test_completion_callback_errors_do_not_stop_worker(self, pipeline, result_store):
        async def broken_callback(job, record):
            raise ValueError("callback exploded")

        worker = AnalysisWorker(pipeline, on_complete=broken_callback)
        await worker.start()

        await worker.submit(1, "a")
        await worker.submit(2, "b")
        await worker.join()
        await worker.stop()

        assert (await result_store.get(2)).status == ResultStatus.COMPLETED

    async def test_stop_survives_store_failures_while_abandoning(
        self, event_config, document_service, llm_service
    ):
        store = FlakyResultStore()
        pipeline = AnalysisPipeline(event_config, store, document_service, llm_service)
        acknowledged = []

        async def on_complete(job, record):
            acknowledged.append(job.team.id)

        worker = AnalysisWorker(pipeline, concurrency=1, shutdown_timeout=0.05, on_complete=on_complete)
        await worker.start()
        llm_service.gates["stuck"] = asyncio.Event()
        llm_service.gates["queued"] = asyncio.Event()
        await worker.submit(1, "stuck")
        await worker.submit(2, "queued")

        store.fail_writes = True
        await worker.stop()

        assert sorted(store.failed_writes) == [1, 2]
        assert acknowledged == []
        assert not worker.running
        assert worker.pending == 0


class TestServiceContainer:
    async def test_shutdown_closes_store_when_worker_stop_fails(
        self, event_config, blob_store, document_service, llm_service, narration_service, monkeypatch
    ):
        store = FlakyResultStore()
        services = ServiceContainer.build(
            settings,
            event_config=event_config,
            blob_store=blob_store,
            result_store=store,
            stt_service=object(),
            document_service=document_service,
            llm_service=llm_service,
            narration_service=narration_service,
        )

        async def broken_stop():
            raise RuntimeError("worker stop failed")

        monkeypatch.setattr(services.worker, "stop", broken_stop)

        with pytest.raises(RuntimeError):
            await services.shutdown()
        assert store.closed
