"""Test fixtures for the OncoVoice Engine.

Provides:
- Test environment (API keys, temp blob directory, rate limiting off)
- A small event configuration (team 3 deliberately has no document)
- Fake provider services standing in for OpenAI
- A service container and an async HTTP client running the app lifespan
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import AsyncGenerator
from typing import Optional

os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("API_SECRET_KEY", "test-secret-key")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BLOB_STORAGE_DIR"] = tempfile.mkdtemp(prefix="oncovoice-blobs-")
os.environ["BLOB_PUBLIC_BASE_URL"] = "http://test/blobs"

import fitz
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from oncovoice.config import settings
from oncovoice.dependencies import ServiceContainer
from oncovoice.models.responses import AnalysisResult
from oncovoice.services.blob_store import LocalBlobStore
from oncovoice.services.result_store import InMemoryResultStore
from oncovoice.teams import BreakoutSession, EventConfig, Team

TEAM_1_DOCUMENT = "http://test/blobs/documents/1-ILD.pdf"
TEAM_2_DOCUMENT = "http://test/blobs/documents/2-HER2.pdf"


def make_pdf(*pages: str) -> bytes:
    document = fitz.open()
    for text in pages:
        page = document.new_page()
        if text:
            page.insert_text((72, 72), text)
    data = document.tobytes()
    document.close()
    return data


class FakeDocumentService:
    def __init__(self, text: str = "Scientific source text"):
        self.text = text
        self.calls = []
        self.missing = set()

    async def exists(self, document_url: str) -> bool:
        return document_url not in self.missing

    async def extract_text(self, document_url: str) -> str:
        self.calls.append(document_url)
        return self.text


class FakeLLMService:
    """Returns a canned analysis; optionally waits on a gate or fails."""

    def __init__(self, result: Optional[AnalysisResult] = None, error: Optional[Exception] = None):
        self.result = result or AnalysisResult(
            summary="The team discussed ILD management.",
            conclusion="Early recognition matters.",
            criticism="Dose modification guidance was missing.",
        )
        self.error = error
        self.calls = []
        self.gates = {}

    async def analyze(self, transcript: str, document_text: str, request_id: str = None) -> AnalysisResult:
        self.calls.append((transcript, document_text))
        gate = self.gates.get(transcript)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        return self.result.model_copy(update={"summary": f"Summary of: {transcript}"})


class FakeNarrationService:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = []

    async def narrate(self, team_id: int, text: str, request_id: str = None) -> str:
        self.calls.append((team_id, text))
        if self.error is not None:
            raise self.error
        return f"http://test/blobs/narration/team-{team_id}-criticism-1.mp3"


@pytest.fixture
def event_config() -> EventConfig:
    return EventConfig(
        app_name="OncoVoice AI",
        sessions=[BreakoutSession(id=1, name="Breakout Session 1", teams=[1, 2, 3])],
        teams=[
            Team(id=1, name="Team 1", topic_name="ILD and cancer therapy", session_id=1),
            Team(id=2, name="Team 2", topic_name="Very early HER2+ disease", session_id=1),
            Team(id=3, name="Team 3", topic_name="Radiotherapy after neoadjuvant therapy", session_id=1),
        ],
        documents={1: TEAM_1_DOCUMENT, 2: TEAM_2_DOCUMENT},
    )


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path / "blobs"), "http://test/blobs")


@pytest.fixture
def result_store() -> InMemoryResultStore:
    return InMemoryResultStore()


@pytest.fixture
def document_service() -> FakeDocumentService:
    return FakeDocumentService()


@pytest.fixture
def llm_service() -> FakeLLMService:
    return FakeLLMService()


@pytest.fixture
def narration_service() -> FakeNarrationService:
    return FakeNarrationService()


@pytest.fixture
def stt_client():
    """OpenAI client double for the transcription endpoint."""
    from types import SimpleNamespace
    from unittest.mock import AsyncMock, MagicMock

    client = MagicMock()
    client.audio.transcriptions.create = AsyncMock(
        return_value=SimpleNamespace(text="Discussion about ILD and trastuzumab deruxtecan.")
    )
    return client


@pytest.fixture
def services(
    event_config, blob_store, result_store, document_service, llm_service, narration_service, stt_client
) -> ServiceContainer:
    from oncovoice.services.stt_service import STTService

    return ServiceContainer.build(
        settings,
        event_config=event_config,
        blob_store=blob_store,
        result_store=result_store,
        stt_service=STTService(blob_store, client=stt_client),
        document_service=document_service,
        llm_service=llm_service,
        narration_service=narration_service,
    )


@pytest_asyncio.fixture
async def client(services) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against an app running its lifespan."""
    from oncovoice.main import create_app

    app = create_app(services)
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


async def wait_until(predicate, timeout: float = 2.0):
    """Polls an async predicate until it is truthy."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        value = await predicate()
        if value:
            return value
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
