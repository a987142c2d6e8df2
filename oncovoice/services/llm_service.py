"""
LLM Service for clinical discussion analysis
"""
import time

import instructor
from instructor.exceptions import InstructorRetryException
from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError as PydanticValidationError

from oncovoice.config import settings
from oncovoice.core.exceptions import AnalysisError
from oncovoice.core.logging import get_logger, audit_logger
from oncovoice.models.responses import AnalysisResult

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert medical AI assistant specializing in oncology. "
    "You provide thorough, evidence-based analysis of clinical discussions."
)


class LLMService:
    """Service for analyzing discussion transcripts against a scientific source."""

    def __init__(self, client: AsyncOpenAI = None):
        # Apply the patch to the OpenAI client
        # enables response_model keyword
        self.openai_client = instructor.from_openai(client or AsyncOpenAI(api_key=settings.openai_api_key))
        self.model = settings.llm_model
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens

    async def analyze(self, transcript: str, document_text: str, request_id: str = None) -> AnalysisResult:
        """
        Analyze the transcript against the reference document.
        Returns summary, conclusion and criticism.
        """
        logger.info(
            f"Starting LLM analysis with model: {self.model}, "
            f"transcript: {len(transcript)} chars, document: {len(document_text)} chars"
        )

        start = time.monotonic()
        try:
            analysis = await self.openai_client.chat.completions.create(
                model=self.model,
                response_model=AnalysisResult,
                max_retries=1,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self._build_prompt(transcript, document_text)},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except (OpenAIError, PydanticValidationError, InstructorRetryException) as e:
            audit_logger.log_external_api_call(
                request_id=request_id,
                service="openai",
                endpoint="chat.completions",
                success=False,
                response_time_ms=int((time.monotonic() - start) * 1000),
            )
            logger.error(f"LLM analysis failed: {e}", exc_info=True)
            raise AnalysisError(f"Failed to analyze content: {e}")

        audit_logger.log_external_api_call(
            request_id=request_id,
            service="openai",
            endpoint="chat.completions",
            success=True,
            response_time_ms=int((time.monotonic() - start) * 1000),
            model=self.model,
        )
        logger.info("LLM analysis completed successfully.")
        return analysis

    def _build_prompt(self, transcript: str, document_text: str) -> str:
        """Builds the user prompt pairing the transcript with its source"""

        return f"""You are analyzing a clinical discussion recording for oncology professionals. The recording is a mixed Arabic and English conversation.

TRANSCRIPT:
{transcript}

SCIENTIFIC SOURCE (from PDF):
{document_text}

Please provide a comprehensive analysis in English with the following fields:

- summary (2-3 paragraphs): Summarize the main points discussed in the recording.
- conclusion (1-2 paragraphs): What are the key takeaways and conclusions from this clinical discussion?
- criticism (2-3 paragraphs): Critically analyze the content of the recording by comparing it with the scientific source provided. Identify:
  - Areas of alignment with the scientific source
  - Contradictions or discrepancies with evidence-based practices
  - Missing critical information that should have been discussed
  - Strengths of the discussion
  - Areas for improvement

Write in a clear, professional, structured style suitable for medical professionals.
"""
