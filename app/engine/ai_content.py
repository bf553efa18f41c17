"""
AI Content Service - summary, key points and content analysis.

Summaries and analysis come from Gemini via LangChain; key points are
extracted locally from sentence boundaries. Failures raise
EnrichmentSubtaskError so the enrichment worker can record them per
sub-task without losing the others.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

from langchain_google_genai import ChatGoogleGenerativeAI

from app.core.config import settings
from app.core.exceptions import EnrichmentSubtaskError

logger = logging.getLogger(__name__)


SENTENCE_SPLIT = re.compile(r"[.!?]+")


def extract_key_points(text: str, max_points: int = 10, min_length: int = 20) -> List[str]:
    """
    Pick the first ``max_points`` sentences longer than ``min_length``.

    Sentences are split on runs of ``.``, ``!`` and ``?`` and trimmed.
    """
    if not text:
        return []
    sentences = (s.strip() for s in SENTENCE_SPLIT.split(text))
    return [s for s in sentences if len(s) > min_length][:max_points]


def parse_analysis(raw: str) -> Dict[str, Any]:
    """
    Parse the analysis JSON object returned by the LLM.

    A surrounding ```json fence is tolerated. Anything that is not a JSON
    object raises ValueError.
    """
    response = raw.strip()
    if response.startswith("```json"):
        response = response[7:]
    elif response.startswith("```"):
        response = response[3:]
    if response.endswith("```"):
        response = response[:-3]
    response = response.strip()

    data = json.loads(response)
    if not isinstance(data, dict):
        raise ValueError(f"Expected JSON object, got {type(data).__name__}")
    return data


def response_text(content: Any) -> str:
    """Flatten a LangChain message content (str or list of parts) into text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content or "")


class AIContentService(Protocol):
    """Interface used by the enrichment worker."""

    async def summarize(self, text: str) -> str:
        ...

    async def extract_key_points(self, text: str) -> List[str]:
        ...

    async def analyze(self, text: str) -> Dict[str, Any]:
        ...


class GeminiContentService:
    """
    Gemini-backed AIContentService.

    Without a Google API key no LLM is created and ``summarize`` /
    ``analyze`` raise, which leaves those fields empty on the item.
    """

    SUMMARY_PROMPT = """Create a concise summary of the following content:

{content}

Requirements:
- Keep it under 200 words
- Include the main points and key takeaways
- Use clear, simple language
- Structure it with bullet points if needed"""

    ANALYSIS_PROMPT = """Analyze the following content and provide:
1. Main topics (up to 5)
2. Difficulty level (beginner/intermediate/advanced)
3. Key terms (up to 10)
4. Suggested categories for organization

Content: {content}

Return ONLY the analysis as a JSON object:
{{
  "topics": ["topic1", "topic2"],
  "difficulty": "beginner|intermediate|advanced",
  "keyTerms": ["term1", "term2"],
  "suggestedCategories": ["category1", "category2"]
}}"""

    def __init__(
        self,
        llm: Optional[ChatGoogleGenerativeAI] = None,
        max_input_chars: Optional[int] = None,
    ):
        self.max_input_chars = max_input_chars or settings.ai_max_input_chars
        self._llm = llm
        if self._llm is None and settings.google_api_key:
            try:
                self._llm = ChatGoogleGenerativeAI(
                    model=settings.google_model,
                    temperature=0.3,
                    google_api_key=settings.google_api_key,
                )
                logger.info(f"GeminiContentService initialized with {settings.google_model}")
            except Exception as e:
                logger.error(f"Failed to initialize LLM: {e}")

    @property
    def available(self) -> bool:
        return self._llm is not None

    def _truncate(self, text: str) -> str:
        return text[:self.max_input_chars]

    async def _complete(self, subtask: str, prompt: str) -> str:
        if self._llm is None:
            raise EnrichmentSubtaskError(subtask, "LLM not available (GOOGLE_API_KEY not set)")
        response = await self._llm.ainvoke(prompt)
        text = response_text(response.content).strip()
        if not text:
            raise EnrichmentSubtaskError(subtask, "empty response from LLM")
        return text

    async def summarize(self, text: str) -> str:
        prompt = self.SUMMARY_PROMPT.format(content=self._truncate(text))
        return await self._complete("summary", prompt)

    async def extract_key_points(self, text: str) -> List[str]:
        return extract_key_points(text)

    async def analyze(self, text: str) -> Dict[str, Any]:
        prompt = self.ANALYSIS_PROMPT.format(content=self._truncate(text))
        raw = await self._complete("analysis", prompt)
        try:
            return parse_analysis(raw)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            raise EnrichmentSubtaskError("analysis", f"unparseable JSON: {e}") from e
