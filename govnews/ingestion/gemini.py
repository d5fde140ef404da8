"""
Gemini-backed press discovery, summarization, analysis, search and chat.

Requests go through the OpenAI SDK against Gemini's OpenAI-compatible
endpoint, except AI search, which needs Google Search grounding and uses the
native google-genai client. Structured outputs are requested as JSON and
validated with pydantic before they are cached or returned.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Literal

import openai
import structlog
import yaml
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from govnews.core.cache import CacheStore
from govnews.core.config import Settings, get_gemini_api_key, settings
from govnews.core.country_mappings import CountryMappings
from govnews.core.error_manager import ErrorManager
from govnews.core.errors import (
    ApiError,
    AppError,
    DataProcessingError,
    ErrorFactory,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)
from govnews.ingestion.base import resolve_cache
from govnews.ingestion.content_extractor import ContentExtractor
from govnews.ingestion.interceptor import ApiInterceptor

logger = structlog.get_logger(__name__)

DATA_DIR = Path(__file__).resolve().parent.parent / "data"
SUMMARY_MIN_CHARS = 100
ANALYSIS_MIN_CHARS = 50
CACHE_BODY_PREFIX_CHARS = 500

# SDK, JSON and schema failures; pydantic validation errors are ValueErrors.
AI_FAILURES: tuple[type[Exception], ...] = (
    openai.OpenAIError,
    genai_errors.APIError,
    ValueError,
    AppError,
)


class ExternalArticle(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str = Field(description="The headline of the article.")
    url: str = Field(description="The direct URL to the article.")
    source: str = Field(description="The name of the news source from the provided list.")
    published_date: str = Field(
        alias="publishedDate",
        description="The publication date in ISO 8601 format (YYYY-MM-DD).",
    )
    summary: str = Field(description="A brief one or two sentence summary of the article.")


class _PressOutput(BaseModel):
    articles: list[ExternalArticle] = Field(default_factory=list)


class AiAnalysisResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sentiment: Literal["Positive", "Neutral", "Negative"]
    score: float = Field(ge=0.0, le=1.0)
    topics: list[str] = Field(default_factory=list, max_length=5)


class GroundingSource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uri: str | None = None
    title: str | None = None


class AiSearchResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str
    sources: list[GroundingSource] = Field(default_factory=list)


@dataclass(slots=True, frozen=True)
class NewsSource:
    name: str
    url: str


@lru_cache
def load_news_sources(path: str | None = None) -> dict[str, list[NewsSource]]:
    """Load the reference press outlets, keyed by Turkish display name."""
    config_path = Path(path) if path else DATA_DIR / "news_sources.yaml"
    raw_config = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw_config, dict):
        msg = "Invalid news source format: expected mapping at top-level"
        raise ValueError(msg)
    return {
        str(country): [
            NewsSource(name=str(row["name"]), url=str(row["url"]))
            for row in rows or []
            if isinstance(row, dict) and row.get("name") and row.get("url")
        ]
        for country, rows in raw_config.items()
    }


class GeminiService:
    """
    Generative AI features for the country views.

    The client is created lazily so that features without AI still work
    when no Gemini key is configured; the first AI call then raises
    ``ConfigurationError``.
    """

    _NO_SUMMARY: ClassVar[str] = "Could not generate a summary."
    _TOO_SHORT_TO_SUMMARIZE: ClassVar[str] = "Article content is too short to summarize."

    def __init__(
        self,
        *,
        client: AsyncOpenAI | Any | None = None,
        search_client: genai.Client | Any | None = None,
        model: str | None = None,
        cache: CacheStore | None = None,
        interceptor: ApiInterceptor | None = None,
        error_manager: ErrorManager | None = None,
        news_sources: dict[str, list[NewsSource]] | None = None,
        language: str = "en",
        config: Settings | None = None,
    ) -> None:
        self.config = config or settings
        self._client = client
        self._search_client = search_client
        self.model = model or self.config.GEMINI_MODEL
        self.cache = resolve_cache(cache)
        self.interceptor = interceptor
        self.error_manager = error_manager
        self._news_sources = news_sources
        self.language = language

    @property
    def client(self) -> AsyncOpenAI | Any:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=get_gemini_api_key(self.config),
                base_url=self.config.GEMINI_BASE_URL,
                timeout=self.config.GEMINI_TIMEOUT_SECONDS,
            )
        return self._client

    @property
    def search_client(self) -> genai.Client | Any:
        if self._search_client is None:
            self._search_client = genai.Client(
                api_key=get_gemini_api_key(self.config),
                http_options=genai_types.HttpOptions(
                    timeout=int(self.config.GEMINI_TIMEOUT_SECONDS * 1000)
                ),
            )
        return self._search_client

    @property
    def news_sources(self) -> dict[str, list[NewsSource]]:
        if self._news_sources is None:
            self._news_sources = load_news_sources()
        return self._news_sources

    async def fetch_national_press(
        self,
        country: str,
        mappings: CountryMappings,
        sources: list[NewsSource] | None = None,
    ) -> list[ExternalArticle]:
        """Ask for the five most recent notable articles from a country's outlets."""
        cache_key = f"gemini-press-{country}-{self.language}"
        cached = self.cache.get(cache_key)
        if cached:
            return [ExternalArticle.model_validate(row) for row in cached]

        outlets = sources if sources is not None else self.news_sources.get(country, [])
        if not outlets:
            logger.warning("No news sources defined", country=country)
            return []

        english_name = mappings.english_name(country)
        source_names = ", ".join(outlet.name for outlet in outlets)
        prompt = (
            f"Find the 5 most recent and important news articles about {english_name} "
            f"from any of the following news sources: {source_names}. Only use these "
            "sources. For each article, provide the title, the direct URL to the article, "
            "the source name, the publication date in YYYY-MM-DD format, and a one or "
            "two-sentence summary. The news should be as recent as possible. "
            f"Respond in {self._language_name}. Return a JSON object with an "
            '"articles" array whose items have the keys title, url, source, '
            "publishedDate and summary."
        )
        try:
            content = await self._complete(prompt, json_output=True)
            output = _PressOutput.model_validate(_parse_json(content))
        except AI_FAILURES as exc:
            error = await self._fail(exc, "Failed to fetch national press data.", country=country)
            raise error from exc

        articles = output.articles
        self.cache.set(cache_key, [article.model_dump(by_alias=True) for article in articles])
        return articles

    async def summarize_article(self, body: str) -> str:
        cache_key = f"gemini-summary-{body[:CACHE_BODY_PREFIX_CHARS]}-{self.language}"
        cached = self.cache.get(cache_key)
        if cached:
            return str(cached)

        if not body or len(body.strip()) < SUMMARY_MIN_CHARS:
            return self._TOO_SHORT_TO_SUMMARIZE

        prompt = (
            "Please provide a concise but comprehensive summary of the following news "
            "article. Structure the summary into 2-3 distinct paragraphs, covering the main "
            "points, the context, and any stated outcomes or implications. The tone should "
            "be neutral and informative, suitable for an intelligence briefing. "
            f'Respond in {self._language_name}. Article:\n\n"{body}"'
        )
        try:
            summary = await self._complete(prompt)
        except AI_FAILURES as exc:
            raise await self._fail(exc, "AI summarization failed.") from exc

        if summary:
            self.cache.set(cache_key, summary)
        return summary or self._NO_SUMMARY

    async def summarize_article_url(self, url: str) -> str:
        """Download an article page, extract its body text and summarize it."""
        if self.interceptor is None:
            msg = "An API interceptor is required to download articles"
            raise DataProcessingError(msg, context={"url": url})
        html = await self.interceptor.get(self.interceptor.proxied(url))
        text = ContentExtractor.extract_text(html if isinstance(html, str) else "")
        if text is None:
            return self._TOO_SHORT_TO_SUMMARIZE
        return await self.summarize_article(text)

    async def analyze_text_sentiment_and_topics(self, body: str) -> AiAnalysisResult:
        cache_key = f"gemini-analysis-{body[:CACHE_BODY_PREFIX_CHARS]}-{self.language}"
        cached = self.cache.get(cache_key)
        if cached:
            return AiAnalysisResult.model_validate(cached)

        if not body or len(body.strip()) < ANALYSIS_MIN_CHARS:
            msg = "Article content is too short to analyze."
            raise ValidationError(msg, field="body", expected_type="str", received_value=body)

        prompt = (
            "Analyze the sentiment of the following news article. Provide a sentiment label "
            "('Positive', 'Neutral', or 'Negative'), a sentiment score from 0.0 (very "
            "negative) to 1.0 (very positive) where 0.5 is neutral, and a list of up to 5 "
            "relevant topics as an array of strings. Respond in "
            f"{self._language_name} with a JSON object with the keys sentiment, score and "
            f'topics. Article:\n\n"{body}"'
        )
        try:
            content = await self._complete(prompt, json_output=True)
            result = AiAnalysisResult.model_validate(_parse_json(content))
        except AI_FAILURES as exc:
            raise await self._fail(exc, "AI analysis failed.") from exc

        self.cache.set(cache_key, result.model_dump())
        return result

    async def perform_ai_search(self, query: str) -> AiSearchResult:
        """Answer a free-form question with a summary and the web sources it used."""
        if not query or not query.strip():
            msg = "Query cannot be empty."
            raise ValidationError(msg, field="query", expected_type="str", received_value=query)

        try:
            response = await self.search_client.aio.models.generate_content(
                model=self.model,
                contents=f"{query.strip()}. Please answer in {self._language_name}.",
                config=genai_types.GenerateContentConfig(
                    tools=[genai_types.Tool(google_search=genai_types.GoogleSearch())],
                ),
            )
            summary = (getattr(response, "text", None) or "").strip()
            if not summary:
                msg = "Received an empty response from the AI."
                raise DataProcessingError(msg)
        except AI_FAILURES as exc:
            raise await self._fail(exc, "The AI search request failed.") from exc
        return AiSearchResult(summary=summary, sources=_grounding_sources(response))

    def create_chat_session(self, system_instruction: str) -> ChatSession:
        return ChatSession(service=self, system_instruction=system_instruction)

    @property
    def _language_name(self) -> str:
        return {"en": "English", "tr": "Turkish"}.get(self.language, self.language)

    async def _complete(self, prompt: str, *, json_output: bool = False) -> str:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if json_output:
            request["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(**request)
        return _message_content(response)

    async def _fail(self, exc: BaseException, message: str, **extra: Any) -> AppError:
        error = classify_ai_error(exc, message, endpoint=self.config.GEMINI_BASE_URL)
        logger.error(
            "Gemini request failed",
            error=str(exc),
            error_code=error.code,
            model=self.model,
            **extra,
        )
        if self.error_manager is not None:
            await self.error_manager.handle_error(error, tags=["gemini"], **extra)
        return error


@dataclass(slots=True)
class ChatSession:
    """Multi-turn chat that keeps its own message history."""

    service: GeminiService
    system_instruction: str
    history: list[dict[str, str]] = field(default_factory=list)

    async def send_message_stream(self, message: str) -> AsyncIterator[str]:
        """Yield the reply text chunk by chunk; the turn joins history once complete."""
        if not message or not message.strip():
            return

        final_message = f"{message} (Please respond in {self.service.language})"
        messages = [
            {"role": "system", "content": self.system_instruction},
            *self.history,
            {"role": "user", "content": final_message},
        ]
        chunks: list[str] = []
        try:
            stream = await self.service.client.chat.completions.create(
                model=self.service.model,
                messages=messages,
                stream=True,
            )
            async for chunk in stream:
                text = _delta_content(chunk)
                if text:
                    chunks.append(text)
                    yield text
        except AppError:
            raise
        except AI_FAILURES as exc:
            logger.error("Gemini chat request failed", error=str(exc))
            status_code = getattr(exc, "status_code", None)
            raise ApiError(
                status_code if isinstance(status_code, int) else 0,
                "AI chat request failed.",
                self.service.config.GEMINI_BASE_URL,
                exc,
            ) from exc

        self.history.append({"role": "user", "content": final_message})
        self.history.append({"role": "assistant", "content": "".join(chunks)})


def classify_ai_error(exc: BaseException, message: str, *, endpoint: str | None = None) -> AppError:
    """Map SDK, parsing and validation failures onto the error taxonomy."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, openai.RateLimitError):
        retry_after = _retry_after_seconds(exc)
        return RateLimitError(message, retry_after=retry_after, endpoint=endpoint)
    if isinstance(exc, openai.APITimeoutError):
        return RequestTimeoutError(message, original_error=exc)
    if isinstance(exc, openai.APIConnectionError):
        return NetworkError(message, reason="connect", endpoint=endpoint, original_error=exc)
    if isinstance(exc, openai.APIStatusError):
        return ErrorFactory.from_http_status(exc.status_code, message, endpoint, original_error=exc)
    if isinstance(exc, genai_errors.APIError):
        status = exc.code if isinstance(exc.code, int) else 0
        return ErrorFactory.from_http_status(status, message, endpoint, original_error=exc)
    if isinstance(exc, PydanticValidationError | ValueError):
        return DataProcessingError(message, context={"endpoint": endpoint}, original_error=exc)
    return ApiError(0, message, endpoint, exc)


def _retry_after_seconds(exc: openai.RateLimitError) -> float | None:
    raw = exc.response.headers.get("retry-after") if exc.response is not None else None
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _grounding_sources(response: Any) -> list[GroundingSource]:
    candidates = getattr(response, "candidates", None) or []
    metadata = getattr(candidates[0], "grounding_metadata", None) if candidates else None
    sources: list[GroundingSource] = []
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is None:
            continue
        sources.append(GroundingSource(uri=web.uri, title=web.title))
    return sources


def _message_content(response: Any) -> str:
    choices = getattr(response, "choices", None)
    if not isinstance(choices, list) or not choices:
        msg = "Gemini response missing choices"
        raise ValueError(msg)
    content = getattr(getattr(choices[0], "message", None), "content", None)
    if not isinstance(content, str):
        msg = "Gemini response missing message content"
        raise ValueError(msg)
    return content.strip()


def _delta_content(chunk: Any) -> str | None:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    content = getattr(getattr(choices[0], "delta", None), "content", None)
    return content if isinstance(content, str) else None


def _parse_json(content: str) -> Any:
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[len("json") :]
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        msg = "Gemini response is not valid JSON"
        raise ValueError(msg) from exc
