"""
Job dispatcher: routes a job type to its handler.

Each handler validates its payload before touching the completion API,
sends a single completion request, and shapes the response into the
result map stored on the job row.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import ValidationError

from review_worker.errors import CompletionAPIError, PayloadValidationError, UnknownJobTypeError
from review_worker.models.job import JobType
from review_worker.schemas.job import (
    AIGenerationPayload,
    AIGenerationResult,
    JobPayload,
    PromptAnalysisPayload,
    PromptAnalysisResult,
    ReviewProcessingPayload,
    ReviewProcessingResult,
    SentimentAnalysisPayload,
    SentimentAnalysisResult,
)
from review_worker.services.completion_client import (
    ChatMessage,
    CompletionClient,
    CompletionRequest,
    CompletionResult,
    parse_json_object,
)
from review_worker.services.prompt_builder import PromptBuilder, build_system_prompt, prompt_mode
from review_worker.utils.time import utc_now

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
P = TypeVar("P", bound=JobPayload)

# Output token budgets per job type
AI_GENERATION_MAX_TOKENS = 3000
REVIEW_PROCESSING_MAX_TOKENS = 400
PROMPT_ANALYSIS_MAX_TOKENS = 500
SENTIMENT_ANALYSIS_MAX_TOKENS = 400

TEXT_ANALYZED_PREVIEW_CHARS = 100


def _validate(model: Type[P], payload: Any) -> P:
    """Validate a raw payload map, translating pydantic errors into one readable message."""
    if not isinstance(payload, dict):
        raise PayloadValidationError("payload must be a JSON object")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        messages = []
        fields = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()))
            fields.append(loc)
            if loc in model.required_text_fields:
                messages.append(f"{loc} is required and must be a non-empty string")
            else:
                messages.append(f"{loc}: {err.get('msg')}")
        # one field can yield several errors (e.g. type + blank); keep the first mention
        unique = list(dict.fromkeys(messages))
        raise PayloadValidationError("; ".join(unique), {"fields": fields}) from exc


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


def _preview(text: str, limit: int = TEXT_ANALYZED_PREVIEW_CHARS) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class JobDispatcher:
    """Maps job types to handlers; the map is built once per dispatcher."""

    def __init__(
        self,
        client: CompletionClient,
        *,
        prompt_builder: PromptBuilder = build_system_prompt,
        model: str = "gpt-5-nano",
        temperature: float = 1.0,
    ):
        self.client = client
        self.prompt_builder = prompt_builder
        self.model = model
        self.temperature = temperature
        self._handlers: Dict[str, Handler] = {
            JobType.AI_GENERATION.value: self._handle_ai_generation,
            JobType.REVIEW_PROCESSING.value: self._handle_review_processing,
            JobType.PROMPT_ANALYSIS.value: self._handle_prompt_analysis,
            JobType.SENTIMENT_ANALYSIS.value: self._handle_sentiment_analysis,
        }

    @property
    def supported_job_types(self) -> List[str]:
        return sorted(self._handlers)

    async def dispatch(self, job_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run the handler registered for ``job_type``.

        Raises:
            UnknownJobTypeError: no handler is registered for the type
            PayloadValidationError: required payload fields are missing or malformed
            CompletionAPIError: the completion call failed or produced no text
        """
        handler = self._handlers.get(job_type) if isinstance(job_type, str) else None
        if handler is None:
            raise UnknownJobTypeError(job_type)
        return await handler(payload)

    async def _complete(
        self,
        job_type: str,
        system: str,
        user: str,
        max_tokens: int,
        json_output: bool = False,
    ) -> CompletionResult:
        completion = await self.client.complete(
            CompletionRequest(
                model=self.model,
                messages=[ChatMessage("system", system), ChatMessage("user", user)],
                max_tokens=max_tokens,
                temperature=self.temperature,
                json_output=json_output,
            )
        )
        # a 200 response with blank text is still a failed job
        if not completion.text or not completion.text.strip():
            raise CompletionAPIError(f"No content generated for {job_type}", kind="empty_content")
        return completion

    async def _handle_ai_generation(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _validate(AIGenerationPayload, payload)
        mode = prompt_mode(data.business_profile, data.custom_prompt)

        system_prompt = self.prompt_builder(data.business_profile, data.custom_prompt, data.review_rating)
        reviewer_name = data.reviewer_name
        if reviewer_name:
            system_prompt = system_prompt.replace("_firstName_", reviewer_name)
            system_prompt += (
                f'\n\nIMPORTANT: The customer\'s name is "{reviewer_name}". Use their actual name in your '
                "greeting and throughout the response to personalize it. Generate the response directly "
                "without extensive reasoning."
            )

        logger.info(
            "Generating reply (mode=%s, rating=%s, review_chars=%d)",
            mode,
            data.review_rating if data.review_rating is not None else "not set",
            len(data.review_text),
        )

        completion = await self._complete(
            JobType.AI_GENERATION.value,
            system_prompt,
            f'Generate a direct, personalized response to this customer review: "{data.review_text}". '
            "Focus on generating the actual response text rather than extensive reasoning.",
            AI_GENERATION_MAX_TOKENS,
        )

        return AIGenerationResult(
            generated_response=completion.text.strip(),
            tokens_used=completion.total_tokens,
            model_used=completion.model,
            prompt_mode=mode,
            review_rating=data.review_rating,
            system_prompt_used=system_prompt,
        ).model_dump(mode="json")

    async def _handle_review_processing(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _validate(ReviewProcessingPayload, payload)
        logger.info("Processing review for business category: %s", data.business_category)

        completion = await self._complete(
            JobType.REVIEW_PROCESSING.value,
            "Analyze this customer review and provide insights. "
            f"Business category: {data.business_category}. "
            "Respond with a JSON object with keys: sentiment (positive|neutral|negative), "
            "key_topics (array of strings), suggested_response (string), response_rating (number 1-5).",
            f'Analyze this review: "{data.review_text}"',
            REVIEW_PROCESSING_MAX_TOKENS,
            json_output=True,
        )

        parsed = parse_json_object(completion.text)
        if parsed is None:
            parsed = {"suggested_response": completion.text}

        return ReviewProcessingResult(
            sentiment=_as_str(parsed.get("sentiment")),
            key_topics=_as_str_list(parsed.get("key_topics")),
            suggested_response=_as_str(parsed.get("suggested_response")),
            response_rating=_as_float(parsed.get("response_rating")),
            business_category=data.business_category,
            tokens_used=completion.total_tokens,
            model_used=completion.model,
            analysis_timestamp=utc_now(),
        ).model_dump(mode="json")

    async def _handle_prompt_analysis(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _validate(PromptAnalysisPayload, payload)
        logger.info("Analyzing prompt for optimization: %s", data.optimization_goals)

        completion = await self._complete(
            JobType.PROMPT_ANALYSIS.value,
            f"Optimize this prompt for {data.optimization_goals}. Provide specific improvements and an "
            "optimized version. Respond with a JSON object with keys: optimized_prompt (string), "
            "improvements_suggested (array of strings), optimization_score (number 0-10).",
            f'Optimize this prompt: "{data.prompt_text}"',
            PROMPT_ANALYSIS_MAX_TOKENS,
            json_output=True,
        )

        parsed = parse_json_object(completion.text)
        if parsed is None:
            parsed = {"optimized_prompt": completion.text}

        return PromptAnalysisResult(
            original_prompt=data.prompt_text,
            optimized_prompt=_as_str(parsed.get("optimized_prompt")),
            improvements_suggested=_as_str_list(parsed.get("improvements_suggested")),
            optimization_score=_as_float(parsed.get("optimization_score")),
            optimization_goals=data.optimization_goals,
            tokens_used=completion.total_tokens,
            model_used=completion.model,
            analysis_timestamp=utc_now(),
        ).model_dump(mode="json")

    async def _handle_sentiment_analysis(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _validate(SentimentAnalysisPayload, payload)
        logger.info("Analyzing sentiment with depth: %s", data.analysis_depth)

        completion = await self._complete(
            JobType.SENTIMENT_ANALYSIS.value,
            f"Perform {data.analysis_depth} sentiment analysis on this text. Respond with a JSON object "
            "with keys: sentiment_score (number from -1 to 1), primary_emotion (string), "
            "secondary_emotions (array of strings), insights (string).",
            f'Analyze sentiment: "{data.text_content}"',
            SENTIMENT_ANALYSIS_MAX_TOKENS,
            json_output=True,
        )

        parsed = parse_json_object(completion.text)
        if parsed is None:
            parsed = {"insights": completion.text}

        return SentimentAnalysisResult(
            text_analyzed=_preview(data.text_content),
            sentiment_score=_as_float(parsed.get("sentiment_score")),
            primary_emotion=_as_str(parsed.get("primary_emotion")),
            secondary_emotions=_as_str_list(parsed.get("secondary_emotions")),
            insights=_as_str(parsed.get("insights")),
            analysis_depth=data.analysis_depth,
            tokens_used=completion.total_tokens,
            model_used=completion.model,
            analysis_timestamp=utc_now(),
        ).model_dump(mode="json")
