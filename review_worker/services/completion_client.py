"""
Client for the external text-completion API (OpenAI-compatible chat completions).

Every transport or protocol problem is translated into a CompletionAPIError
carrying one human-readable message, so handlers never see raw httpx errors.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from review_worker.errors import CompletionAPIError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass
class ChatMessage:
    role: str
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class CompletionRequest:
    """A chat completion request: ordered role-tagged messages plus sampling limits."""

    model: str
    messages: List[ChatMessage]
    max_tokens: int
    temperature: float = 1.0
    json_output: bool = False

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.as_dict() for m in self.messages],
            "max_completion_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if self.json_output:
            body["response_format"] = {"type": "json_object"}
        return body


@dataclass
class CompletionResult:
    text: str
    model: str
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class CompletionClient:
    """Async wrapper around POST {base_url}/chat/completions with a hard timeout."""

    def __init__(
        self,
        api_key: str,
        project_id: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.endpoint = f"{base_url.rstrip('/')}/chat/completions"
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "OpenAI-Project": project_id,
            },
            transport=transport,
        )

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """
        Send one completion request.

        Raises:
            CompletionAPIError: on timeout, transport failure, non-2xx status,
                malformed body, or empty/whitespace-only completion text.
        """
        logger.debug("Calling completion API (model=%s, max_tokens=%d)", request.model, request.max_tokens)
        try:
            resp = await self._client.post(self.endpoint, json=request.to_body())
        except httpx.TimeoutException as exc:
            raise CompletionAPIError(
                f"Completion API request timed out after {self.timeout_seconds:g} seconds",
                kind="timeout",
            ) from exc
        except httpx.RequestError as exc:  # connection/transport errors
            raise CompletionAPIError(f"Completion API request failed: {exc}", kind="transport") from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            raise self._error_from_response(resp)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise CompletionAPIError(
                "Completion API returned a malformed response body",
                kind="malformed_response",
                status_code=resp.status_code,
            ) from exc

        return self._parse_completion(payload, request.model, resp.status_code)

    def _error_from_response(self, resp: httpx.Response) -> CompletionAPIError:
        message = f"Completion API error: {resp.status_code}"
        try:
            error_data = resp.json().get("error") or {}
        except (ValueError, AttributeError):
            return CompletionAPIError(
                f"{message} - Unable to parse error response",
                kind="http_error",
                status_code=resp.status_code,
            )

        if not isinstance(error_data, dict):
            error_data = {"message": str(error_data)}
        error_type = error_data.get("type") or error_data.get("code")
        error_message = error_data.get("message") or "Unknown error"

        if error_type == "insufficient_quota":
            logger.error("Completion API quota exceeded (status %s)", resp.status_code)
            return CompletionAPIError(
                "Completion API quota exceeded. Please check your billing settings.",
                kind="quota",
                status_code=resp.status_code,
            )
        if error_type == "invalid_request_error":
            return CompletionAPIError(
                f"Invalid request to completion API: {error_message}",
                kind="invalid_request",
                status_code=resp.status_code,
            )
        return CompletionAPIError(f"{message} - {error_message}", kind="http_error", status_code=resp.status_code)

    def _parse_completion(self, payload: Any, requested_model: str, status_code: int) -> CompletionResult:
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise CompletionAPIError(
                "Completion API response contained no choices",
                kind="malformed_response",
                status_code=status_code,
            )

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if content is not None and not isinstance(content, str):
            raise CompletionAPIError(
                "Completion API response content was not text",
                kind="malformed_response",
                status_code=status_code,
            )
        if not content or not content.strip():
            raise CompletionAPIError(
                "No content generated by completion API",
                kind="empty_content",
                status_code=status_code,
            )

        usage = payload.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        model = payload.get("model")
        result = CompletionResult(
            text=content.strip(),
            model=model if isinstance(model, str) and model else requested_model,
            total_tokens=_token_count(usage.get("total_tokens")),
            prompt_tokens=_token_count(usage.get("prompt_tokens")),
            completion_tokens=_token_count(usage.get("completion_tokens")),
        )
        logger.debug(
            "Completion received (model=%s, prompt_tokens=%d, completion_tokens=%d)",
            result.model,
            result.prompt_tokens,
            result.completion_tokens,
        )
        return result


def _token_count(value: Any) -> int:
    """Usage counts are informational; anything that is not a whole number counts as 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float) and value.is_integer():
        return max(int(value), 0)
    return 0


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse model output as a JSON object; None if it is not one."""
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
