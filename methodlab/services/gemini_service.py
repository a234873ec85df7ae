"""
Gemini structured generation service.

Handles:
- One schema-constrained generate call per request, with the role
  instruction sent as the model's system instruction
- Grounded (search tool) calls with citation metadata
- Per-call timeout
- Retry logic with exponential backoff for transient errors
- Payload parsing and schema validation under the configured parse policy
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from methodlab.config import settings
from methodlab.errors import (
    GenerationError,
    GenerationTimeout,
    OracleRejection,
    SchemaViolation,
    TransportError,
)
from methodlab.utils.json_payload import parse_json_payload
from methodlab.utils.schema_validator import (
    apply_optional_defaults,
    check_schema_descriptor,
    validate_payload,
)

logger = logging.getLogger(__name__)


# SDK exceptions that indicate transient/retryable errors
RETRYABLE_EXCEPTIONS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.TooManyRequests,
    google_exceptions.ResourceExhausted,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.BadGateway,
    google_exceptions.GatewayTimeout,
    ConnectionError,
)

# SDK exceptions that indicate the oracle refused the request (fail fast)
REJECTION_EXCEPTIONS = (
    google_exceptions.BadRequest,
    google_exceptions.Unauthorized,
    google_exceptions.Forbidden,
    google_exceptions.NotFound,
    google_exceptions.FailedPrecondition,
)

# Error patterns that indicate transient/retryable errors
RETRYABLE_ERROR_PATTERNS = (
    "503",
    "ServiceUnavailable",
    "service unavailable",
    "Connection reset",
    "connection reset",
    "429",
    "ResourceExhausted",
    "resource exhausted",
    "rate limit",
    "quota",
    "504",
    "DeadlineExceeded",
    "deadline exceeded",
    "timeout",
    "Timeout",
    "Connection refused",
    "connection refused",
    "temporarily unavailable",
    "UNAVAILABLE",
    "overloaded",
)

# Error patterns that indicate non-retryable errors (fail fast)
NON_RETRYABLE_ERROR_PATTERNS = (
    "401",
    "Unauthorized",
    "unauthorized",
    "403",
    "Forbidden",
    "forbidden",
    "400",
    "Bad Request",
    "bad request",
    "InvalidArgument",
    "invalid argument",
    "PermissionDenied",
    "permission denied",
)

# Finish reasons that mean the oracle withheld its answer
BLOCKED_FINISH_REASONS = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}


def _is_retryable_error(error: Exception) -> bool:
    """
    Check if an error is retryable (transient) or should fail fast.

    Args:
        error: The exception to check

    Returns:
        True if the error is retryable, False otherwise
    """
    if isinstance(error, REJECTION_EXCEPTIONS):
        return False
    if isinstance(error, RETRYABLE_EXCEPTIONS):
        return True

    error_str = str(error)

    # Check for non-retryable patterns first (fail fast)
    for pattern in NON_RETRYABLE_ERROR_PATTERNS:
        if pattern in error_str:
            return False

    # Check for retryable patterns
    for pattern in RETRYABLE_ERROR_PATTERNS:
        if pattern in error_str:
            return True

    # Default: treat unknown errors as non-retryable to avoid masking bugs
    return False


def classify_error(error: Exception, stage: str) -> GenerationError:
    """Map an SDK or transport exception onto the error taxonomy."""
    if _is_retryable_error(error):
        return TransportError(f"Gemini unavailable: {error}", stage=stage, cause=error)
    return OracleRejection(f"Gemini rejected the request: {error}", stage=stage, cause=error)


@dataclass
class StructuredResult:
    """Parsed payload of one generation call."""
    data: Dict[str, Any]
    raw_text: str = ""
    grounding_chunks: List[Dict[str, Optional[str]]] = field(default_factory=list)


class GeminiService:
    """Structured generation client for the Gemini API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        parse_policy: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_wait: Optional[Any] = None,
        model_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize Gemini API client.

        Args:
            api_key: Gemini API key (default from settings)
            model_name: Model identifier (default from settings)
            parse_policy: "strict" or "lenient" (default from settings)
            timeout_seconds: Per-call timeout (default from settings)
            max_attempts: Attempts for transient errors (default from settings)
            retry_wait: tenacity wait strategy (default exponential with jitter)
            model_factory: Builds a model from (system_instruction, tools);
                defaults to genai.GenerativeModel
        """
        self.model_name = model_name or settings.gemini_model
        self.parse_policy = parse_policy or settings.parse_policy
        if self.parse_policy not in ("strict", "lenient"):
            raise ValueError(f"Unknown parse policy: {self.parse_policy}")
        self.timeout_seconds = timeout_seconds or settings.request_timeout_seconds
        self.max_attempts = max_attempts or settings.api_retry_max_attempts
        self.retry_wait = retry_wait or wait_exponential_jitter(
            initial=settings.api_retry_base_delay,
            max=settings.api_retry_max_delay,
            exp_base=settings.api_retry_exponential_base,
        )

        if model_factory is None:
            genai.configure(api_key=api_key or settings.gemini_api_key)
            model_factory = self._default_model_factory
        self._model_factory = model_factory
        self._models: Dict[Tuple[str, bool], Any] = {}

    def _default_model_factory(self, system_instruction: str, tools: Optional[List[Any]]):
        return genai.GenerativeModel(
            self.model_name,
            system_instruction=system_instruction,
            tools=tools,
        )

    def _model_for(self, role_instruction: str, grounded: bool):
        """Get or create the model instance for a role instruction."""
        key = (role_instruction, grounded)
        if key not in self._models:
            tools = [settings.search_tool] if grounded else None
            self._models[key] = self._model_factory(role_instruction, tools)
        return self._models[key]

    async def generate(
        self,
        prompt_body: str,
        role_instruction: str,
        schema: Dict[str, Any],
        *,
        stage: str = "generate",
        grounded: bool = False,
    ) -> StructuredResult:
        """
        Run one structured generation call.

        Args:
            prompt_body: Per-call prompt
            role_instruction: Persistent behavioural directive (system instruction)
            schema: Gemini schema descriptor for the response
            stage: Label carried by any raised GenerationError
            grounded: Attach the search tool; the schema is then enforced
                locally only since the API does not combine the two

        Returns:
            StructuredResult with the validated payload

        Raises:
            ValueError: If prompt_body is empty or schema is malformed
            TransportError: If the oracle stays unreachable after retries
            OracleRejection: If the oracle refuses the request
            SchemaViolation: If the payload does not satisfy the schema
        """
        if not prompt_body or not prompt_body.strip():
            raise ValueError("prompt_body must be non-empty")
        check_schema_descriptor(schema)

        if grounded:
            generation_config = genai.GenerationConfig(
                temperature=settings.gemini_temperature,
                max_output_tokens=settings.gemini_max_output_tokens,
            )
        else:
            generation_config = genai.GenerationConfig(
                temperature=settings.gemini_temperature,
                max_output_tokens=settings.gemini_max_output_tokens,
                response_mime_type="application/json",
                response_schema=schema,
            )

        model = self._model_for(role_instruction, grounded)
        logger.info(f"[{stage}] Calling {self.model_name} (grounded={grounded})")

        response = await self._call_with_retry(model, prompt_body, generation_config, stage)

        text = self._extract_text(response, stage)
        data = self._decode(text, schema, stage)
        chunks = self._grounding_chunks(response) if grounded else []

        logger.info(f"[{stage}] Structured payload accepted ({len(text)} chars)")
        return StructuredResult(data=data, raw_text=text, grounding_chunks=chunks)

    async def _call_with_retry(self, model, prompt_body: str, generation_config, stage: str):
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(TransportError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._call_once(model, prompt_body, generation_config, stage)
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        f"[{stage}] API call succeeded on attempt "
                        f"{attempt.retry_state.attempt_number}"
                    )
        return response

    async def _call_once(self, model, prompt_body: str, generation_config, stage: str):
        try:
            return await asyncio.wait_for(
                model.generate_content_async(
                    prompt_body,
                    generation_config=generation_config,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise GenerationTimeout(
                f"Gemini call timed out after {self.timeout_seconds:.0f}s",
                stage=stage,
                cause=e,
            )
        except GenerationError:
            raise
        except Exception as e:
            error = classify_error(e, stage)
            if isinstance(error, OracleRejection):
                logger.error(f"[{stage}] Non-retryable error (failing fast): {e}")
            raise error

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Retryable error on attempt {retry_state.attempt_number}/{self.max_attempts}: "
            f"{error}. Retrying in {delay:.1f}s..."
        )

    def _extract_text(self, response: Any, stage: str) -> str:
        """Extract payload text, raising OracleRejection for blocked responses."""
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None)
        if block_reason:
            raise OracleRejection(f"Prompt blocked by Gemini: {block_reason}", stage=stage)

        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return ""

        candidate = candidates[0]
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) or []
        text = "".join(getattr(part, "text", "") or "" for part in parts)

        if not text.strip():
            finish_reason = getattr(candidate, "finish_reason", None)
            reason_name = getattr(finish_reason, "name", str(finish_reason or ""))
            if reason_name in BLOCKED_FINISH_REASONS:
                raise OracleRejection(f"Response withheld by Gemini: {reason_name}", stage=stage)

        return text

    def _decode(self, text: str, schema: Dict[str, Any], stage: str) -> Dict[str, Any]:
        """Parse and validate a payload under the configured parse policy."""
        try:
            data = parse_json_payload(text)
        except ValueError as e:
            if self.parse_policy != "lenient":
                raise SchemaViolation(f"Unparsable payload: {e}", stage=stage, cause=e)
            logger.warning(f"[{stage}] Unparsable payload read as empty object: {e}")
            data = {}

        data = self._wrap_bare_array(data, schema)

        if self.parse_policy == "lenient":
            data = apply_optional_defaults(data, schema)

        is_valid, errors = validate_payload(data, schema)
        if not is_valid:
            logger.error(f"[{stage}] Payload failed schema validation: {errors[:5]}")
            raise SchemaViolation(
                f"Payload violates response schema ({len(errors)} errors)",
                stage=stage,
                errors=errors,
            )
        return data

    @staticmethod
    def _wrap_bare_array(data: Any, schema: Dict[str, Any]) -> Any:
        """Accept a bare array for a schema whose only property is an array."""
        properties = schema.get("properties", {})
        if isinstance(data, list) and len(properties) == 1:
            name, child = next(iter(properties.items()))
            if child.get("type") == "ARRAY":
                return {name: data}
        return data

    @staticmethod
    def _grounding_chunks(response: Any) -> List[Dict[str, Optional[str]]]:
        """Collect web citations from the first candidate's grounding metadata."""
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return []

        metadata = getattr(candidates[0], "grounding_metadata", None)
        chunks = getattr(metadata, "grounding_chunks", None) or []

        sources = []
        for chunk in chunks:
            web = getattr(chunk, "web", None)
            sources.append({
                "title": getattr(web, "title", None) or None,
                "uri": getattr(web, "uri", None) or None,
            })
        return sources
