"""
Streaming text generation with bounded retry.

Provides:
- Startup model validation (Groq)
- OpenAI-compatible async client factory shared by generation, intent
  classification and lead extraction
- Stream creation wrapped in a linear-backoff retry policy for transient
  provider failures (rate limits, 5xx)
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Awaitable, Callable, List, Optional

import httpx
import structlog
from openai import AsyncOpenAI

from src.receptionist.config import get_config

logger = structlog.get_logger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_CODE_IN_MESSAGE_RE = re.compile(r"(?:\"code\"\s*:\s*|Error code:\s*)(\d{3})")


class GenerationError(Exception):
    """Raised when a generation stream cannot be created."""

    def __init__(self, message: str, *, attempts: int = 0, retryable: bool = False):
        super().__init__(message)
        self.attempts = attempts
        self.retryable = retryable


def create_async_client(config: Optional[Any] = None) -> AsyncOpenAI:
    """Build an AsyncOpenAI client for the configured provider."""
    if config is None:
        config = get_config()

    provider = (config.llm_provider or "groq").strip().lower()
    if provider == "openai":
        return AsyncOpenAI(api_key=config.openai_api_key)

    # Use OpenAI client with Groq base URL
    return AsyncOpenAI(api_key=config.groq_api_key, base_url=GROQ_BASE_URL)


def _coerce_code(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def extract_error_code(error: BaseException) -> Optional[int]:
    """
    Best-effort extraction of an HTTP-like status code from a provider error.

    Looks at `status_code`, `code`, a nested `error.code`, a JSON `body`, and
    finally a `"code": NNN` / `Error code: NNN` pattern inside the message.
    """
    candidates: List[Any] = [
        getattr(error, "status_code", None),
        getattr(error, "code", None),
    ]

    nested = getattr(error, "error", None)
    if isinstance(nested, dict):
        candidates.append(nested.get("code"))
    elif nested is not None:
        candidates.append(getattr(nested, "code", None))

    body = getattr(error, "body", None)
    if isinstance(body, dict):
        inner = body.get("error")
        if isinstance(inner, dict):
            candidates.append(inner.get("code"))
        candidates.append(body.get("code"))

    for candidate in candidates:
        code = _coerce_code(candidate)
        if code is not None:
            return code

    messages = [str(error)]
    if isinstance(nested, dict) and isinstance(nested.get("message"), str):
        messages.append(nested["message"])

    for message in messages:
        match = _CODE_IN_MESSAGE_RE.search(message or "")
        if match:
            return int(match.group(1))

    return None


def is_retryable_error(error: BaseException) -> bool:
    """Transient = rate limited or server-side failure."""
    code = extract_error_code(error)
    return code is not None and code in RETRYABLE_STATUS_CODES


@dataclass
class RetryPolicy:
    """
    Bounded retry with linear backoff: attempt_index x backoff_ms.

    Only the *creation* of a stream goes through this policy; fragments that
    fail mid-stream are not retried.
    """
    max_attempts: int = 3
    backoff_ms: int = 400
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds after failed attempt number `attempt` (1-based)."""
        return attempt * self.backoff_ms / 1000.0

    async def run(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                retryable = is_retryable_error(e)

                if not retryable or attempt == self.max_attempts:
                    logger.error(
                        "Generation stream creation failed",
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        retryable=retryable,
                        error_code=extract_error_code(e),
                        error=str(e),
                    )
                    raise GenerationError(
                        str(e) or type(e).__name__,
                        attempts=attempt,
                        retryable=retryable,
                    ) from e

                delay = self.delay_for(attempt)
                logger.warning(
                    "Generation stream failed, retrying",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    backoff_ms=round(delay * 1000),
                    error_code=extract_error_code(e),
                )
                await self.sleep(delay)

        raise GenerationError(
            str(last_error) if last_error else "Generation stream failed",
            attempts=self.max_attempts,
        )


async def validate_groq_model(api_key: str, model_name: str) -> bool:
    """
    Validate that the configured Groq model exists.

    Calls GET https://api.groq.com/openai/v1/models to check.

    Raises:
        SystemExit: If model doesn't exist (fail fast)
    """
    logger.info("Validating Groq model", model=model_name)

    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(
                f"{GROQ_BASE_URL}/models",
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=10.0,
            )
        except httpx.RequestError as e:
            logger.error("Failed to connect to Groq API", error=str(e))
            raise SystemExit(
                f"Failed to connect to Groq API: {e}\n"
                "Check your network connection and GROQ_API_KEY."
            )

    if response.status_code != 200:
        logger.error(
            "Failed to fetch Groq models",
            status_code=response.status_code,
            response=response.text[:200],
        )
        raise SystemExit(
            f"Failed to validate Groq model. API returned status {response.status_code}. "
            "Check your GROQ_API_KEY."
        )

    model_ids = [m.get("id") for m in response.json().get("data", [])]
    if model_name not in model_ids:
        available = ", ".join(sorted(str(m) for m in model_ids)[:10])
        logger.error(
            "Groq model not found",
            requested_model=model_name,
            available_models=available,
        )
        raise SystemExit(
            f"GROQ_MODEL '{model_name}' not found in available models.\n"
            f"Available models include: {available}\n"
            "Please update GROQ_MODEL in your .env file."
        )

    logger.info("Groq model validated successfully", model=model_name)
    return True


class StreamingLLM:
    """
    Streaming generator over an OpenAI-compatible chat API.

    The prompt is fully built by the routed agent, so it is sent as a single
    user message with no extra history.
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        client: Optional[AsyncOpenAI] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if config is None:
            config = get_config()

        self.config = config
        self.model = config.llm_model
        self._client = client or create_async_client(config)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.generation_max_attempts,
            backoff_ms=config.generation_backoff_ms,
        )
        self.last_first_fragment_ms: float = 0.0

    async def validate_model(self) -> bool:
        """Validate the configured model exists (Groq only)."""
        if self.config.llm_provider != "groq":
            return True
        return await validate_groq_model(self.config.groq_api_key, self.model)

    async def _create_stream(self, prompt: str) -> Any:
        return await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            stream=True,
            max_tokens=self.config.llm_max_tokens,
            temperature=self.config.llm_temperature,
        )

    async def generate_streaming(self, prompt: str) -> AsyncGenerator[str, None]:
        """
        Generate a streaming response.

        Yields:
            Non-empty text fragments in the order the provider produces them

        Raises:
            GenerationError: if the stream could not be created
        """
        started = time.time()
        self.last_first_fragment_ms = 0.0

        stream = await self.retry_policy.run(lambda: self._create_stream(prompt))

        async for chunk in stream:
            if not chunk.choices:
                continue
            text = chunk.choices[0].delta.content
            if not text:
                continue
            if not self.last_first_fragment_ms:
                self.last_first_fragment_ms = (time.time() - started) * 1000
            yield text


def create_llm(config: Optional[Any] = None) -> StreamingLLM:
    """Create a streaming LLM for one call."""
    return StreamingLLM(config=config)


async def initialize_llm(config: Optional[Any] = None) -> StreamingLLM:
    """
    Initialize and validate the LLM at startup.
    """
    llm = create_llm(config)
    await llm.validate_model()
    return llm
