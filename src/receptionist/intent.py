"""
Intent classification for caller utterances.

Two labels only. Anything that goes wrong (no key, provider error, invalid
label, non-JSON output) silently resolves to the default label.
"""

from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from src.receptionist.config import get_config

logger = structlog.get_logger(__name__)


class Intent(str, Enum):
    BOOKING = "booking"
    GENERAL_ENQUIRY = "general_enquiry"


DEFAULT_INTENT = Intent.GENERAL_ENQUIRY


class IntentClassification(BaseModel):
    intent: Intent


def get_system_prompt(config: Optional[Any] = None) -> str:
    if config is None:
        config = get_config()

    return " ".join(
        [
            f"You classify customer utterances for {config.business_name}.",
            "Return a single JSON object with exactly one field:",
            '- intent: must be either "booking" or "general_enquiry"',
            "Never invent new labels or additional properties.",
            "Prefer 'booking' for scheduling, rescheduling, or availability requests; "
            "otherwise use 'general_enquiry'.",
        ]
    )


class IntentClassifier:
    """Classifier collaborator backed by an Instructor-patched async client."""

    def __init__(self, config: Optional[Any] = None, client: Optional[Any] = None):
        self.config = config or get_config()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import instructor

            from src.receptionist.llm import create_async_client

            self._client = instructor.from_openai(
                create_async_client(self.config),
                mode=instructor.Mode.JSON,
            )
        return self._client

    async def classify(self, text: str) -> Intent:
        normalized = (text or "").strip()
        if not normalized:
            return DEFAULT_INTENT

        try:
            client = self._get_client()
            result = await client.chat.completions.create(
                model=self.config.llm_model,
                messages=[
                    {"role": "system", "content": get_system_prompt(self.config)},
                    {"role": "user", "content": f"Classify this message:\n{normalized}"},
                ],
                response_model=IntentClassification,
                temperature=0,
                max_retries=0,
            )
        except Exception as e:
            logger.warning(
                "Intent classification failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            return DEFAULT_INTENT

        intent = getattr(result, "intent", None)
        try:
            return Intent(intent)
        except ValueError:
            logger.warning("Intent classification returned invalid intent", intent=str(intent))
            return DEFAULT_INTENT
