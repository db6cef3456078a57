"""
Structured lead extraction using Instructor.

Extracts structured information from a single caller utterance:
- lead: name, dob, email, phone, request
- slot_preference: date, time, meridiem (for scheduling replies)

Malformed or empty model output is treated as "no result": the extractor
logs and returns None, it never raises.
"""

import math
import re
import time
from typing import Any, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.receptionist.config import get_config

logger = structlog.get_logger(__name__)

_PHONE_RE = re.compile(r"^\+?\d+$")


def _clean_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class LeadFragment(BaseModel):
    """Lead fields found in one utterance. Unknown fields stay None."""

    name: Optional[str] = Field(default=None, description="The caller's name if they mentioned it")
    dob: Optional[str] = Field(default=None, description="Date of birth, YYYY-MM-DD")
    email: Optional[str] = Field(default=None, description="Email address if mentioned")
    phone: Optional[str] = Field(default=None, description="Phone number, digits only")
    request: Optional[str] = Field(default=None, description="What the caller wants")

    @field_validator("name", "dob", "email", "request", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Optional[str]:
        return _clean_text(value)

    @field_validator("phone", mode="before")
    @classmethod
    def _coerce_phone(cls, value: Any) -> Optional[str]:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            return str(int(value)) if math.isfinite(value) else None
        if isinstance(value, str):
            trimmed = value.strip()
            return trimmed if _PHONE_RE.match(trimmed) else None
        return None

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in type(self).model_fields)


class SlotPreference(BaseModel):
    """Caller-expressed scheduling preference. Ephemeral, never stored."""

    date: Optional[str] = Field(default=None, description="today, tomorrow, weekday or YYYY-MM-DD")
    time: Optional[str] = Field(default=None, description="24-hour HH:MM where possible")
    meridiem: Optional[Literal["am", "pm"]] = None

    @field_validator("date", "time", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Optional[str]:
        return _clean_text(value)

    @field_validator("meridiem", mode="before")
    @classmethod
    def _normalize_meridiem(cls, value: Any) -> Optional[str]:
        cleaned = _clean_text(value)
        if cleaned is None:
            return None
        cleaned = cleaned.lower().replace(".", "")
        return cleaned if cleaned in ("am", "pm") else None

    def is_empty(self) -> bool:
        return not (self.date or self.time or self.meridiem)


class LeadCapture(BaseModel):
    """Full extraction result: lead fragment plus optional slot preference."""

    model_config = ConfigDict(populate_by_name=True)

    lead: LeadFragment = Field(default_factory=LeadFragment)
    slot_preference: Optional[SlotPreference] = Field(default=None, alias="slotPreference")

    @field_validator("lead", mode="before")
    @classmethod
    def _default_lead(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, LeadFragment)) else {}

    @field_validator("slot_preference", mode="before")
    @classmethod
    def _drop_invalid_slot(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, SlotPreference)) else None

    @model_validator(mode="after")
    def _drop_empty_slot(self) -> "LeadCapture":
        if self.slot_preference is not None and self.slot_preference.is_empty():
            self.slot_preference = None
        return self

    def is_empty(self) -> bool:
        return self.lead.is_empty() and self.slot_preference is None


def get_system_prompt(config: Optional[Any] = None) -> str:
    """System instruction for lead extraction."""
    if config is None:
        config = get_config()

    return " ".join(
        [
            f"You extract structured lead information for {config.business_name}.",
            "Return strict JSON with exactly two keys: lead and slotPreference.",
            "lead has name, dob, email, phone and request; slotPreference has date, time and meridiem.",
            "If a field is unknown, set it to null. Do not invent extra properties.",
            "Phone numbers MUST be digits only (e.g., '0400111222'), not words ('oh four hundred...').",
            "Dates of birth (DOB) should be in YYYY-MM-DD format.",
            "Times should already be in 24-hour HH:MM where possible.",
        ]
    )


class LeadExtractor:
    """
    Extraction collaborator backed by an Instructor-patched async client.

    Returns None on empty input, provider failure, invalid output, or when
    nothing was found.
    """

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
            logger.info("Instructor client initialized")
        return self._client

    async def extract(self, text: str) -> Optional[LeadCapture]:
        trimmed = (text or "").strip()
        if not trimmed:
            return None

        started = time.time()
        try:
            client = self._get_client()
            capture = await client.chat.completions.create(
                model=self.config.llm_model,
                messages=[
                    {"role": "system", "content": get_system_prompt(self.config)},
                    {"role": "user", "content": f"Extract lead info from:\n{trimmed}"},
                ],
                response_model=LeadCapture,
                temperature=0,
                max_retries=0,
            )
        except Exception as e:
            logger.warning(
                "Lead extraction failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

        if not isinstance(capture, LeadCapture) or capture.is_empty():
            return None

        logger.info(
            "Extraction completed",
            has_name=capture.lead.name is not None,
            has_phone=capture.lead.phone is not None,
            has_email=capture.lead.email is not None,
            has_slot=capture.slot_preference is not None,
            latency_ms=round((time.time() - started) * 1000, 2),
        )
        return capture
