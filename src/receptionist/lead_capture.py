"""
Per-session lead capture.

Within one turn the same caller utterance is needed twice: once to merge lead
fields into the session and once (for booking) to read the slot preference.
A single-entry cache keyed on the exact text keeps that to one extractor call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import structlog

from src.receptionist.extract import LeadCapture, SlotPreference
from src.receptionist.session import CallSession

logger = structlog.get_logger(__name__)

_OVERWRITE_FIELDS = ("name", "dob", "email", "phone")


class Extractor(Protocol):
    async def extract(self, text: str) -> Optional[LeadCapture]: ...


@dataclass(frozen=True)
class _CacheEntry:
    text: str
    result: Optional[LeadCapture]


class LeadExtractionCache:
    """Single-slot memo in front of the extractor, owned by one call."""

    def __init__(self, extractor: Extractor):
        self._extractor = extractor
        self._entry: Optional[_CacheEntry] = None

    async def get_extraction(self, text: str) -> Optional[LeadCapture]:
        """Return the extraction for `text`, calling the extractor only on a new text."""
        if self._entry is not None and self._entry.text == text:
            return self._entry.result

        result = await self._extractor.extract(text)
        self._entry = _CacheEntry(text=text, result=result)
        return result

    async def merge_lead(self, session: CallSession, text: str) -> bool:
        """
        Merge whatever the utterance reveals into `session.lead`.

        Returns True when any field changed.
        """
        normalized = (text or "").strip()
        if not normalized:
            return False

        extraction = await self.get_extraction(normalized)
        fragment = extraction.lead if extraction else None
        lead = session.lead
        updated = False

        for field_name in _OVERWRITE_FIELDS:
            value = getattr(fragment, field_name) if fragment else None
            if _assign_if_present(lead, field_name, value):
                updated = True

        requested = fragment.request if fragment else None
        if requested and requested.strip():
            if _assign_if_present(lead, "request", requested):
                updated = True
        elif not lead.request or len(normalized) > len(lead.request):
            lead.request = normalized
            updated = True

        if updated:
            logger.debug(
                "Lead updated",
                session_id=session.id,
                fields=[k for k, v in session.lead_snapshot().items() if v],
            )
        return updated

    async def parse_preferred_slot(self, text: str) -> Optional[SlotPreference]:
        normalized = (text or "").strip()
        if not normalized:
            return None

        extraction = await self.get_extraction(normalized)
        return extraction.slot_preference if extraction else None


def _assign_if_present(lead: object, field_name: str, value: Optional[str]) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    trimmed = value.strip()
    if getattr(lead, field_name) == trimmed:
        return False
    setattr(lead, field_name, trimmed)
    return True
