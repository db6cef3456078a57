"""
In-memory availability calendar for booking replies.

One instance is owned by the server process and handed to each call's booking
agent. It is unbounded: entries are never evicted, which is only acceptable
because the process is short-lived.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

import structlog

from src.receptionist.config import DEFAULT_BUSY_SLOTS, DEFAULT_SLOT_TEMPLATES
from src.receptionist.extract import SlotPreference
from src.receptionist.session import LeadInfo

logger = structlog.get_logger(__name__)

DEFAULT_TIME = "09:00"
SUGGESTION_LOOKAHEAD_DAYS = 5

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)?$", re.IGNORECASE)


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    slot: str
    suggestion: Optional[str] = None


@dataclass(frozen=True)
class BookingConfirmation:
    confirmation: str
    slot: str


def resolve_date(raw: Optional[str], today: Optional[date] = None) -> str:
    """
    Resolve a spoken date to YYYY-MM-DD.

    Understands today, tomorrow, weekday names ("friday" = next occurrence,
    never today), "next <weekday>" (one week further) and ISO dates. Anything
    else resolves to today.
    """
    base = today or date.today()
    if not raw:
        return base.isoformat()

    lower = raw.strip().lower()
    if lower == "today":
        return base.isoformat()
    if lower == "tomorrow":
        return (base + timedelta(days=1)).isoformat()

    weekday_name = lower[len("next "):] if lower.startswith("next ") else lower
    if weekday_name in _WEEKDAYS:
        diff = _WEEKDAYS.index(weekday_name) - base.weekday()
        if diff <= 0:
            diff += 7
        if lower.startswith("next "):
            diff += 7
        return (base + timedelta(days=diff)).isoformat()

    if _ISO_DATE_RE.match(lower):
        return lower

    return base.isoformat()


def to_24_hour(raw: Optional[str], meridiem: Optional[str] = None) -> Optional[str]:
    """
    Normalize "9", "9:30", "9am", "21:00" (+ optional meridiem) to HH:MM.

    Returns None for empty input and the trimmed text when it cannot be parsed.
    """
    if not raw or not raw.strip():
        return None

    text = raw.strip()
    match = _TIME_RE.match(text)
    if not match:
        return text

    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = (match.group(3) or meridiem or "").lower().replace(".", "")

    if suffix == "pm" and hour < 12:
        hour += 12
    elif suffix == "am" and hour == 12:
        hour = 0

    if hour > 23 or minute > 59:
        return text
    return f"{hour:02d}:{minute:02d}"


class AvailabilityCalendar:
    """Busy slots per date, with default busy times for untouched dates."""

    def __init__(
        self,
        slot_templates: Iterable[str] = DEFAULT_SLOT_TEMPLATES,
        default_busy: Iterable[str] = DEFAULT_BUSY_SLOTS,
        today: Optional[Callable[[], date]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.slot_templates: List[str] = list(slot_templates)
        self.default_busy: Set[str] = set(default_busy)
        self._today = today or date.today
        self._rng = rng or random.Random()
        self._booked: Dict[str, Set[str]] = {}

    def busy_slots(self, day: str) -> Set[str]:
        if day in self._booked:
            return self._booked[day]
        return set(self.default_busy)

    async def check_availability(self, preference: Optional[SlotPreference] = None) -> AvailabilityResult:
        day = resolve_date(preference.date if preference else None, self._today())
        time = to_24_hour(
            preference.time if preference else None,
            preference.meridiem if preference else None,
        ) or DEFAULT_TIME
        slot = f"{day}T{time}"

        if time not in self.busy_slots(day):
            return AvailabilityResult(available=True, slot=slot)

        suggestion = self._find_next_open_slot(day) or f"{day}T{self._suggest_fallback(time)}"
        return AvailabilityResult(available=False, slot=slot, suggestion=suggestion)

    async def book_appointment(self, slot: str, lead: LeadInfo) -> BookingConfirmation:
        day, _, time = slot.partition("T")
        booked = self._booked.setdefault(day, set(self.default_busy))
        booked.add(time)

        confirmation = f"MAD-{day.replace('-', '')}-{self._rng.randint(100, 999)}"
        logger.info(
            "Booked slot",
            slot=slot,
            confirmation=confirmation,
            has_name=bool(lead.name),
            has_phone=bool(lead.phone),
        )
        return BookingConfirmation(confirmation=confirmation, slot=slot)

    def _find_next_open_slot(self, day: str) -> Optional[str]:
        try:
            start = date.fromisoformat(day)
        except ValueError:
            return None
        for offset in range(SUGGESTION_LOOKAHEAD_DAYS):
            candidate = (start + timedelta(days=offset)).isoformat()
            busy = self.busy_slots(candidate)
            for template in self.slot_templates:
                if template not in busy:
                    return f"{candidate}T{template}"
        return None

    def _suggest_fallback(self, current: str) -> str:
        if current in self.slot_templates:
            idx = self.slot_templates.index(current)
            if idx + 1 < len(self.slot_templates):
                return self.slot_templates[idx + 1]
        return self.slot_templates[0] if self.slot_templates else DEFAULT_TIME
