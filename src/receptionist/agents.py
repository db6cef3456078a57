"""
Specialist agents and intent routing.

Each agent turns the current session plus the latest caller utterance into a
single generation prompt. The router maps the classified intent onto exactly
one agent; there is no further branching.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from src.receptionist.availability import AvailabilityCalendar
from src.receptionist.config import get_config
from src.receptionist.intent import Intent, IntentClassifier
from src.receptionist.knowledge_base import KnowledgeBase
from src.receptionist.lead_capture import LeadExtractionCache
from src.receptionist.session import CallSession

logger = structlog.get_logger(__name__)

RECENT_TURNS_IN_PROMPT = 6


@dataclass
class AgentContext:
    session: CallSession
    latest_user_text: str
    intent: Intent


class Agent(ABC):
    name: str = ""
    description: str = ""

    @abstractmethod
    async def build_prompt(self, context: AgentContext) -> str:
        raise NotImplementedError


class BookingAgent(Agent):
    """Handles appointment requests, availability checks, and lead capture."""

    name = "booking_agent"
    description = "Handles appointment requests, availability checks, and lead capture."

    def __init__(
        self,
        lead_cache: LeadExtractionCache,
        calendar: AvailabilityCalendar,
        knowledge_base: KnowledgeBase,
        config: Optional[Any] = None,
    ):
        self.config = config or get_config()
        self._lead_cache = lead_cache
        self._calendar = calendar
        self._kb = knowledge_base

    async def build_prompt(self, context: AgentContext) -> str:
        session = context.session
        slot_preference = await self._lead_cache.parse_preferred_slot(context.latest_user_text)
        availability = await self._calendar.check_availability(slot_preference)

        if slot_preference:
            slot_summary = (
                f"{slot_preference.date or 'unspecified date'} at "
                f"{slot_preference.time or 'unspecified time'}"
            )
        else:
            slot_summary = "not clearly specified"

        if availability.available:
            availability_summary = f"Slot {availability.slot} is currently OPEN."
        else:
            availability_summary = (
                f"Slot {availability.slot} is busy. "
                f"Offer {availability.suggestion or 'another time'} instead."
            )

        logger.debug(
            "Availability checked",
            slot=availability.slot,
            available=availability.available,
            suggestion=availability.suggestion,
        )

        return f"""
You are {self.config.agent_name}, the Booking Specialist for {self.config.business_name}.
Lead info on file: {session.format_lead_summary()}
Requested slot: {slot_summary}
Availability check: {availability_summary}
Services you can schedule: {self._kb.list_services()}

Conversation context:
{session.format_transcript(RECENT_TURNS_IN_PROMPT)}

Caller just said: "{context.latest_user_text}"

Tasks:
1. Clarify which service they need and confirm the preferred date/time.
2. Collect any missing lead details (name, DOB, email, phone) conversationally.
3. If availability is open, confirm the slot and ask for permission to book. If busy, offer the suggestion.
4. Keep replies under 2 short sentences for latency. Empathetic, confident tone.
5. Do not repeat questions already asked in this conversation; build on their previous answers instead.
"""


class EnquiryAgent(Agent):
    """Handles general business information and FAQs."""

    name = "enquiry_agent"
    description = "Handles general business information and FAQs."

    def __init__(self, knowledge_base: KnowledgeBase, config: Optional[Any] = None):
        self.config = config or get_config()
        self._kb = knowledge_base

    async def build_prompt(self, context: AgentContext) -> str:
        session = context.session
        kb_hit = self._kb.search(context.latest_user_text)

        return f"""
You are {self.config.agent_name}, the General Enquiry Specialist for {self.config.business_name}.
Brand summary: {self._kb.business_summary()}
Services: {self._kb.list_services()}
Knowledge base hit: {kb_hit or "None. Use best effort from summary/services above."}
Lead info so far: {session.format_lead_summary()}

Conversation so far:
{session.format_transcript(RECENT_TURNS_IN_PROMPT)}

Caller just asked: "{context.latest_user_text}"

Respond in one or two crisp sentences:
- Provide accurate information from the knowledge base when available.
- Invite the caller to share their goal so you can route them to booking if needed.
- Continue collecting missing lead fields naturally.
"""


class AgentRouter:
    """Classifies an utterance and picks the agent that answers it."""

    def __init__(self, classifier: IntentClassifier, booking: Agent, enquiry: Agent):
        self._classifier = classifier
        self.booking = booking
        self.enquiry = enquiry

    async def classify_intent(self, text: str) -> Intent:
        return await self._classifier.classify(text)

    def route(self, intent: Intent) -> Agent:
        return self.booking if intent == Intent.BOOKING else self.enquiry
