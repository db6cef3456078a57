"""
Tests for agent prompt building.
"""

import dataclasses
import random
from datetime import date

import pytest

from src.receptionist.agents import AgentContext, BookingAgent, EnquiryAgent
from src.receptionist.availability import AvailabilityCalendar
from src.receptionist.extract import LeadCapture, LeadFragment, SlotPreference
from src.receptionist.intent import Intent
from src.receptionist.knowledge_base import KnowledgeBase
from src.receptionist.lead_capture import LeadExtractionCache
from src.receptionist.session import CallSession, ConversationRole

from conftest import FakeExtractor


@pytest.fixture
def kb():
    return KnowledgeBase.load()


@pytest.fixture
def calendar():
    return AvailabilityCalendar(today=lambda: date(2025, 3, 12), rng=random.Random(1))


@pytest.mark.asyncio
async def test_booking_prompt_offers_alternate_for_busy_slot(config, kb, calendar):
    text = "I'd like to book a session for tomorrow at 9am"
    extractor = FakeExtractor(
        {text: LeadCapture(slot_preference=SlotPreference(date="tomorrow", time="9", meridiem="am"))}
    )
    cache = LeadExtractionCache(extractor)
    session = CallSession()
    session.add_turn(ConversationRole.CALLER, text)

    agent = BookingAgent(cache, calendar, kb, config)
    prompt = await agent.build_prompt(AgentContext(session=session, latest_user_text=text, intent=Intent.BOOKING))

    assert "Booking Specialist for Melbourne Athletic Development" in prompt
    assert "Requested slot: tomorrow at 9" in prompt
    assert "Slot 2025-03-13T09:00 is busy. Offer 2025-03-13T07:30 instead." in prompt
    assert "High Performance Testing" in prompt
    assert f"Caller: {text}" in prompt


@pytest.mark.asyncio
async def test_booking_prompt_without_slot_preference(config, kb, calendar):
    cache = LeadExtractionCache(FakeExtractor())
    session = CallSession()

    agent = BookingAgent(cache, calendar, kb, config)
    prompt = await agent.build_prompt(
        AgentContext(session=session, latest_user_text="book me in", intent=Intent.BOOKING)
    )

    assert "Requested slot: not clearly specified" in prompt


@pytest.mark.asyncio
async def test_booking_prompt_reports_open_slot(config, kb, calendar):
    text = "friday at 10:30 works"
    cache = LeadExtractionCache(
        FakeExtractor({text: LeadCapture(slot_preference=SlotPreference(date="friday", time="10:30"))})
    )

    agent = BookingAgent(cache, calendar, kb, config)
    prompt = await agent.build_prompt(
        AgentContext(session=CallSession(), latest_user_text=text, intent=Intent.BOOKING)
    )

    assert "Slot 2025-03-14T10:30 is currently OPEN." in prompt


@pytest.mark.asyncio
async def test_prompt_includes_only_last_six_turns(config, kb):
    session = CallSession()
    for i in range(8):
        session.add_turn(ConversationRole.CALLER, f"message {i}")
    session.lead.name = "Sam"

    agent = EnquiryAgent(kb, config)
    prompt = await agent.build_prompt(
        AgentContext(session=session, latest_user_text="Is there parking?", intent=Intent.GENERAL_ENQUIRY)
    )

    assert "message 1" not in prompt
    assert "message 2" in prompt
    assert "message 7" in prompt
    assert "Name: Sam" in prompt
    assert "paid parking" in prompt


@pytest.mark.asyncio
async def test_enquiry_prompt_without_kb_hit(config, kb):
    agent = EnquiryAgent(kb, config)
    prompt = await agent.build_prompt(
        AgentContext(session=CallSession(), latest_user_text="xyzzy", intent=Intent.GENERAL_ENQUIRY)
    )

    assert "Knowledge base hit: None." in prompt
    assert "Lead info so far: Name: unknown" in prompt


@pytest.mark.asyncio
async def test_booking_agent_uses_lead_fields(config, kb, calendar):
    text = "Sam here"
    cache = LeadExtractionCache(FakeExtractor({text: LeadCapture(lead=LeadFragment(name="Sam"))}))
    session = CallSession()
    await cache.merge_lead(session, text)

    prompt = await BookingAgent(cache, calendar, kb, config).build_prompt(
        AgentContext(session=session, latest_user_text=text, intent=Intent.BOOKING)
    )

    assert "Lead info on file: Name: Sam" in prompt


@pytest.mark.asyncio
async def test_prompts_introduce_configured_agent_name(config, kb, calendar):
    config = dataclasses.replace(config, agent_name="Priya")
    context = AgentContext(session=CallSession(), latest_user_text="hello", intent=Intent.BOOKING)

    booking = await BookingAgent(
        LeadExtractionCache(FakeExtractor()), calendar, kb, config
    ).build_prompt(context)
    enquiry = await EnquiryAgent(kb, config).build_prompt(context)

    assert "You are Priya, the Booking Specialist" in booking
    assert "You are Priya, the General Enquiry Specialist" in enquiry
