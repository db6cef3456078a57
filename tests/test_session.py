"""
Tests for per-call session state.
"""

import pytest

from src.receptionist.session import CallSession, ConversationRole, LeadInfo


class TestTurns:
    """Tests for conversation history."""

    def test_blank_text_is_never_stored(self):
        session = CallSession()

        assert session.add_turn(ConversationRole.CALLER, "") is False
        assert session.add_turn(ConversationRole.CALLER, "   ") is False
        assert len(session) == 0

    def test_history_is_bounded_to_newest_turns(self):
        session = CallSession(max_turns=50)
        for i in range(55):
            session.add_turn(ConversationRole.CALLER, f"utterance {i}")

        turns = session.turns
        assert len(turns) == 50
        assert turns[0].text == "utterance 5"
        assert turns[-1].text == "utterance 54"

    @pytest.mark.parametrize("max_turns", [0, -3])
    def test_non_positive_turn_limit_rejected(self, max_turns):
        with pytest.raises(ValueError):
            CallSession(max_turns=max_turns)

    def test_single_turn_limit_keeps_latest(self):
        session = CallSession(max_turns=1)
        for i in range(60):
            session.add_turn(ConversationRole.CALLER, f"utterance {i}")

        assert [t.text for t in session.turns] == ["utterance 59"]

    def test_roles_accept_plain_strings(self):
        session = CallSession()
        session.add_turn("agent", "Hello")

        assert session.turns[0].role == ConversationRole.AGENT

    def test_recent_conversation_returns_copy(self):
        session = CallSession()
        session.add_turn(ConversationRole.CALLER, "one")
        session.add_turn(ConversationRole.AGENT, "two")

        recent = session.recent_conversation()
        recent.clear()

        assert len(session) == 2
        assert [t.text for t in session.recent_conversation(1)] == ["two"]
        assert session.recent_conversation(0) == []

    def test_latest_caller_text(self):
        session = CallSession()
        assert session.latest_caller_text() == ""

        session.add_turn(ConversationRole.CALLER, "first")
        session.add_turn(ConversationRole.AGENT, "reply")
        session.add_turn(ConversationRole.CALLER, "second")
        session.add_turn(ConversationRole.AGENT, "reply again")

        assert session.latest_caller_text() == "second"

    def test_format_transcript_labels_speakers(self):
        session = CallSession()
        session.add_turn(ConversationRole.CALLER, "Do you have parking?")
        session.add_turn(ConversationRole.AGENT, "Yes, under the building.")

        assert session.format_transcript() == (
            "Caller: Do you have parking?\nAgent: Yes, under the building."
        )


class TestLead:
    """Tests for lead summaries and snapshots."""

    def test_summary_uses_defaults(self):
        session = CallSession()

        assert session.format_lead_summary() == (
            "Name: unknown, DOB: unknown, Email: unknown, Phone: unknown, Request: unspecified"
        )

    def test_snapshot_is_detached_from_session(self):
        session = CallSession()
        session.lead.name = "Sam"

        snapshot = session.lead_snapshot()
        session.lead.name = "Alex"

        assert snapshot == {
            "name": "Sam",
            "dob": None,
            "email": None,
            "phone": None,
            "request": None,
        }

    def test_sessions_have_unique_ids(self):
        assert CallSession().id != CallSession().id

    def test_lead_info_to_dict(self):
        lead = LeadInfo(name="Sam", phone="0400111222")
        assert lead.to_dict()["phone"] == "0400111222"
