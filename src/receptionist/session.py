"""
Per-call session state: conversation history and captured lead fields.

A session is owned by exactly one call pipeline. All mutation happens inside
that pipeline's turn worker, so no locking is needed here.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional

DEFAULT_MAX_TURNS = 50

LEAD_FIELDS = ("name", "dob", "email", "phone", "request")


class ConversationRole(str, Enum):
    CALLER = "caller"
    AGENT = "agent"


@dataclass(frozen=True)
class ConversationTurn:
    """A single utterance in the conversation."""
    role: ConversationRole
    text: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class LeadInfo:
    """Structured caller data captured over the call."""
    name: Optional[str] = None
    dob: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    request: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


class CallSession:
    """Conversation history (bounded ring) plus lead fields for one call."""

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS):
        self.id: str = str(uuid.uuid4())
        self.created_at: float = time.time()
        if max_turns < 1:
            raise ValueError(f"max_turns must be at least 1, got {max_turns}")
        self.max_turns = max_turns
        self.lead = LeadInfo()
        self._turns: List[ConversationTurn] = []

    def add_turn(self, role: ConversationRole, text: str) -> bool:
        """Append a turn; blank text is ignored. Returns whether a turn was stored."""
        if not text or not text.strip():
            return False

        self._turns.append(ConversationTurn(role=ConversationRole(role), text=text))
        if len(self._turns) > self.max_turns:
            self._turns = self._turns[-self.max_turns:]
        return True

    @property
    def turns(self) -> List[ConversationTurn]:
        return list(self._turns)

    def recent_conversation(self, limit: Optional[int] = None) -> List[ConversationTurn]:
        if limit is None:
            return list(self._turns)
        if limit <= 0:
            return []
        return self._turns[-limit:]

    def latest_caller_text(self) -> str:
        for turn in reversed(self._turns):
            if turn.role == ConversationRole.CALLER:
                return turn.text
        return ""

    def format_transcript(self, limit: int = 6) -> str:
        """Render the most recent turns as `Caller:` / `Agent:` lines for prompting."""
        lines = []
        for turn in self.recent_conversation(limit):
            speaker = "Caller" if turn.role == ConversationRole.CALLER else "Agent"
            lines.append(f"{speaker}: {turn.text}")
        return "\n".join(lines)

    def format_lead_summary(self) -> str:
        lead = self.lead
        return ", ".join(
            [
                f"Name: {lead.name or 'unknown'}",
                f"DOB: {lead.dob or 'unknown'}",
                f"Email: {lead.email or 'unknown'}",
                f"Phone: {lead.phone or 'unknown'}",
                f"Request: {lead.request or 'unspecified'}",
            ]
        )

    def lead_snapshot(self) -> Dict[str, Optional[str]]:
        """Copy of the lead fields, safe to serialize after further mutation."""
        return self.lead.to_dict()

    def __len__(self) -> int:
        return len(self._turns)
