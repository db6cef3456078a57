"""
Business knowledge base for enquiry prompts.

Loads a JSON document describing the business (address, hours, contact,
values, services, FAQs) and answers keyword lookups so the agent can quote
facts instead of inventing them.

Scoring is deliberately simple: an entry scores the summed length of every
keyword found in the query; the highest score wins.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class KBEntry:
    title: str
    answer: str
    keywords: Tuple[str, ...]

    def score(self, query_lower: str) -> int:
        return sum(len(k) for k in self.keywords if k and k in query_lower)


def default_knowledge_base_path() -> Path:
    # src/receptionist/knowledge_base.py -> src/receptionist/data/
    return Path(__file__).resolve().parent / "data" / "knowledge_base.json"


def resolve_knowledge_base_path(path: Optional[str] = None) -> Path:
    """
    Resolve a knowledge base path.

    Relative paths are interpreted relative to the project root.
    """
    if not path:
        return default_knowledge_base_path()

    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return Path(__file__).resolve().parents[2] / candidate


class KnowledgeBase:
    """Keyword-searchable view over one business document."""

    def __init__(self, data: Dict[str, Any]):
        self._data = data
        self._entries = self._build_entries(data)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "KnowledgeBase":
        file_path = resolve_knowledge_base_path(path)
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning("Knowledge base not found", path=str(file_path))
            data = {}
        except json.JSONDecodeError as e:
            logger.error("Knowledge base is not valid JSON", path=str(file_path), error=str(e))
            data = {}

        kb = cls(data if isinstance(data, dict) else {})
        logger.info("Knowledge base loaded", path=str(file_path), entries=len(kb))
        return kb

    @staticmethod
    def _build_entries(data: Dict[str, Any]) -> List[KBEntry]:
        entries: List[KBEntry] = []

        if data.get("address"):
            entries.append(
                KBEntry(
                    title="Address",
                    answer=f"We are located at {data['address']}.",
                    keywords=("where", "address", "located", "location", "parliament", "collins"),
                )
            )

        hours = data.get("hours") or {}
        if hours:
            parts = [hours.get(k) for k in ("weekdays", "saturday", "sunday") if hours.get(k)]
            entries.append(
                KBEntry(
                    title="Hours",
                    answer=f"We are open {', '.join(parts)}.",
                    keywords=("hours", "open", "close", "opening", "closing", "when"),
                )
            )

        contact = data.get("contact") or {}
        if contact:
            entries.append(
                KBEntry(
                    title="Contact",
                    answer=f"You can reach us on {contact.get('phone', '')} or {contact.get('email', '')}.",
                    keywords=("contact", "phone", "email", "call", "number"),
                )
            )

        values = data.get("values") or []
        if values:
            entries.append(
                KBEntry(
                    title="Values",
                    answer=f"We believe in {', '.join(values)}.",
                    keywords=("philosophy", "values", "approach", "what do you believe"),
                )
            )

        for service in data.get("services") or []:
            name = service.get("name", "")
            entries.append(
                KBEntry(
                    title=name,
                    answer=(
                        f"{name} runs for {service.get('duration', '')} at "
                        f"${service.get('price', '')}. {service.get('description', '')}"
                    ).strip(),
                    keywords=tuple([name.lower(), *[k.lower() for k in service.get("keywords", [])]]),
                )
            )

        for faq in data.get("faqs") or []:
            entries.append(
                KBEntry(
                    title=faq.get("question", ""),
                    answer=faq.get("answer", ""),
                    keywords=tuple(t.lower() for t in faq.get("tags", [])),
                )
            )

        return entries

    def search(self, query: str) -> Optional[str]:
        """Best-matching answer for `query`, or None when nothing matches."""
        lower = (query or "").lower()
        if not lower.strip():
            return None

        best: Optional[KBEntry] = None
        best_score = 0
        for entry in self._entries:
            score = entry.score(lower)
            if score > best_score:
                best, best_score = entry, score
        return best.answer if best else None

    def business_summary(self) -> str:
        name = self._data.get("businessName", "")
        tagline = self._data.get("tagline", "")
        return f"{name}: {tagline}" if tagline else name

    def list_services(self) -> str:
        return "; ".join(
            f"{s.get('name', '')} ({s.get('duration', '')}) - ${s.get('price', '')}"
            for s in self._data.get("services") or []
        )

    def __len__(self) -> int:
        return len(self._entries)
