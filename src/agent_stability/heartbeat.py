"""
Heartbeat - Structured decisions for periodic check-in turns.

A heartbeat turn ends with one decision:

    DECISION: GROUND     - Nothing needs attention. Presence maintained.
    DECISION: TEND       - An unfinished thread wants gentle attention.
    DECISION: SURFACE    - Something should be brought to the user.
    DECISION: INTEGRATE  - A tension or correction is being metabolized.

Decisions are logged to the memory store so the next prompt can show what
was decided on the previous beats.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from agent_stability.config import HeartbeatConfig
from agent_stability.entropy import parse_timestamp
from agent_stability.memory import MemoryStore

logger = logging.getLogger(__name__)

DECISIONS = ("GROUND", "TEND", "SURFACE", "INTEGRATE")

_DECISION_PATTERN = re.compile(
    r"DECISION:\s*(GROUND|TEND|SURFACE|INTEGRATE)\s*[—\-]\s*(.+?)(?:\n|$)",
    re.IGNORECASE,
)

_GROUND_PHRASES = (
    "decision: ground",
    "ground stable",
    "continuity maintained",
    "presence maintained",
    "nothing requires attention",
)

DECISION_FRAMEWORK_PROMPT = """## Decision (required)
Choose one and state why in one sentence:
- GROUND — Nothing needs attention. Presence maintained.
- TEND — An unfinished thread or relational need wants gentle attention. State what.
- SURFACE — Something should be brought to the user's attention. State what.
- INTEGRATE — A tension or correction is being metabolized. State the integration.

Format: DECISION: [GROUND|TEND|SURFACE|INTEGRATE] — [one sentence reason]
Then optionally add 1-2 lines of context if needed."""


@dataclass(frozen=True)
class Decision:
    decision: str
    reason: str


@dataclass(frozen=True)
class RecentDecision:
    time: str
    decision: str
    reason: str

    def __str__(self) -> str:
        return f"{self.decision} — {self.reason}"


def parse_decision(text: Optional[str]) -> Optional[Decision]:
    if not text:
        return None
    match = _DECISION_PATTERN.search(text)
    if not match:
        return None
    return Decision(decision=match.group(1).upper(), reason=match.group(2).strip())


def is_ground_stable(text: Optional[str]) -> bool:
    """Structured GROUND, a natural-language equivalent, or legacy HEARTBEAT_OK."""
    if not text:
        return False
    lower = text.lower()
    if any(phrase in lower for phrase in _GROUND_PHRASES):
        return True
    return text.strip().upper().startswith("HEARTBEAT_OK")


def format_clock(value) -> str:
    ts = parse_timestamp(value)
    if ts is None:
        return "unknown"
    return ts.astimezone().strftime("%I:%M %p").lstrip("0")


class Heartbeat:
    """Decision parsing plus the memory-backed decision log."""

    def __init__(self, config: Optional[HeartbeatConfig] = None):
        self.config = config or HeartbeatConfig()
        self.enabled = self.config.decision_framework
        self.recent_count = self.config.recent_decisions_in_prompt

    async def log_decision(
        self,
        text: Optional[str],
        memory: Optional[MemoryStore],
        now: Optional[datetime] = None,
    ) -> Optional[Decision]:
        if memory is None or not self.enabled:
            return None

        parsed = parse_decision(text)
        if parsed is None:
            if not is_ground_stable(text):
                return None
            parsed = Decision(decision="GROUND", reason="Nothing needs attention")

        try:
            await memory.store(f"[Heartbeat Decision] {parsed.decision} — {parsed.reason}", {
                "type": "heartbeat_decision",
                "decision": parsed.decision,
                "reason": parsed.reason,
                "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
            })
        except Exception as e:
            logger.warning("Failed to log heartbeat decision: %s", e)
        return parsed

    async def read_recent_decisions(self, memory: Optional[MemoryStore]) -> List[RecentDecision]:
        if memory is None:
            return []
        try:
            records = await memory.search("type:heartbeat_decision", limit=self.recent_count, sort="newest")
        except Exception as e:
            logger.warning("Failed to read heartbeat decisions: %s", e)
            return []

        return [
            RecentDecision(
                time=format_clock(r.metadata.get("timestamp")),
                decision=r.metadata.get("decision") or "?",
                reason=r.metadata.get("reason") or (r.content or "")[:50],
            )
            for r in records
        ]

    def decision_framework_prompt(self) -> str:
        return DECISION_FRAMEWORK_PROMPT if self.enabled else ""

    async def recent_decisions_prompt(self, memory: Optional[MemoryStore]) -> str:
        decisions = await self.read_recent_decisions(memory)
        if not decisions:
            return ""
        lines = ["[RECENT HEARTBEAT DECISIONS]"]
        lines.extend(f"{d.time}: {d}" for d in decisions)
        return "\n".join(lines) + "\n"
