"""
Investigation Service - Two-phase self-initiated investigations.

Phase 1: during a heartbeat the agent proposes an intent:

    INVESTIGATION_INTENT:
    topic: Why the nightly sync keeps timing out
    lane: SERVICE                     # SERVICE | AWARENESS | GROWTH
    deliverable: telegram_brief       # telegram_brief | stored_resource | architectural_note
    scope: quick                      # quick | investigation
    rationale: The user relies on the sync every morning

Phase 2: on the next cycle the queued intent is consumed and executed.

An intent is queued only if its topic is not a recent duplicate and the rate
limiter allows it. Consuming records both. This is the one component shared
by every monitored agent; it is started once and saved on stop.
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from agent_stability.config import GovernanceConfig
from agent_stability.entropy import parse_timestamp
from agent_stability.governance import Governance
from agent_stability.persistence import load_json, save_json

logger = logging.getLogger(__name__)

STATE_FILENAME = "investigation-state.json"

_TOPIC = re.compile(r"topic:\s*(.+?)(?:\n|$)", re.IGNORECASE)
_LANE = re.compile(r"lane:\s*(SERVICE|AWARENESS|GROWTH)", re.IGNORECASE)
_DELIVERABLE = re.compile(r"deliverable:\s*(telegram_brief|stored_resource|architectural_note)", re.IGNORECASE)
_SCOPE = re.compile(r"scope:\s*(quick|investigation)", re.IGNORECASE)
_RATIONALE = re.compile(r"rationale:\s*(.+?)(?:\n|$)", re.IGNORECASE)


@dataclass
class InvestigationIntent:
    topic: str
    lane: str
    deliverable: str
    scope: str = "quick"
    rationale: str = ""
    queued_at: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["InvestigationIntent"]:
        if not isinstance(data, dict) or not data.get("topic"):
            return None
        return cls(
            topic=str(data["topic"]),
            lane=str(data.get("lane", "SERVICE")),
            deliverable=str(data.get("deliverable", "stored_resource")),
            scope=str(data.get("scope", "quick")),
            rationale=str(data.get("rationale", "")),
            queued_at=str(data.get("queued_at", data.get("queuedAt", ""))),
        )


@dataclass
class InvestigationState:
    last_check: Optional[str] = None
    last_investigation: Optional[str] = None
    investigations_today: int = 0
    today_date: str = ""
    queued_intent: Optional[InvestigationIntent] = None
    recent_topics: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["queued_intent"] = asdict(self.queued_intent) if self.queued_intent else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InvestigationState":
        topics = data.get("recent_topics", data.get("recentTopics")) or {}
        return cls(
            last_check=data.get("last_check", data.get("lastCheck")),
            last_investigation=data.get("last_investigation", data.get("lastInvestigation")),
            investigations_today=int(data.get("investigations_today", data.get("investigationsToday", 0)) or 0),
            today_date=str(data.get("today_date", data.get("todayDate", "")) or ""),
            queued_intent=InvestigationIntent.from_dict(data.get("queued_intent", data.get("queuedIntent"))),
            recent_topics=dict(topics) if isinstance(topics, dict) else {},
        )


def parse_intent(text: Optional[str], now: Optional[datetime] = None) -> Optional[InvestigationIntent]:
    """Extract an INVESTIGATION_INTENT block. topic, lane and deliverable are required."""
    if not text or "investigation_intent" not in text.lower():
        return None

    topic = _TOPIC.search(text)
    lane = _LANE.search(text)
    deliverable = _DELIVERABLE.search(text)
    if not (topic and lane and deliverable):
        return None

    scope = _SCOPE.search(text)
    rationale = _RATIONALE.search(text)
    return InvestigationIntent(
        topic=topic.group(1).strip(),
        lane=lane.group(1).upper(),
        deliverable=deliverable.group(1).lower(),
        scope=scope.group(1).lower() if scope else "quick",
        rationale=rationale.group(1).strip() if rationale else "",
        queued_at=(now or datetime.now(timezone.utc)).isoformat(),
    )


class InvestigationService:
    """Process-wide investigation queue with governance."""

    def __init__(self, config: Optional[GovernanceConfig] = None, data_dir: Optional[Path] = None):
        self.config = config or GovernanceConfig()
        self.state_path = Path(data_dir) / STATE_FILENAME if data_dir is not None else None
        self.governance = Governance(self.config)
        self.state = self._load_state()
        self.running = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        self.state = self._load_state()
        self.running = True
        logger.info("Investigation service started")

    def stop(self) -> None:
        self._save_state()
        self.running = False
        logger.info("Investigation service stopped")

    # =========================================================================
    # Two-Phase Investigation
    # =========================================================================

    def queue_intent(self, intent: InvestigationIntent, now: Optional[datetime] = None) -> bool:
        if self.governance.is_duplicate(intent.topic, now):
            logger.info("Duplicate investigation topic, skipping: %s", intent.topic)
            return False
        if not self.governance.rate_limiter.can_investigate(now):
            logger.info("Investigation rate limit reached")
            return False

        self.state.queued_intent = intent
        self._save_state()
        logger.info("Investigation intent queued: %s", intent.topic)
        return True

    def process_response(self, text: Optional[str], now: Optional[datetime] = None) -> bool:
        """Parse and queue an intent from a heartbeat response."""
        intent = parse_intent(text, now)
        return intent is not None and self.queue_intent(intent, now)

    def has_queued_intent(self) -> bool:
        return self.state.queued_intent is not None

    def consume_queued_intent(self, now: Optional[datetime] = None) -> Optional[InvestigationIntent]:
        """Take the queued intent and charge it against the budgets."""
        now = now or datetime.now(timezone.utc)
        intent = self.state.queued_intent
        if intent is None:
            return None

        self._reset_daily_if_needed(now)
        self.state.queued_intent = None
        self.state.last_investigation = now.isoformat()
        self.state.investigations_today += 1
        self.governance.rate_limiter.record(now)
        self.governance.record_topic(intent.topic, now)
        self._save_state()
        return intent

    def state_for_prompt(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        self._reset_daily_if_needed(now or datetime.now(timezone.utc))
        return {
            "last_check": self.state.last_check,
            "investigations_today": self.state.investigations_today,
            "queued_intent": asdict(self.state.queued_intent) if self.state.queued_intent else None,
            "recent_topics": list(self.governance.recent_topics),
            "rate_limit": self.governance.rate_limiter.get_status(now),
        }

    # =========================================================================
    # State
    # =========================================================================

    def _reset_daily_if_needed(self, now: datetime) -> None:
        today = now.date().isoformat()
        if self.state.today_date != today:
            self.state.today_date = today
            self.state.investigations_today = 0
            self._save_state()

    def _load_state(self) -> InvestigationState:
        if self.state_path is None:
            return InvestigationState(today_date=datetime.now(timezone.utc).date().isoformat())
        raw = load_json(self.state_path, default={})
        state = InvestigationState.from_dict(raw if isinstance(raw, dict) else {})
        if not state.today_date:
            state.today_date = datetime.now(timezone.utc).date().isoformat()

        for topic, stamp in state.recent_topics.items():
            ts = parse_timestamp(stamp)
            if ts is not None:
                self.governance.recent_topics[topic] = ts
        return state

    def _save_state(self) -> None:
        if self.state_path is None:
            return
        self.state.recent_topics = {k: v.isoformat() for k, v in self.governance.recent_topics.items()}
        save_json(self.state_path, self.state.to_dict())
