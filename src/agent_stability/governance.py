"""
Governance - Budgets for self-initiated background work.

Everything the agent does on its own initiative (investigations, proactive
notifications) passes through here:

- RateLimiter: hourly and daily fixed windows, reset lazily on read
- Deduplication: Jaccard word overlap against recently recorded topics
- Quiet hours: [start, end) local time, wrapping past midnight
- Notification batching: debounce; every arrival restarts the timer

Usage:
    governance = Governance(config.governance)
    if governance.rate_limiter.can_investigate() and not governance.is_duplicate(topic):
        ...
        governance.rate_limiter.record()
        governance.record_topic(topic)
"""

import logging
from datetime import datetime, timedelta, timezone
from threading import Lock, Timer
from typing import Any, Callable, Dict, List, Optional

from agent_stability.config import GovernanceConfig, QuietHours

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def topic_similarity(a: str, b: str) -> float:
    """Intersection over union of whitespace-separated words."""
    words_a = set(a.split())
    words_b = set(b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def parse_clock(value: str, default: str) -> int:
    """'HH:MM' -> minutes since midnight."""
    try:
        hours, _, minutes = (value or default).partition(":")
        return int(hours) * 60 + int(minutes or 0)
    except ValueError:
        logger.warning("Invalid quiet-hours time %r, using %s", value, default)
        return parse_clock(default, default)


# =============================================================================
# Rate Limiting
# =============================================================================

class RateLimiter:
    """Two independent fixed windows. No background timer."""

    def __init__(self, per_hour: int = 3, per_day: int = 20, now: Optional[datetime] = None):
        now = now or _utcnow()
        self.per_hour = per_hour
        self.per_day = per_day
        self.hourly_count = 0
        self.daily_count = 0
        self.hourly_reset = now + HOUR
        self.daily_reset = now + DAY

    def can_investigate(self, now: Optional[datetime] = None) -> bool:
        self._check_resets(now)
        return self.hourly_count < self.per_hour and self.daily_count < self.per_day

    def record(self, now: Optional[datetime] = None) -> None:
        self._check_resets(now)
        self.hourly_count += 1
        self.daily_count += 1

    def get_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "hourly": f"{self.hourly_count}/{self.per_hour}",
            "daily": f"{self.daily_count}/{self.per_day}",
            "allowed": self.can_investigate(now),
        }

    def _check_resets(self, now: Optional[datetime]) -> None:
        now = now or _utcnow()
        if now >= self.hourly_reset:
            self.hourly_count = 0
            self.hourly_reset = now + HOUR
        if now >= self.daily_reset:
            self.daily_count = 0
            self.daily_reset = now + DAY


# =============================================================================
# Governance
# =============================================================================

class Governance:
    """Rate limits, deduplication, quiet hours and notification batching."""

    def __init__(self, config: Optional[GovernanceConfig] = None, now: Optional[datetime] = None):
        self.config = config or GovernanceConfig()
        self.rate_limiter = RateLimiter(
            per_hour=self.config.investigations_per_hour,
            per_day=self.config.investigations_per_day,
            now=now,
        )
        self.recent_topics: Dict[str, datetime] = {}
        self.dedup_window = timedelta(seconds=self.config.deduplication_window_seconds)

        self.pending_notifications: List[Dict[str, Any]] = []
        self._deliver: Optional[Callable[[List[Dict[str, Any]]], Any]] = None
        self._timer: Optional[Timer] = None
        self._lock = Lock()

    # =========================================================================
    # Quiet Hours
    # =========================================================================

    def is_quiet_hours(self, now: Optional[datetime] = None) -> bool:
        quiet: Optional[QuietHours] = self.config.quiet_hours
        if quiet is None:
            return False

        now = now or datetime.now()
        current = now.hour * 60 + now.minute
        start = parse_clock(quiet.start, "22:00")
        end = parse_clock(quiet.end, "07:00")

        if start > end:
            return current >= start or current < end
        return start <= current < end

    # =========================================================================
    # Deduplication
    # =========================================================================

    def is_duplicate(self, topic: Optional[str], now: Optional[datetime] = None) -> bool:
        if not topic:
            return False
        now = now or _utcnow()
        normalized = topic.lower().strip()

        expired = [k for k, ts in self.recent_topics.items() if now - ts > self.dedup_window]
        for key in expired:
            del self.recent_topics[key]

        threshold = self.config.duplicate_similarity_threshold
        return any(topic_similarity(normalized, key) > threshold for key in self.recent_topics)

    def record_topic(self, topic: Optional[str], now: Optional[datetime] = None) -> None:
        if not topic:
            return
        self.recent_topics[topic.lower().strip()] = now or _utcnow()

    # =========================================================================
    # Notification Batching
    # =========================================================================

    def queue_notification(
        self,
        notification: Dict[str, Any],
        deliver: Callable[[List[Dict[str, Any]]], Any],
    ) -> None:
        """Hold a notification; deliver the batch once batch_window passes quietly."""
        with self._lock:
            self.pending_notifications.append({**notification, "queued_at": _utcnow().isoformat()})
            self._deliver = deliver
            if self._timer is not None:
                self._timer.cancel()
            self._timer = Timer(self.config.batch_window_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> List[Dict[str, Any]]:
        """Deliver whatever is pending now. Returns the delivered batch."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            batch = self.pending_notifications
            self.pending_notifications = []
            deliver = self._deliver

        if batch and deliver is not None:
            try:
                deliver(batch)
            except Exception as e:
                logger.warning("Notification delivery failed: %s", e)
        return batch

    def cancel(self) -> None:
        """Stop the timer and drop pending notifications."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.pending_notifications = []

    # =========================================================================
    # Delivery Path
    # =========================================================================

    def decide_delivery_path(self, finding: Dict[str, Any], now: Optional[datetime] = None) -> str:
        """'immediate' | 'store' | 'briefing' | 'discard'"""
        if self.is_quiet_hours(now):
            return "briefing"
        if self.is_duplicate(finding.get("topic")):
            return "discard"
        priority = finding.get("priority") or 0
        if priority >= 0.8:
            return "immediate"
        if priority >= 0.5:
            return "store"
        return "briefing"
