"""
Entropy Monitoring - Composite turbulence score for a conversation exchange.

"Entropy" here is a heuristic: high = novel, contradictory or emotionally
charged exchange; low = routine conversation. Only one helper
(shannon_entropy) computes information-theoretic entropy, and it is
logged alongside the score rather than folded into it.

Composite score (additive, no clamp, conventionally 0 - ~2):
    +0.4        user correction ("actually", "that's not", ...)
    +0.15 each  novel concept regex hit, max +0.3
    +0.3        emotional weight in user text
    +0.2        paradox / both-and language in response
    +0.2        realization language in response
    +0.3        detector: temporal mismatch
    +0.2        detector: quality decay
    +0.15-0.45  detector: recursive meta bonus
    +0.15       quiet integration (calm reflection after recent turbulence)
    +0.1 / -0.2 caller-supplied context quality (excellent / poor)

Sustained tracking: a score above 80% of the critical threshold starts a
turn counter and a wall-clock timer. `sustained` turns true once the timer
reaches sustained_minutes (45 by default). Any turn at or below the floor
resets both. One dip resets everything.

Usage:
    scorer = EntropyScorer(config.entropy, data_dir)
    score = scorer.calculate_entropy_score(user, response, detector_result)
    status = scorer.track_sustained_entropy(score)
    scorer.log_observation(Observation.build(score, status, detector_result, user, response))
"""

import logging
import math
import re
from collections import Counter, deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Union

from agent_stability.config import EntropyConfig
from agent_stability.detectors import DetectorResult, contains_any
from agent_stability.persistence import JsonlLog, load_json, save_json

logger = logging.getLogger(__name__)

LOG_FILENAME = "entropy-monitor.jsonl"
HISTORY_FILENAME = "entropy-history.json"

CORRECTION_WEIGHT = 0.4
NOVEL_CONCEPT_WEIGHT = 0.15
NOVEL_CONCEPT_CAP = 0.3
EMOTIONAL_WEIGHT = 0.3
PARADOX_WEIGHT = 0.2
META_COGNITIVE_WEIGHT = 0.2
TEMPORAL_MISMATCH_WEIGHT = 0.3
QUALITY_DECAY_WEIGHT = 0.2
QUIET_INTEGRATION_BONUS = 0.15
QUALITY_MODIFIERS = {"excellent": 0.1, "poor": -0.2}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, int, float, None]) -> Optional[datetime]:
    """Accept ISO strings or epoch numbers (seconds, or milliseconds from older files)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def shannon_entropy(text: Optional[str]) -> float:
    """
    Shannon entropy of the word distribution, in bits per word.

    H(X) = -sum p(x) log2 p(x). Typically 2-6 for English text.
    """
    words = (text or "").lower().split()
    if not words:
        return 0.0
    total = len(words)
    return -sum((n / total) * math.log2(n / total) for n in Counter(words).values())


def entropy_label(score: float) -> str:
    if score > 1.0:
        return "CRITICAL"
    if score > 0.8:
        return "elevated"
    if score > 0.4:
        return "active"
    return "nominal"


# =============================================================================
# Records
# =============================================================================

@dataclass
class HistoryEntry:
    """Compact ring-buffer entry used for quiet-integration detection."""
    timestamp: datetime
    entropy: float
    meta_concept_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "entropy": self.entropy,
            "meta_concept_count": self.meta_concept_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["HistoryEntry"]:
        ts = parse_timestamp(data.get("timestamp"))
        entropy = data.get("entropy")
        if ts is None or not isinstance(entropy, (int, float)):
            return None
        meta = data.get("meta_concept_count", data.get("metaConceptCount", 0))
        return cls(timestamp=ts, entropy=float(entropy), meta_concept_count=int(meta or 0))


@dataclass(frozen=True)
class SustainedStatus:
    sustained: bool
    turns: int
    minutes: int


@dataclass(frozen=True)
class Observation:
    """One scored turn. Immutable once appended to the log."""
    timestamp: str
    score: float
    sustained_turns: int
    detectors: Dict[str, Any]
    user_length: int
    response_length: int
    shannon_entropy: float = 0.0

    @classmethod
    def build(
        cls,
        score: float,
        sustained: SustainedStatus,
        detector_result: DetectorResult,
        user_message: str,
        response_text: str,
        now: Optional[datetime] = None,
    ) -> "Observation":
        return cls(
            timestamp=(now or utcnow()).isoformat(),
            score=score,
            sustained_turns=sustained.turns,
            detectors=detector_result.to_dict(),
            user_length=len(user_message or ""),
            response_length=len(response_text or ""),
            shannon_entropy=round(shannon_entropy(response_text), 4),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EntropyState:
    """Snapshot of scorer state for prompt injection and inspection."""
    last_score: float = 0.0
    sustained_turns: int = 0
    sustained_minutes: int = 0
    sustained_start: Optional[datetime] = None
    recent_history: List[HistoryEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_score": self.last_score,
            "sustained_turns": self.sustained_turns,
            "sustained_minutes": self.sustained_minutes,
            "sustained_start": self.sustained_start.isoformat() if self.sustained_start else None,
            "recent_history": [h.to_dict() for h in self.recent_history],
        }


# =============================================================================
# Scorer
# =============================================================================

class EntropyScorer:
    """
    Composite entropy scorer with sustained tracking and an observation log.

    One instance per monitored agent. `data_dir=None` keeps everything in
    memory (no log, no persisted history).
    """

    def __init__(self, config: Optional[EntropyConfig] = None, data_dir: Optional[Path] = None):
        self.config = config or EntropyConfig()
        self.data_dir = Path(data_dir) if data_dir is not None else None

        self.log: Optional[JsonlLog] = None
        self.history_path: Optional[Path] = None
        if self.data_dir is not None:
            self.log = JsonlLog(self.data_dir / LOG_FILENAME, capacity=self.config.log_capacity)
            self.history_path = self.data_dir / HISTORY_FILENAME

        self.recent_history: Deque[HistoryEntry] = deque(
            self._load_history(), maxlen=self.config.history_size
        )

        self.last_score = 0.0
        self.sustained_turns = 0
        self.sustained_start: Optional[datetime] = None

        self._novel_pattern = re.compile(self.config.novel_concept_regex, re.IGNORECASE)

    # =========================================================================
    # Composite Score
    # =========================================================================

    def calculate_entropy_score(
        self,
        user_message: Optional[str],
        response_text: Optional[str],
        detector_result: Optional[DetectorResult] = None,
        context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> float:
        """Score one exchange and store it as last_score."""
        user_message = user_message or ""
        response_text = response_text or ""
        detector_result = detector_result or DetectorResult()
        context = context or {}

        user_lower = user_message.lower()
        response_lower = response_text.lower()
        cfg = self.config
        entropy = 0.0

        if contains_any(user_lower, cfg.correction_patterns):
            entropy += CORRECTION_WEIGHT

        concept_matches = self._novel_pattern.findall(f"{user_message} {response_text}")
        if concept_matches:
            entropy += min(len(concept_matches) * NOVEL_CONCEPT_WEIGHT, NOVEL_CONCEPT_CAP)

        if contains_any(user_lower, cfg.emotional_patterns):
            entropy += EMOTIONAL_WEIGHT

        if contains_any(response_lower, cfg.paradox_patterns):
            entropy += PARADOX_WEIGHT

        if contains_any(response_lower, cfg.meta_cognitive_patterns):
            entropy += META_COGNITIVE_WEIGHT

        if detector_result.temporal_mismatch:
            entropy += TEMPORAL_MISMATCH_WEIGHT

        if detector_result.quality_decay:
            entropy += QUALITY_DECAY_WEIGHT

        if detector_result.recursive_meta_bonus > 0:
            entropy += detector_result.recursive_meta_bonus

        entropy += self.detect_quiet_integration(response_text, now=now)

        entropy += QUALITY_MODIFIERS.get(context.get("quality"), 0.0)

        self.last_score = entropy
        return entropy

    def detect_quiet_integration(self, response_text: Optional[str], now: Optional[datetime] = None) -> float:
        """
        Bonus for a calm, reflective turn shortly after a turbulent one.

        Requires a history entry above quiet_integration_floor inside the
        decay window, and reflective language in the response.
        """
        now = now or utcnow()
        window = timedelta(seconds=self.config.decay_window_seconds)

        recent_turbulence = any(
            h.entropy > self.config.quiet_integration_floor and (now - h.timestamp) < window
            for h in self.recent_history
        )
        if not recent_turbulence:
            return 0.0

        if contains_any((response_text or "").lower(), self.config.reflective_patterns):
            return QUIET_INTEGRATION_BONUS
        return 0.0

    # =========================================================================
    # Sustained Tracking
    # =========================================================================

    @property
    def sustained_floor(self) -> float:
        return self.config.critical_threshold * self.config.sustained_floor_ratio

    def track_sustained_entropy(self, score: float, now: Optional[datetime] = None) -> SustainedStatus:
        now = now or utcnow()

        if score > self.sustained_floor:
            self.sustained_turns += 1
            if self.sustained_turns == 1 or self.sustained_start is None:
                self.sustained_start = now
            elapsed = now - self.sustained_start
            limit = timedelta(minutes=self.config.sustained_minutes)
            return SustainedStatus(
                sustained=elapsed >= limit,
                turns=self.sustained_turns,
                minutes=round(elapsed.total_seconds() / 60),
            )

        self.sustained_turns = 0
        self.sustained_start = None
        return SustainedStatus(sustained=False, turns=0, minutes=0)

    # =========================================================================
    # State & Logging
    # =========================================================================

    def log_observation(self, observation: Observation, now: Optional[datetime] = None) -> None:
        """Append to the log, update the ring buffer, persist, prune. Never raises."""
        if self.log is not None:
            self.log.append(observation.to_dict())

        self.recent_history.append(HistoryEntry(
            timestamp=now or parse_timestamp(observation.timestamp) or utcnow(),
            entropy=observation.score,
            meta_concept_count=int(observation.detectors.get("meta_concept_count", 0)),
        ))
        self._save_history()

    def read_observations(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.log.read(limit) if self.log is not None else []

    def get_current_state(self, now: Optional[datetime] = None) -> EntropyState:
        now = now or utcnow()
        minutes = 0
        if self.sustained_start is not None:
            minutes = round((now - self.sustained_start).total_seconds() / 60)
        return EntropyState(
            last_score=self.last_score,
            sustained_turns=self.sustained_turns,
            sustained_minutes=minutes,
            sustained_start=self.sustained_start,
            recent_history=list(self.recent_history),
        )

    # =========================================================================
    # Internal
    # =========================================================================

    def _load_history(self) -> List[HistoryEntry]:
        if self.history_path is None:
            return []
        raw = load_json(self.history_path, default=[])
        if not isinstance(raw, list):
            return []
        entries = [HistoryEntry.from_dict(item) for item in raw if isinstance(item, dict)]
        return [e for e in entries if e is not None]

    def _save_history(self) -> None:
        if self.history_path is None:
            return
        save_json(self.history_path, [h.to_dict() for h in self.recent_history], indent=None)
