"""
Growth-Vector Feedback - Closing the inject -> observe -> re-weight loop.

At turn start the ranker picks vectors to inject; FeedbackLoop.arm() records
which ones and the entropy at that moment. At turn end FeedbackLoop.close()
pairs that batch with the newly observed entropy, writes one FeedbackEntry
per vector and clears the pending state. One injection batch pairs with
exactly one observation.

FeedbackStore keeps a rolling window of entries per vector in its own file
(growth-vector-feedback.json), separate from the agent-owned vector file.
The ranker reads avg_entropy_delta from here: vectors that lowered entropy
get boosted, vectors that raised it get penalized.
"""

import logging
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from agent_stability.detectors import DetectorResult
from agent_stability.persistence import load_json, save_json

logger = logging.getLogger(__name__)

FEEDBACK_FILENAME = "growth-vector-feedback.json"


@dataclass(frozen=True)
class FeedbackEntry:
    pre_entropy: float
    post_entropy: float
    entropy_delta: float
    relevance_score: float
    tension_detected: bool
    timestamp: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackEntry":
        def pick(snake: str, camel: str, default: Any = 0.0) -> Any:
            return data.get(snake, data.get(camel, default))

        return cls(
            pre_entropy=float(pick("pre_entropy", "preEntropy") or 0.0),
            post_entropy=float(pick("post_entropy", "postEntropy") or 0.0),
            entropy_delta=float(pick("entropy_delta", "entropyDelta") or 0.0),
            relevance_score=float(pick("relevance_score", "relevanceScore") or 0.0),
            tension_detected=bool(pick("tension_detected", "tensionDetected", False)),
            timestamp=str(pick("timestamp", "timestamp", "")),
        )


@dataclass
class FeedbackRecord:
    """Rolling effectiveness window for one vector."""
    window_size: int = 10
    entries: Deque[FeedbackEntry] = field(default_factory=deque)
    avg_entropy_delta: float = 0.0
    total_injections: int = 0
    last_used: Optional[str] = None

    def __post_init__(self):
        self.entries = deque(self.entries, maxlen=self.window_size)

    def add(self, entry: FeedbackEntry) -> None:
        self.entries.append(entry)
        self.avg_entropy_delta = sum(e.entropy_delta for e in self.entries) / len(self.entries)
        self.total_injections += 1
        self.last_used = entry.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [asdict(e) for e in self.entries],
            "avg_entropy_delta": self.avg_entropy_delta,
            "total_injections": self.total_injections,
            "last_used": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], window_size: int) -> "FeedbackRecord":
        raw_entries = data.get("entries") or []
        entries = [FeedbackEntry.from_dict(e) for e in raw_entries if isinstance(e, dict)]
        record = cls(
            window_size=window_size,
            entries=deque(entries),
            avg_entropy_delta=float(data.get("avg_entropy_delta", data.get("avgEntropyDelta", 0.0)) or 0.0),
            total_injections=int(data.get("total_injections", data.get("totalInjections", 0)) or 0),
            last_used=data.get("last_used", data.get("lastUsed")),
        )
        if record.entries:
            record.avg_entropy_delta = sum(e.entropy_delta for e in record.entries) / len(record.entries)
        return record


class FeedbackStore:
    """Feedback records keyed by vector id, persisted as one JSON object."""

    def __init__(self, path: Optional[Path] = None, window_size: int = 10):
        self.path = Path(path) if path is not None else None
        self.window_size = window_size
        self._records: Optional[Dict[str, FeedbackRecord]] = None

    @property
    def records(self) -> Dict[str, FeedbackRecord]:
        if self._records is None:
            self._records = self._load()
        return self._records

    def record_feedback(self, vector_id: str, entry: FeedbackEntry) -> None:
        if not vector_id or entry is None:
            return
        record = self.records.get(vector_id)
        if record is None:
            record = FeedbackRecord(window_size=self.window_size)
            self.records[vector_id] = record
        record.add(entry)
        self._save()

    def get_feedback(self, vector_id: str) -> Optional[FeedbackRecord]:
        return self.records.get(vector_id)

    def summary(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": vector_id,
                "avg_entropy_delta": record.avg_entropy_delta,
                "total_injections": record.total_injections,
                "last_used": record.last_used,
                "entries": len(record.entries),
            }
            for vector_id, record in self.records.items()
        ]

    def _load(self) -> Dict[str, FeedbackRecord]:
        if self.path is None:
            return {}
        raw = load_json(self.path, default={})
        if not isinstance(raw, dict):
            return {}
        return {
            vector_id: FeedbackRecord.from_dict(data, self.window_size)
            for vector_id, data in raw.items()
            if isinstance(data, dict)
        }

    def _save(self) -> None:
        if self.path is None:
            return
        save_json(self.path, {k: v.to_dict() for k, v in self.records.items()})


@dataclass(frozen=True)
class InjectedVector:
    id: str
    relevance_score: float


class FeedbackLoop:
    """Pairs one injection batch with the next observed entropy."""

    def __init__(self, store: FeedbackStore, enabled: bool = True):
        self.store = store
        self.enabled = enabled
        self.pending: List[InjectedVector] = []
        self.pre_entropy: Optional[float] = None

    @property
    def armed(self) -> bool:
        return bool(self.pending) and self.pre_entropy is not None

    def arm(self, injected: List[InjectedVector], pre_entropy: float) -> None:
        """Remember this turn's injection. An empty batch clears stale state."""
        if not self.enabled or not injected:
            self.clear()
            return
        self.pending = list(injected)
        self.pre_entropy = pre_entropy

    def close(
        self,
        post_entropy: float,
        detector_result: Optional[DetectorResult] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Record feedback for every pending vector. Always clears. Returns entries written."""
        if not self.armed:
            self.clear()
            return 0

        written = 0
        try:
            tension = detector_result.tension_detected if detector_result else False
            timestamp = (now or datetime.now(timezone.utc)).isoformat()
            delta = post_entropy - self.pre_entropy
            for injected in self.pending:
                self.store.record_feedback(injected.id, FeedbackEntry(
                    pre_entropy=self.pre_entropy,
                    post_entropy=post_entropy,
                    entropy_delta=delta,
                    relevance_score=injected.relevance_score,
                    tension_detected=tension,
                    timestamp=timestamp,
                ))
                written += 1
        except Exception as e:
            logger.warning("Growth vector feedback error: %s", e)
        finally:
            self.clear()
        return written

    def clear(self) -> None:
        self.pending = []
        self.pre_entropy = None
