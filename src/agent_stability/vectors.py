"""
Growth Vectors - Agent-curated lessons, ranked for context injection.

The vector file (default <workspace>/memory/growth-vectors.json) is owned by
the agent:

    {
      "vectors":    [...],                 # read-only here
      "candidates": [...],                 # auto-detected, written here
      "queue":      {"high": [ids], "medium": [ids], "low": [ids]},
      "metadata":   {...}
    }

GrowthVectorStore never edits `vectors` except through explicit promotion
(add_candidate recurrence, validate_vector) and lifecycle capping.
Feedback lives in a separate file (see feedback.py).

Relevance formula (GrowthVectorRanker):
    60%  keyword overlap (intersection over the smaller word set, plus phrases)
    20%  entropy-source alignment (only when entropy > 0.4)
    10%  recency (linear decay over 7 days)
    10%  vector weight
    +/-  feedback adjustment (>= 3 entries, capped)
    clamp to [0, 1], keep >= threshold, top max_injected

Usage:
    store = GrowthVectorStore(config.growth_vectors, path)
    ranker = GrowthVectorRanker(store, feedback_store, config.growth_vectors)
    for scored in ranker.get_relevant_vectors(user_message, entropy, return_scores=True):
        print(scored.vector["id"], scored.score)
"""

import hashlib
import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from agent_stability.config import GrowthVectorConfig
from agent_stability.entropy import parse_timestamp, utcnow
from agent_stability.feedback import FeedbackStore
from agent_stability.persistence import load_json, save_json

logger = logging.getLogger(__name__)

VECTOR_FILENAME = "growth-vectors.json"

INJECTABLE_STATUSES = ("validated", "integrated")

CORRECTION_SOURCES = ("user_correction", "factual_accuracy_gap", "pattern_break")
REFLECTION_SOURCES = ("elevated_entropy_self_reflection", "elevated_entropy_threshold_breach")

STOP_WORDS = frozenset([
    "the", "and", "for", "that", "this", "with", "from", "have",
    "was", "are", "been", "were", "being", "into", "than", "when",
    "what", "which", "about", "their", "them", "they", "will",
    "would", "could", "should", "your", "just", "also", "some",
    "before", "after", "during", "already", "actually", "where",
    "does", "doing", "done", "make", "made", "more", "most",
    "very", "only", "other", "each", "then", "didn", "don",
])

_PUNCTUATION = re.compile(r"[?!.,;:'\"()\[\]{}<>]")
_WORD_SPLIT = re.compile(r"[\s—–\-/]+")


# =============================================================================
# Text Helpers
# =============================================================================

def extract_words(text: Optional[str]) -> Set[str]:
    """Significant words: punctuation stripped, longer than 3 chars, not a stop word."""
    stripped = _PUNCTUATION.sub("", (text or "").lower())
    return {w for w in _WORD_SPLIT.split(stripped) if len(w) > 3 and w not in STOP_WORDS}


def word_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Jaccard overlap of significant words, 0-1."""
    if not a or not b:
        return 0.0
    words_a = extract_words(a)
    words_b = extract_words(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def phrase_match_score(source_text: str, target_text: str) -> float:
    """
    Bigrams (+1) and trigrams (+2) of source found verbatim in target.

    Normalized by 30% of the possible phrase count, capped at 1.0.
    """
    words = [w for w in source_text.split() if len(w) > 2]
    matches = 0
    possible = 0
    for i in range(len(words) - 1):
        bigram = f"{words[i]} {words[i + 1]}"
        possible += 1
        if bigram in target_text:
            matches += 1
        if i < len(words) - 2:
            trigram = f"{bigram} {words[i + 2]}"
            possible += 1
            if trigram in target_text:
                matches += 2
    if possible == 0:
        return 0.0
    return min(1.0, matches / max(possible * 0.3, 1))


def vector_weight(vector: Dict[str, Any]) -> float:
    weight = vector.get("weight")
    if isinstance(weight, (int, float)) and not isinstance(weight, bool):
        return float(weight)
    return 0.5


# =============================================================================
# Store
# =============================================================================

def empty_file() -> Dict[str, Any]:
    return {
        "vectors": [],
        "candidates": [],
        "queue": {"high": [], "medium": [], "low": []},
        "metadata": {},
    }


@dataclass
class _CacheEntry:
    data: Dict[str, Any]
    checksum: str
    stat: Tuple[int, int]
    loaded_at: datetime


@dataclass(frozen=True)
class ScoredVector:
    vector: Dict[str, Any]
    score: float

    @property
    def id(self) -> Optional[str]:
        return self.vector.get("id")


class GrowthVectorStore:
    """
    File-backed growth vector collection.

    Reads are cached by SHA-256 of the file content. Inside the freshness
    window an unchanged file (same mtime and size) is not re-read at all;
    a changed checksum always re-parses.
    """

    def __init__(self, config: Optional[GrowthVectorConfig] = None, path: Optional[Path] = None):
        self.config = config or GrowthVectorConfig()
        if path is None:
            path = self.config.file_path or (Path.home() / ".openclaw" / "workspace" / "memory" / VECTOR_FILENAME)
        self.path = Path(path).expanduser()
        self._cache: Optional[_CacheEntry] = None
        self.parse_count = 0

    # =========================================================================
    # Reading
    # =========================================================================

    def load_file(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        try:
            st = self.path.stat()
        except FileNotFoundError:
            self._cache = None
            return empty_file()
        except OSError as e:
            logger.warning("Failed to stat growth vectors %s: %s", self.path, e)
            return empty_file()

        stat_key = (st.st_mtime_ns, st.st_size)
        ttl = timedelta(seconds=self.config.cache_ttl_seconds)
        cache = self._cache
        if cache is not None and cache.stat == stat_key and (now - cache.loaded_at) < ttl:
            return cache.data

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            logger.warning("Failed to load growth vectors: %s", e)
            return empty_file()

        checksum = hashlib.sha256(raw).hexdigest()[:16]
        if cache is not None and cache.checksum == checksum:
            cache.stat = stat_key
            cache.loaded_at = now
            return cache.data

        try:
            data = self._normalize(_parse_json(raw))
        except ValueError as e:
            logger.warning("Failed to parse growth vectors %s: %s", self.path, e)
            return empty_file()

        self.parse_count += 1
        self._cache = _CacheEntry(data=data, checksum=checksum, stat=stat_key, loaded_at=now)
        return data

    def load_vectors(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Vectors eligible for injection (validated or integrated)."""
        return [
            v for v in self.load_file(now)["vectors"]
            if v.get("validation_status") in INJECTABLE_STATUSES
        ]

    def invalidate(self) -> None:
        self._cache = None

    # =========================================================================
    # Candidates & Promotion
    # =========================================================================

    def add_candidate(self, candidate: Dict[str, Any], now: Optional[datetime] = None) -> bool:
        """
        Record an auto-detected vector in `candidates`.

        A candidate with the same type and a similar description counts as a
        recurrence instead; enough recurrences promote it to `vectors`.
        """
        now = now or utcnow()
        candidate = dict(candidate)
        data = self._read_raw()
        candidates = data.setdefault("candidates", [])
        threshold = self.config.candidate_similarity_threshold

        existing = next(
            (
                c for c in candidates
                if c.get("type") == candidate.get("type")
                and word_similarity(c.get("description"), candidate.get("description")) > threshold
            ),
            None,
        )

        if existing is not None:
            existing["recurrence"] = int(existing.get("recurrence") or 1) + 1
            existing["last_seen"] = now.isoformat()
            if existing["recurrence"] >= self.config.candidate_promotion_threshold:
                existing["validation_status"] = "validated"
                existing["validation_note"] = f"Auto-promoted after {existing['recurrence']} recurrences"
                data.setdefault("vectors", []).append(existing)
                data["candidates"] = [c for c in candidates if c is not existing]
                logger.info("Auto-promoted candidate %s after %d recurrences",
                            existing.get("id"), existing["recurrence"])
        else:
            candidate.setdefault("id", f"gv-auto-{uuid.uuid4().hex[:8]}")
            candidate["detected"] = candidate.get("detected") or now.isoformat()
            candidate["validation_status"] = "candidate"
            candidate["source"] = "auto"
            candidates.append(candidate)

        return self._write(data)

    def validate_vector(self, vector_id: str, note: str = "") -> Dict[str, Any]:
        """Promote a candidate, or mark an existing vector validated."""
        data = self._read_raw()

        candidates = data.get("candidates") or []
        for index, candidate in enumerate(candidates):
            if candidate.get("id") == vector_id:
                candidate["validation_status"] = "validated"
                candidate["validation_note"] = note or "Manually validated"
                data.setdefault("vectors", []).append(candidate)
                del candidates[index]
                if not self._write(data):
                    return {"success": False, "error": f"Failed to write {self.path}"}
                return {"success": True, "action": "promoted", "id": vector_id}

        for vector in data.get("vectors") or []:
            if vector.get("id") == vector_id:
                vector["validation_status"] = "validated"
                if note:
                    vector["validation_note"] = note
                if not self._write(data):
                    return {"success": False, "error": f"Failed to write {self.path}"}
                return {"success": True, "action": "validated", "id": vector_id}

        return {"success": False, "error": f"Vector {vector_id} not found"}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def run_lifecycle(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Drop expired candidates and cap vectors at max_vectors (newest kept)."""
        now = now or utcnow()
        data = self._read_raw()
        changed = False

        cutoff = now - timedelta(days=self.config.candidate_max_age_days)
        candidates = data.get("candidates") or []
        kept = [c for c in candidates if _detected_at(c) > cutoff]
        pruned = len(candidates) - len(kept)
        if pruned:
            data["candidates"] = kept
            changed = True
            logger.info("Pruned %d expired candidates", pruned)

        archived = 0
        vectors = data.get("vectors") or []
        if len(vectors) > self.config.max_vectors:
            vectors.sort(key=_detected_at, reverse=True)
            archived = len(vectors) - self.config.max_vectors
            data["vectors"] = vectors[:self.config.max_vectors]
            changed = True
            logger.info("Archived %d vectors (over %d limit)", archived, self.config.max_vectors)

        if changed:
            self._write(data)
        return {"pruned": pruned, "archived": archived}

    # =========================================================================
    # Internal
    # =========================================================================

    @staticmethod
    def _normalize(data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValueError("growth vector file must hold an object")
        result = empty_file()
        result.update(data)
        for key in ("vectors", "candidates"):
            if not isinstance(result[key], list):
                result[key] = []
            result[key] = [v for v in result[key] if isinstance(v, dict)]
        if not isinstance(result["queue"], dict):
            result["queue"] = {"high": [], "medium": [], "low": []}
        if not isinstance(result["metadata"], dict):
            result["metadata"] = {}
        return result

    def _read_raw(self) -> Dict[str, Any]:
        """Uncached read used before writes. Corrupt or absent file -> empty."""
        try:
            return self._normalize(load_json(self.path, default=empty_file()))
        except ValueError:
            return empty_file()

    def _write(self, data: Dict[str, Any]) -> bool:
        ok = save_json(self.path, data)
        self.invalidate()
        return ok


def _parse_json(raw: bytes) -> Any:
    return json.loads(raw.decode("utf-8"))


def _detected_at(item: Dict[str, Any]) -> datetime:
    return parse_timestamp(item.get("detected")) or parse_timestamp(0)


# =============================================================================
# Ranker
# =============================================================================

class GrowthVectorRanker:
    """Scores vectors against the current message and picks the top few."""

    def __init__(
        self,
        store: GrowthVectorStore,
        feedback: Optional[FeedbackStore] = None,
        config: Optional[GrowthVectorConfig] = None,
    ):
        self.store = store
        self.feedback = feedback
        self.config = config or store.config

    def get_relevant_vectors(
        self,
        user_message: Optional[str] = "",
        entropy_score: float = 0.0,
        return_scores: bool = False,
        now: Optional[datetime] = None,
    ) -> List[Any]:
        now = now or utcnow()
        vectors = self.store.load_vectors(now)
        if not vectors:
            return []

        if not (user_message or "").strip():
            by_priority = self._by_priority(vectors, now)
            if return_scores:
                return [ScoredVector(vector=v, score=1.0) for v in by_priority]
            return by_priority

        message_lower = user_message.lower()
        message_words = extract_words(message_lower)

        scored = [
            ScoredVector(vector=v, score=self.calculate_relevance(v, message_lower, message_words, entropy_score, now))
            for v in vectors
        ]
        kept = sorted(
            (s for s in scored if s.score >= self.config.relevance_threshold),
            key=lambda s: s.score,
            reverse=True,
        )[:self.config.max_injected]

        if return_scores:
            return kept
        return [s.vector for s in kept]

    def calculate_relevance(
        self,
        vector: Dict[str, Any],
        message_lower: str,
        message_words: Set[str],
        entropy_score: float,
        now: Optional[datetime] = None,
    ) -> float:
        now = now or utcnow()

        # 60% keyword overlap
        vector_text = " ".join([
            vector.get("integration_hypothesis") or "",
            vector.get("description") or "",
        ]).lower()
        vector_words = extract_words(vector_text)

        # Smaller set as denominator so a short precise query scores well
        smaller = min(len(message_words), len(vector_words))
        base_keyword = len(message_words & vector_words) / max(smaller, 1)
        phrases = phrase_match_score(vector_text, message_lower)
        keyword_score = min(1.0, base_keyword * 0.7 + phrases * 0.3)

        score = (
            keyword_score * 0.6
            + self.entropy_bonus(vector, entropy_score)
            + self.recency_bonus(vector, now)
            + vector_weight(vector) * 0.1
        )
        score += self.feedback_adjustment(vector.get("id"))
        return min(1.0, max(0.0, score))

    @staticmethod
    def entropy_bonus(vector: Dict[str, Any], entropy_score: float) -> float:
        source = vector.get("entropy_source")
        if not source or entropy_score <= 0.4:
            return 0.0
        if source in CORRECTION_SOURCES:
            return 0.15
        if source in REFLECTION_SOURCES and entropy_score > 0.7:
            return 0.20
        if entropy_score > 0.6:
            return 0.10
        return 0.0

    def recency_bonus(self, vector: Dict[str, Any], now: datetime) -> float:
        detected = parse_timestamp(vector.get("detected"))
        if detected is None:
            return 0.0
        days = (now - detected).total_seconds() / 86400.0
        window = self.config.recency_days
        if days < window:
            return 0.1 * (1 - days / window)
        return 0.0

    def feedback_adjustment(self, vector_id: Optional[str]) -> float:
        """Negated mean entropy delta, capped. Needs min_feedback_entries."""
        if self.feedback is None or not vector_id or not self.config.feedback_enabled:
            return 0.0
        record = self.feedback.get_feedback(vector_id)
        if record is None or len(record.entries) < self.config.min_feedback_entries:
            return 0.0
        cap = self.config.weight_adjustment_cap
        return max(-cap, min(cap, -record.avg_entropy_delta))

    def _by_priority(self, vectors: List[Dict[str, Any]], now: datetime) -> List[Dict[str, Any]]:
        """Queue order (high, medium, low), padded with the heaviest remaining vectors."""
        queue = self.store.load_file(now).get("queue") or {}
        ordered_ids = list(queue.get("high") or []) + list(queue.get("medium") or []) + list(queue.get("low") or [])
        by_id = {v.get("id"): v for v in vectors}
        limit = self.config.max_injected

        result: List[Dict[str, Any]] = []
        for vector_id in ordered_ids:
            if len(result) >= limit:
                break
            vector = by_id.get(vector_id)
            if vector is not None and vector not in result:
                result.append(vector)

        if len(result) < limit:
            remaining = sorted(
                (v for v in vectors if v not in result),
                key=lambda v: v.get("weight") or 0,
                reverse=True,
            )
            result.extend(remaining[:limit - len(result)])
        return result


def format_for_injection(vectors: List[Dict[str, Any]]) -> str:
    """[GROWTH VECTORS] block. The hypothesis is the actionable part."""
    if not vectors:
        return ""
    lines = ["[GROWTH VECTORS]"]
    for v in vectors:
        tag = (v.get("priority") or "med").upper()
        hypothesis = v.get("integration_hypothesis") or v.get("description") or "unspecified"
        source = v.get("type") or "unknown"
        lines.append(f"{tag}: {hypothesis} ({source}, w:{vector_weight(v):.2f})")
    return "\n".join(lines)
