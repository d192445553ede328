"""
Identity - Principles, tensions and principle-aligned resolutions.

Principles come from the agent's principles document (SOUL.md):

    ## Core Principles
    - **Integrity**: Verify claims before stating them, surface evidence
    - **Coherence**: Stay consistent across contexts

Each entry becomes a Principle with positive patterns (the name plus the
first five description words longer than three characters) and negative
patterns (a fixed antonym map). Until a document with that section is
seen, the configured fallback principles apply.

A tension is a friction point in the conversation:
- correction        the user corrected the agent
- capability_claim  the agent claimed new capability without evidence
- entropy_spike     the turn scored above the critical threshold

A later response that is principle-aligned (a positive pattern, no negative
pattern, grounding language) resolves the most recent active tension that is
still inside the resolution window. Resolutions are stored as growth
vectors in memory and offered to the vector file as candidates.

Usage:
    tracker = IdentityTracker(config.principles, vector_store=store)
    tracker.load_principles(soul_md_text)
    update = await tracker.process_turn(user, response, score, memory)
    status = tracker.detect_fragmentation(len(store.load_vectors()))
"""

import hashlib
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from agent_stability.config import EntropyConfig, PrinciplesConfig
from agent_stability.detectors import contains_any
from agent_stability.memory import MemoryStore
from agent_stability.vectors import GrowthVectorStore

logger = logging.getLogger(__name__)

_SECTION_PATTERN = re.compile(r"## Core Principles\n([\s\S]*?)(?=\n## |\n---|\n# |$)", re.IGNORECASE)
_ENTRY_PATTERN = re.compile(r"- \*\*(.+?)\*\*:\s*(.+)")

NEGATIVE_PATTERNS = {
    "courage": ["avoid", "safe", "hedge", "ignore"],
    "word": ["break", "lie", "guess", "assume"],
    "brand": ["betray", "abandon", "contradict", "drift"],
    "integrity": ["avoid", "hedge", "assume", "fabricate"],
    "reliability": ["guess", "probably", "might", "untested"],
    "coherence": ["contradict", "drift", "abandon", "fragment"],
}
DEFAULT_NEGATIVE_PATTERNS = ["avoid", "ignore", "abandon"]

CAPABILITY_CLAIM_PATTERNS = [
    "i can now", "i've implemented", "i have implemented", "i've fixed",
    "i have fixed", "is now working", "now fully working", "successfully deployed",
]
EVIDENCE_PATTERNS = [
    "tested", "verified", "confirmed", "test passed", "output:", "```",
]

# Tension type -> entropy_source used when the resolution becomes a candidate
TENSION_SOURCES = {
    "correction": "user_correction",
    "capability_claim": "factual_accuracy_gap",
    "entropy_spike": "elevated_entropy_threshold_breach",
}


# =============================================================================
# Principles
# =============================================================================

@dataclass
class Principle:
    name: str
    positive_patterns: List[str]
    negative_patterns: List[str]
    grounding_required: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Principle":
        name = str(data.get("name", "")).lower().strip()
        positive = data.get("positive_patterns", data.get("positivePatterns")) or [name]
        negative = data.get("negative_patterns", data.get("negativePatterns"))
        if negative is None:
            negative = NEGATIVE_PATTERNS.get(name, DEFAULT_NEGATIVE_PATTERNS)
        grounding = data.get("grounding_required", data.get("groundingRequired", True))
        return cls(
            name=name,
            positive_patterns=[str(p).lower() for p in positive],
            negative_patterns=[str(p).lower() for p in negative],
            grounding_required=bool(grounding),
        )


def principles_section(document: Optional[str]) -> Optional[str]:
    if not document:
        return None
    match = _SECTION_PATTERN.search(document)
    return match.group(1) if match else None


def parse_principles(document: Optional[str]) -> List[Principle]:
    """Parse `- **Name**: description` entries under `## Core Principles`."""
    section = principles_section(document)
    if section is None:
        return []

    principles = []
    for raw_name, raw_description in _ENTRY_PATTERN.findall(section):
        name = raw_name.lower().strip()
        description = raw_description.lower().strip()
        words = [w for w in re.split(r"[\s,;]+", description) if len(w) > 3]
        principles.append(Principle(
            name=name,
            positive_patterns=[name] + words[:5],
            negative_patterns=list(NEGATIVE_PATTERNS.get(name, DEFAULT_NEGATIVE_PATTERNS)),
        ))
    return principles


# =============================================================================
# Tensions
# =============================================================================

@dataclass
class Tension:
    id: str
    type: str
    description: str
    entropy_score: float
    detected_at: datetime
    status: str = "active"
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "entropy_score": self.entropy_score,
            "detected_at": self.detected_at.isoformat(),
            "status": self.status,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass
class IdentityUpdate:
    """What process_turn changed."""
    tension: Optional[Tension] = None
    resolved: Optional[Tension] = None
    principle: Optional[str] = None


@dataclass(frozen=True)
class FragmentationStatus:
    fragmented: bool
    active_tensions: int
    growth_vectors: int
    ratio: float


# =============================================================================
# Tracker
# =============================================================================

class IdentityTracker:
    """Per-agent principle set and in-memory tension list."""

    def __init__(
        self,
        config: Optional[PrinciplesConfig] = None,
        vector_store: Optional[GrowthVectorStore] = None,
        entropy_config: Optional[EntropyConfig] = None,
    ):
        self.config = config or PrinciplesConfig()
        self.vector_store = vector_store
        self.entropy_config = entropy_config or EntropyConfig()

        self.principles: List[Principle] = [Principle.from_dict(p) for p in self.config.fallback]
        self.principles_checksum: Optional[str] = None
        self.using_fallback = True
        self.grounding_patterns = [p.lower() for p in self.config.grounding_patterns]

        self.tensions: List[Tension] = []

    # =========================================================================
    # Principles
    # =========================================================================

    def load_principles(self, document: Optional[str]) -> bool:
        """Re-parse when the Core Principles section changed. Returns True if reloaded."""
        section = principles_section(document)
        if section is None:
            return False

        checksum = hashlib.sha256(section.encode("utf-8")).hexdigest()[:16]
        if checksum == self.principles_checksum:
            return False

        parsed = parse_principles(document)
        self.principles_checksum = checksum
        if not parsed:
            return False

        self.principles = parsed
        self.using_fallback = False
        logger.info("Loaded %d principles from principles document", len(parsed))
        return True

    def principle_names(self) -> List[str]:
        return [p.name for p in self.principles]

    def is_principle_aligned_resolution(self, text: Optional[str]) -> bool:
        if not text or not self.principles:
            return False
        lower = text.lower()

        aligned = any(
            contains_any(lower, p.positive_patterns) and not contains_any(lower, p.negative_patterns)
            for p in self.principles
        )
        if not aligned:
            return False

        if any(p.grounding_required for p in self.principles):
            return contains_any(lower, self.grounding_patterns)
        return True

    def identify_primary_principle(self, text: Optional[str]) -> str:
        lower = (text or "").lower()
        best_name, best_score = "general", 0
        for principle in self.principles:
            score = sum(1 for p in principle.positive_patterns if p in lower)
            if score > best_score:
                best_name, best_score = principle.name, score
        return best_name

    # =========================================================================
    # Tensions
    # =========================================================================

    @property
    def active_tensions(self) -> List[Tension]:
        return [t for t in self.tensions if t.status == "active"]

    def expire_tensions(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        ttl = timedelta(days=self.config.tension_ttl_days)
        before = len(self.tensions)
        self.tensions = [t for t in self.tensions if now - t.detected_at <= ttl]
        return before - len(self.tensions)

    def detect_tension(
        self,
        user_message: str,
        response_text: str,
        score: float,
        now: Optional[datetime] = None,
    ) -> Optional[Tension]:
        """Classify this turn's friction, if any. Correction wins over claim over spike."""
        user_lower = user_message.lower()
        response_lower = response_text.lower()

        if contains_any(user_lower, self.entropy_config.correction_patterns):
            kind, description = "correction", f"User correction: {user_message[:100]}"
        elif (contains_any(response_lower, CAPABILITY_CLAIM_PATTERNS)
              and not contains_any(response_lower, EVIDENCE_PATTERNS)):
            kind, description = "capability_claim", f"Unproven capability claim: {response_text[:100]}"
        elif score > self.entropy_config.critical_threshold:
            kind, description = "entropy_spike", f"Entropy spike: {score:.2f}"
        else:
            return None

        return Tension(
            id=str(uuid.uuid4()),
            type=kind,
            description=description,
            entropy_score=score,
            detected_at=now or datetime.now(timezone.utc),
        )

    def _resolvable(self, now: datetime, exclude: Optional[Tension]) -> Optional[Tension]:
        window = timedelta(minutes=self.config.resolution_window_minutes)
        for tension in reversed(self.tensions):
            if tension is exclude or tension.status != "active":
                continue
            if now - tension.detected_at <= window:
                return tension
        return None

    async def process_turn(
        self,
        user_message: Optional[str],
        response_text: Optional[str],
        score: float,
        memory: Optional[MemoryStore] = None,
        now: Optional[datetime] = None,
    ) -> IdentityUpdate:
        """Record any new tension, then try to resolve one with this response."""
        user_message = user_message or ""
        response_text = response_text or ""
        now = now or datetime.now(timezone.utc)
        update = IdentityUpdate()

        self.expire_tensions(now)

        tension = self.detect_tension(user_message, response_text, score, now)
        if tension is not None:
            self.tensions.append(tension)
            update.tension = tension
            await _store(memory, f"[Tension] {tension.type}: {tension.description} (status: active)", {
                "type": "tension",
                "status": "active",
                "tension_type": tension.type,
                "id": tension.id,
            })

        if not self.principles or not self.is_principle_aligned_resolution(response_text):
            return update

        # A claim can't be resolved by the response that made it
        exclude = tension if tension is not None and tension.type == "capability_claim" else None
        target = self._resolvable(now, exclude)
        if target is None:
            return update

        principle = self.identify_primary_principle(response_text)
        target.status = "resolved"
        target.resolved_at = now
        update.resolved = target
        update.principle = principle

        await _store(memory, f"[Tension Resolved] {target.description}", {
            "type": "tension",
            "status": "resolved",
            "id": target.id,
        })
        await _store(
            memory,
            f"[Growth Vector] {principle}: {response_text[:100]} "
            f"(entropy: {score:.2f}, domain: general)",
            {"type": "growth_vector", "principle": principle, "domain": "general", "id": str(uuid.uuid4())},
        )

        if self.vector_store is not None:
            self.vector_store.add_candidate({
                "id": f"gv-auto-{target.id[:8]}",
                "type": target.type,
                "description": target.description,
                "integration_hypothesis": response_text[:160],
                "entropy_source": TENSION_SOURCES.get(target.type, "pattern_break"),
                "principle": principle,
                "weight": 0.5,
            }, now=now)

        return update

    # =========================================================================
    # Fragmentation
    # =========================================================================

    def detect_fragmentation(self, vector_count: int) -> FragmentationStatus:
        """Too many unresolved tensions relative to integrated growth."""
        active = len(self.active_tensions)
        ratio = active / max(vector_count, 1)
        return FragmentationStatus(
            fragmented=active > self.config.fragmentation_min_tensions and ratio > self.config.fragmentation_ratio,
            active_tensions=active,
            growth_vectors=vector_count,
            ratio=ratio,
        )

    async def count_records(self, memory: Optional[MemoryStore], query: str) -> int:
        if memory is None:
            return 0
        try:
            return len(await memory.search(query, limit=1000))
        except Exception as e:
            logger.warning("Memory search failed (%s): %s", query, e)
            return 0


async def _store(memory: Optional[MemoryStore], content: str, metadata: Dict[str, Any]) -> None:
    if memory is None:
        return
    try:
        await memory.store(content, metadata)
    except Exception as e:
        logger.warning("Failed to store %s: %s", metadata.get("type", "record"), e)
