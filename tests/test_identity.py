"""
Tests for Identity Tracking

Verifies:
1. Principles parsed from a ## Core Principles section, reloaded by checksum
2. Principle-aligned resolution needs a positive pattern, no negative, grounding
3. Tensions: correction > capability claim > entropy spike
4. Resolution window, tension expiry, fragmentation
5. Memory failures never break a turn
"""

import asyncio
from datetime import timedelta

from agent_stability.identity import (
    IdentityTracker,
    Principle,
    Tension,
    parse_principles,
)
from agent_stability.memory import InMemoryStore, MemoryStore
from agent_stability.vectors import GrowthVectorStore

SOUL = """# Soul

## Core Principles
- **Courage**: Face truth directly, investigate before assuming
- **Word**: Verify claims, don't promise what you can't deliver

## Voice
Warm.
"""

ALIGNED = "You're right. I checked the evidence and stayed grounded in principle."


class FailingStore(MemoryStore):
    async def store(self, content, metadata=None):
        raise RuntimeError("memory offline")

    async def search(self, query, limit=10, sort=None):
        raise RuntimeError("memory offline")


def make_tension(detected_at, status="active"):
    return Tension(id="t", type="correction", description="d", entropy_score=0.4,
                   detected_at=detected_at, status=status)


# =============================================================================
# Principles
# =============================================================================

def test_parse_principles():
    """Name plus the first five long description words; mapped negatives."""
    principles = parse_principles(SOUL)
    assert [p.name for p in principles] == ["courage", "word"]
    assert principles[0].positive_patterns == ["courage", "face", "truth", "directly", "investigate", "before"]
    assert principles[0].negative_patterns == ["avoid", "safe", "hedge", "ignore"]
    assert principles[1].positive_patterns == ["word", "verify", "claims", "don't", "promise", "what"]
    assert parse_principles("# Soul\nno section") == []
    print("  PASS: parse_principles")


def test_principle_from_dict_defaults():
    """Missing patterns fall back to the name and the antonym map."""
    p = Principle.from_dict({"name": "Courage"})
    assert p.positive_patterns == ["courage"]
    assert p.negative_patterns == ["avoid", "safe", "hedge", "ignore"]
    assert Principle.from_dict({"name": "Kindness"}).negative_patterns == ["avoid", "ignore", "abandon"]
    print("  PASS: principle_from_dict_defaults")


def test_load_principles_uses_checksum():
    """The same section is not re-parsed; no section keeps the fallback."""
    tracker = IdentityTracker()
    assert tracker.using_fallback
    assert tracker.principle_names() == ["integrity", "reliability", "coherence"]

    assert not tracker.load_principles("# Soul\nnothing here")
    assert tracker.using_fallback

    assert tracker.load_principles(SOUL)
    assert not tracker.load_principles(SOUL)
    assert not tracker.using_fallback
    assert tracker.principle_names() == ["courage", "word"]

    edited = SOUL.replace("deliver", "deliver on time")
    assert tracker.load_principles(edited)
    print("  PASS: load_principles_uses_checksum")


def test_empty_section_keeps_fallback():
    """A section with no entries doesn't replace the fallback set."""
    tracker = IdentityTracker()
    assert not tracker.load_principles("## Core Principles\nnone yet\n")
    assert tracker.using_fallback
    print("  PASS: empty_section_keeps_fallback")


def test_aligned_resolution():
    """Positive pattern, no negative pattern, grounding language."""
    tracker = IdentityTracker()
    assert tracker.is_principle_aligned_resolution(ALIGNED)
    assert not tracker.is_principle_aligned_resolution("I checked the evidence carefully")
    assert not tracker.is_principle_aligned_resolution("I'll fabricate the evidence")
    assert not tracker.is_principle_aligned_resolution("")
    print("  PASS: aligned_resolution")


def test_identify_primary_principle():
    """Most positive-pattern hits wins; ties go to the first principle."""
    tracker = IdentityTracker()
    assert tracker.identify_primary_principle("tested, confirmed and checked") == "reliability"
    assert tracker.identify_primary_principle(ALIGNED) == "integrity"
    assert tracker.identify_primary_principle("nothing relevant") == "general"
    print("  PASS: identify_primary_principle")


# =============================================================================
# Tensions
# =============================================================================

def test_correction_then_resolution(tmp_path, t0):
    """A correction is resolved by a later aligned response and becomes a candidate."""
    store = GrowthVectorStore(path=tmp_path / "growth-vectors.json")
    tracker = IdentityTracker(vector_store=store)
    memory = InMemoryStore()

    update = asyncio.run(tracker.process_turn("actually that's wrong", "ok", 0.4, memory, now=t0))
    assert update.tension.type == "correction"
    assert update.resolved is None
    assert len(tracker.active_tensions) == 1

    later = t0 + timedelta(minutes=10)
    update = asyncio.run(tracker.process_turn("thanks", ALIGNED, 0.1, memory, now=later))
    assert update.tension is None
    assert update.resolved.type == "correction"
    assert update.resolved.resolved_at == later
    assert update.principle == "integrity"
    assert tracker.active_tensions == []

    types = [r.metadata["type"] for r in memory.records]
    assert types == ["tension", "tension", "growth_vector"]
    assert memory.records[1].content.startswith("[Tension Resolved]")

    candidates = store.load_file(later)["candidates"]
    assert len(candidates) == 1
    assert candidates[0]["entropy_source"] == "user_correction"
    assert candidates[0]["id"] == f"gv-auto-{update.resolved.id[:8]}"
    print("  PASS: correction_then_resolution")


def test_resolution_window(t0):
    """Aligned responses outside the window resolve nothing."""
    tracker = IdentityTracker()
    asyncio.run(tracker.process_turn("actually no", "ok", 0.4, now=t0))
    update = asyncio.run(tracker.process_turn("thanks", ALIGNED, 0.0, now=t0 + timedelta(minutes=31)))
    assert update.resolved is None
    assert len(tracker.active_tensions) == 1
    print("  PASS: resolution_window")


def test_tensions_expire(t0):
    """Tensions older than the TTL are dropped."""
    tracker = IdentityTracker()
    asyncio.run(tracker.process_turn("actually no", "ok", 0.4, now=t0))
    asyncio.run(tracker.process_turn("hello", "hi", 0.0, now=t0 + timedelta(days=8)))
    assert tracker.tensions == []
    print("  PASS: tensions_expire")


def test_capability_claim(t0):
    """Unproven claims create a tension the same response can't resolve."""
    tracker = IdentityTracker()
    update = asyncio.run(tracker.process_turn(
        "how's the cache?", "I've implemented the cache layer, grounded in the evidence", 0.1, now=t0,
    ))
    assert update.tension.type == "capability_claim"
    assert update.resolved is None
    assert len(tracker.active_tensions) == 1

    proven = asyncio.run(tracker.process_turn(
        "and now?", "I've implemented it and tested it", 0.1, now=t0 + timedelta(minutes=1),
    ))
    assert proven.tension is None
    print("  PASS: capability_claim")


def test_entropy_spike(t0):
    """Scores above the critical threshold are tensions."""
    tracker = IdentityTracker()
    update = asyncio.run(tracker.process_turn("hello", "sure", 1.2, now=t0))
    assert update.tension.type == "entropy_spike"
    assert update.tension.description == "Entropy spike: 1.20"
    assert asyncio.run(tracker.process_turn("hello", "sure", 1.0, now=t0)).tension is None
    print("  PASS: entropy_spike")


def test_fragmentation(t0):
    """More than five active tensions and a ratio above 3:1."""
    tracker = IdentityTracker()
    tracker.tensions = [make_tension(t0) for _ in range(6)]

    status = tracker.detect_fragmentation(1)
    assert status.fragmented
    assert status.ratio == 6.0

    assert not tracker.detect_fragmentation(2).fragmented        # ratio 3.0, not > 3
    tracker.tensions[0].status = "resolved"
    assert not tracker.detect_fragmentation(0).fragmented        # 5 active, not > 5
    print("  PASS: fragmentation")


def test_memory_failures_are_contained(t0):
    """A broken memory store never breaks the turn."""
    tracker = IdentityTracker()
    memory = FailingStore()
    update = asyncio.run(tracker.process_turn("actually no", "ok", 0.4, memory, now=t0))
    assert update.tension is not None
    assert asyncio.run(tracker.count_records(memory, "type:tension")) == 0
    print("  PASS: memory_failures_are_contained")


def test_count_records(t0):
    """Counts matching memory records."""
    tracker = IdentityTracker()
    memory = InMemoryStore()
    asyncio.run(tracker.process_turn("actually no", "ok", 0.4, memory, now=t0))
    assert asyncio.run(tracker.count_records(memory, "type:tension status:active")) == 1
    assert asyncio.run(tracker.count_records(None, "type:tension")) == 0
    print("  PASS: count_records")
