"""
Tests for the in-process memory store.
"""

import asyncio

from agent_stability.memory import InMemoryStore


def test_search_filters_and_terms():
    """key:value tokens match metadata; other tokens match content."""
    memory = InMemoryStore()

    async def scenario():
        await memory.store("[Tension] correction: wrong port", {"type": "tension", "status": "active"})
        await memory.store("[Tension Resolved] wrong port", {"type": "tension", "status": "resolved"})
        await memory.store("[Heartbeat Decision] GROUND", {"type": "heartbeat_decision"})
        return (
            await memory.search("type:tension"),
            await memory.search("type:tension status:active"),
            await memory.search("PORT resolved"),
            await memory.search("type:tension", limit=1, sort="newest"),
        )

    tensions, active, by_text, newest = asyncio.run(scenario())
    assert len(tensions) == 2
    assert [r.metadata["status"] for r in active] == ["active"]
    assert [r.content for r in by_text] == ["[Tension Resolved] wrong port"]
    assert newest[0].metadata["status"] == "resolved"
    print("  PASS: search_filters_and_terms")


def test_records_are_sequenced():
    """Each stored record gets an increasing sequence number."""
    memory = InMemoryStore()
    first = asyncio.run(memory.store("a"))
    second = asyncio.run(memory.store("b", {"type": "x"}))
    assert second.seq > first.seq
    assert first.metadata == {}
    print("  PASS: records_are_sequenced")
