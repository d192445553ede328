"""
Tests for Heartbeat Decisions

Verifies:
1. DECISION parsing (em dash or hyphen, case-insensitive)
2. Ground-stable recognition, including legacy HEARTBEAT_OK
3. Decisions logged to memory and read back newest first
"""

import asyncio
from datetime import timedelta

from agent_stability.config import HeartbeatConfig
from agent_stability.heartbeat import (
    Decision,
    Heartbeat,
    is_ground_stable,
    parse_decision,
)
from agent_stability.memory import InMemoryStore


def test_parse_decision():
    """Decision keyword and one-line reason."""
    assert parse_decision("DECISION: TEND — follow up on the migration\nmore context") == Decision(
        "TEND", "follow up on the migration",
    )
    assert parse_decision("decision: ground - all quiet") == Decision("GROUND", "all quiet")
    assert parse_decision("DECISION: PANIC — no") is None
    assert parse_decision(None) is None
    print("  PASS: parse_decision")


def test_is_ground_stable():
    """Structured, natural-language and legacy stable markers."""
    assert is_ground_stable("Presence maintained.")
    assert is_ground_stable("HEARTBEAT_OK")
    assert is_ground_stable("  heartbeat_ok, nothing new")
    assert is_ground_stable("Decision: ground")
    assert not is_ground_stable("Surfacing an issue with the deploy")
    assert not is_ground_stable(None)
    print("  PASS: is_ground_stable")


def test_log_and_read_decisions(t0):
    """Only the most recent decisions come back, newest first."""
    heartbeat = Heartbeat()
    memory = InMemoryStore()
    for i, decision in enumerate(["GROUND", "TEND", "SURFACE", "INTEGRATE"]):
        asyncio.run(heartbeat.log_decision(f"DECISION: {decision} — reason {i}", memory,
                                           now=t0 + timedelta(minutes=30 * i)))

    recent = asyncio.run(heartbeat.read_recent_decisions(memory))
    assert [d.decision for d in recent] == ["INTEGRATE", "SURFACE", "TEND"]
    assert str(recent[0]) == "INTEGRATE — reason 3"
    assert memory.records[0].metadata["type"] == "heartbeat_decision"
    print("  PASS: log_and_read_decisions")


def test_ground_stable_text_is_logged_as_ground(t0):
    """Unstructured but stable text becomes GROUND."""
    memory = InMemoryStore()
    decision = asyncio.run(Heartbeat().log_decision("HEARTBEAT_OK", memory, now=t0))
    assert decision == Decision("GROUND", "Nothing needs attention")
    assert len(memory.records) == 1
    print("  PASS: ground_stable_text_is_logged_as_ground")


def test_unparseable_text_is_not_logged(t0):
    """Free text without a decision is ignored."""
    memory = InMemoryStore()
    assert asyncio.run(Heartbeat().log_decision("Checked email, replied to Sam", memory, now=t0)) is None
    assert memory.records == []
    assert asyncio.run(Heartbeat().log_decision("DECISION: TEND — x", None)) is None
    print("  PASS: unparseable_text_is_not_logged")


def test_recent_decisions_prompt(t0):
    """Prompt block lists decisions; empty memory gives an empty string."""
    heartbeat = Heartbeat()
    memory = InMemoryStore()
    assert asyncio.run(heartbeat.recent_decisions_prompt(memory)) == ""

    asyncio.run(heartbeat.log_decision("DECISION: SURFACE — deploy failed twice", memory, now=t0))
    prompt = asyncio.run(heartbeat.recent_decisions_prompt(memory))
    assert prompt.startswith("[RECENT HEARTBEAT DECISIONS]\n")
    assert "SURFACE — deploy failed twice" in prompt
    print("  PASS: recent_decisions_prompt")


def test_disabled_framework():
    """With the framework off nothing is logged and no prompt is offered."""
    heartbeat = Heartbeat(HeartbeatConfig(decision_framework=False))
    memory = InMemoryStore()
    assert asyncio.run(heartbeat.log_decision("DECISION: TEND — x", memory)) is None
    assert heartbeat.decision_framework_prompt() == ""
    assert Heartbeat().decision_framework_prompt().startswith("## Decision (required)")
    print("  PASS: disabled_framework")
