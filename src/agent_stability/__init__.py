"""
Agent Stability Package

Behavioral drift telemetry for conversational agents.

Architecture:
    turn text → Detectors → EntropyScorer → Observation log
                                  ↓
    turn start ← GrowthVectorRanker ← FeedbackLoop (inject → observe → re-weight)
    tool call  → LoopDetector → "[LOOP DETECTED] ..."

Core principle: signals come only from surface text. Nothing here rewrites
agent output; it injects a small context block and loop warnings.

Modules:
    detectors.py      - Temporal mismatch, quality decay, recursive meta
    entropy.py        - Composite entropy score, sustained tracking, log
    loop_detection.py - Consecutive tool, file re-read, output repetition
    vectors.py        - Growth vector store and relevance ranker
    feedback.py       - Per-vector entropy-delta feedback
    governance.py     - Rate limits, dedup, quiet hours, batching
    identity.py       - Principles and tensions
    heartbeat.py      - Heartbeat decision log
    investigation.py  - Two-phase investigation queue
    monitor.py        - Host hooks and per-agent isolation
"""

from agent_stability.config import (
    StabilityConfig,
    StabilityError,
    ConfigError,
    load_config,
)

from agent_stability.detectors import (
    TextSignalDetectors,
    DetectorResult,
)

from agent_stability.entropy import (
    EntropyScorer,
    EntropyState,
    Observation,
    SustainedStatus,
    shannon_entropy,
    entropy_label,
)

from agent_stability.loop_detection import (
    LoopDetector,
    LoopCheck,
    LoopType,
)

from agent_stability.vectors import (
    GrowthVectorStore,
    GrowthVectorRanker,
    ScoredVector,
    format_for_injection,
)

from agent_stability.feedback import (
    FeedbackStore,
    FeedbackLoop,
    FeedbackEntry,
    FeedbackRecord,
)

from agent_stability.governance import (
    Governance,
    RateLimiter,
)

from agent_stability.identity import (
    IdentityTracker,
    Principle,
    Tension,
    parse_principles,
)

from agent_stability.heartbeat import (
    Heartbeat,
    parse_decision,
    is_ground_stable,
)

from agent_stability.investigation import (
    InvestigationService,
    InvestigationIntent,
    parse_intent,
)

from agent_stability.memory import (
    MemoryStore,
    InMemoryStore,
)

from agent_stability.monitor import (
    AgentMonitor,
    StabilityPlugin,
    TurnStartResult,
    TurnEndResult,
)

__version__ = "0.1.0"
__all__ = [
    # Config
    "StabilityConfig", "StabilityError", "ConfigError", "load_config",
    # Detectors & entropy
    "TextSignalDetectors", "DetectorResult",
    "EntropyScorer", "EntropyState", "Observation", "SustainedStatus",
    "shannon_entropy", "entropy_label",
    # Loops
    "LoopDetector", "LoopCheck", "LoopType",
    # Growth vectors
    "GrowthVectorStore", "GrowthVectorRanker", "ScoredVector", "format_for_injection",
    "FeedbackStore", "FeedbackLoop", "FeedbackEntry", "FeedbackRecord",
    # Governance
    "Governance", "RateLimiter",
    # Identity & heartbeat
    "IdentityTracker", "Principle", "Tension", "parse_principles",
    "Heartbeat", "parse_decision", "is_ground_stable",
    "InvestigationService", "InvestigationIntent", "parse_intent",
    # Hooks
    "MemoryStore", "InMemoryStore",
    "AgentMonitor", "StabilityPlugin", "TurnStartResult", "TurnEndResult",
]
