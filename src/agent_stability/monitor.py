"""
Monitor - Host hooks and per-agent isolation.

The host runtime calls four hooks:

    on_turn_start      -> TurnStartResult (context block to prepend)
    on_turn_end        -> TurnEndResult   (score, sustained status, detectors)
    on_tool_call       -> "[LOOP DETECTED] ..." or None
    on_pre_compaction  -> summary stored to memory, or None

Every agent gets its own AgentMonitor (scorer, detectors, loop detector,
identity tracker, vector store, feedback loop) and its own data directory:

    <data>/                 the "main" agent
    <data>/agents/<id>/     every other agent

The InvestigationService is the only component shared across agents.

Usage:
    plugin = StabilityPlugin(load_config())
    plugin.start()
    result = await plugin.on_turn_start("main", messages=messages, memory=memory)
    ...
    await plugin.on_turn_end("main", messages=messages, memory=memory)
    plugin.stop()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from agent_stability.config import StabilityConfig, resolve_data_dir, resolve_workspace
from agent_stability.context import (
    extract_last_user_message,
    extract_text,
    last_message,
    strip_injected_context,
    wrap_injected,
)
from agent_stability.detectors import DetectorResult, TextSignalDetectors
from agent_stability.entropy import EntropyScorer, Observation, SustainedStatus, entropy_label
from agent_stability.feedback import FEEDBACK_FILENAME, FeedbackLoop, FeedbackStore, InjectedVector
from agent_stability.heartbeat import Heartbeat
from agent_stability.identity import IdentityTracker
from agent_stability.investigation import InvestigationService
from agent_stability.loop_detection import LoopDetector
from agent_stability.memory import MemoryStore
from agent_stability.persistence import ensure_dir
from agent_stability.vectors import (
    INJECTABLE_STATUSES,
    VECTOR_FILENAME,
    GrowthVectorRanker,
    GrowthVectorStore,
    format_for_injection,
)

logger = logging.getLogger(__name__)

MAIN_AGENT = "main"
PRINCIPLES_FILENAME = "SOUL.md"

ACTIVE_THRESHOLD = 0.4            # above this, richer context is injected
HIGH_RELEVANCE_THRESHOLD = 0.8    # vectors this relevant are injected even when nominal
COMPACTION_THRESHOLD = 0.6


@dataclass
class TurnStartResult:
    prepend_context: str
    fragmentation_warning: Optional[str] = None
    growth_vectors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class TurnEndResult:
    score: float
    sustained: SustainedStatus
    detectors: DetectorResult
    warning: Optional[str] = None


def _get(mapping: Optional[Dict[str, Any]], *keys: str) -> Any:
    if not mapping:
        return None
    for key in keys:
        if key in mapping:
            return mapping[key]
    return None


class AgentMonitor:
    """All per-agent state behind the four hooks."""

    def __init__(
        self,
        agent_id: str,
        config: StabilityConfig,
        base_data_dir: Path,
        workspace: Optional[Path] = None,
        investigation: Optional[InvestigationService] = None,
    ):
        self.agent_id = agent_id or MAIN_AGENT
        self.config = config
        if self.agent_id == MAIN_AGENT:
            self.data_dir = ensure_dir(Path(base_data_dir))
        else:
            self.data_dir = ensure_dir(Path(base_data_dir) / "agents" / self.agent_id)
        self.workspace = Path(workspace) if workspace is not None else resolve_workspace(config)
        self.investigation = investigation

        gv = config.growth_vectors
        vector_path = Path(gv.file_path).expanduser() if gv.file_path else self.workspace / "memory" / VECTOR_FILENAME

        self.scorer = EntropyScorer(config.entropy, self.data_dir)
        self.detectors = TextSignalDetectors(config.detectors)
        self.loop_detector = LoopDetector(config.loop_detection)
        self.heartbeat = Heartbeat(config.heartbeat)
        self.vector_store = GrowthVectorStore(gv, vector_path)
        self.feedback_store = FeedbackStore(self.data_dir / FEEDBACK_FILENAME, window_size=gv.feedback_window_size)
        self.ranker = GrowthVectorRanker(self.vector_store, self.feedback_store, gv)
        self.feedback_loop = FeedbackLoop(self.feedback_store, enabled=gv.feedback_enabled)
        self.identity = IdentityTracker(config.principles, self.vector_store, config.entropy)

    # =========================================================================
    # Principles
    # =========================================================================

    def read_principles_document(self) -> Optional[str]:
        path = self.workspace / PRINCIPLES_FILENAME
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("[%s] Failed to read %s: %s", self.agent_id, path, e)
            return None

    def refresh_principles(self, document: Optional[str] = None) -> None:
        document = document if document is not None else self.read_principles_document()
        if document:
            self.identity.load_principles(document)

    # =========================================================================
    # Hooks
    # =========================================================================

    async def on_turn_start(
        self,
        messages: Optional[List[Dict[str, Any]]] = None,
        user_message: Any = None,
        memory: Optional[MemoryStore] = None,
        principles_document: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TurnStartResult:
        """Build the stability context block and arm the feedback loop."""
        now = now or datetime.now(timezone.utc)
        self.refresh_principles(principles_document)

        state = self.scorer.get_current_state(now)
        score = state.last_score
        active = score > ACTIVE_THRESHOLD

        entropy_line = f"Entropy: {score:.2f} ({entropy_label(score)})"
        if state.sustained_turns > 0:
            entropy_line += f" | Sustained: {state.sustained_turns} turns ({state.sustained_minutes}min)"
        lines = ["[STABILITY CONTEXT]", entropy_line]

        if active:
            decisions = await self.heartbeat.read_recent_decisions(memory)
            if decisions:
                lines.append("Recent decisions: " + ", ".join(d.decision for d in decisions))

            names = self.identity.principle_names()
            if names:
                principles_line = f"Principles: {', '.join(names)} | Alignment: stable"
                if self.identity.using_fallback:
                    principles_line += " (defaults — add ## Core Principles to SOUL.md to customize)"
                lines.append(principles_line)

        result = TurnStartResult(prepend_context="")

        if self.config.growth_vectors.enabled:
            try:
                if active:
                    status = self.identity.detect_fragmentation(len(self.vector_store.load_vectors(now)))
                    if status.fragmented:
                        result.fragmentation_warning = (
                            f"⚠ Fragmentation: {status.active_tensions} unresolved tensions "
                            f"(ratio {status.ratio:.1f}:1)"
                        )
                        lines.append(result.fragmentation_warning)

                message = extract_last_user_message(messages, user_message)
                scored = self.ranker.get_relevant_vectors(message, score, return_scores=True, now=now)
                top_score = scored[0].score if scored else 0.0
                if not (active or top_score > HIGH_RELEVANCE_THRESHOLD):
                    scored = []

                # only vectors that actually reach the prompt get feedback
                self.feedback_loop.arm(
                    [InjectedVector(id=s.id, relevance_score=s.score) for s in scored if s.id],
                    pre_entropy=score,
                )
                if scored:
                    result.growth_vectors = [s.vector for s in scored]
                    lines.append("")
                    lines.append(format_for_injection(result.growth_vectors))
            except Exception as e:
                self.feedback_loop.clear()
                logger.warning("[%s] Growth vector injection error: %s", self.agent_id, e)

        result.prepend_context = wrap_injected("\n".join(lines))
        return result

    async def on_turn_end(
        self,
        messages: Optional[List[Dict[str, Any]]],
        memory: Optional[MemoryStore] = None,
        metadata: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[TurnEndResult]:
        """Score the finished turn. Returns None if the turn has no user/assistant pair."""
        last_user = last_message(messages, "user")
        last_assistant = last_message(messages, "assistant")
        if last_user is None or last_assistant is None:
            return None

        now = now or datetime.now(timezone.utc)
        user_message = strip_injected_context(extract_text(last_user))
        response_text = extract_text(last_assistant)

        detector_result = self.detectors.run_all(user_message, response_text)
        score = self.scorer.calculate_entropy_score(user_message, response_text, detector_result, context, now=now)
        sustained = self.scorer.track_sustained_entropy(score, now)
        self.scorer.log_observation(
            Observation.build(score, sustained, detector_result, user_message, response_text, now=now),
            now=now,
        )

        self.refresh_principles(_get(metadata, "principles_document", "soul_md", "soulMd"))
        await self.identity.process_turn(user_message, response_text, score, memory, now=now)

        self.feedback_loop.close(score, detector_result, now=now)

        if _get(metadata, "is_heartbeat", "isHeartbeat"):
            await self.heartbeat.log_decision(response_text, memory, now=now)
            if self.investigation is not None:
                self.investigation.process_response(response_text, now)

        warning = None
        if sustained.sustained:
            warning = (
                f"SUSTAINED CRITICAL ENTROPY: {sustained.turns} turns, "
                f"{sustained.minutes} minutes above threshold"
            )
            logger.warning("[%s] %s", self.agent_id, warning)

        return TurnEndResult(score=score, sustained=sustained, detectors=detector_result, warning=warning)

    def on_tool_call(
        self,
        tool_name: Optional[str],
        output: Any = "",
        params: Optional[Dict[str, Any]] = None,
        now: Optional[float] = None,
    ) -> Optional[str]:
        check = self.loop_detector.record_and_check(tool_name or "", output, params, now=now)
        if not check.loop_detected:
            return None
        logger.warning("[%s] Loop detected (%s): %s", self.agent_id, check.type.value, check.message)
        return f"[LOOP DETECTED] {check.message}"

    async def on_pre_compaction(
        self,
        memory: Optional[MemoryStore] = None,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Summarize significant entropy activity before the context is compressed."""
        now = now or datetime.now(timezone.utc)
        state = self.scorer.get_current_state(now)
        if state.last_score <= COMPACTION_THRESHOLD and state.sustained_turns == 0:
            return None

        lines = ["[Stability Pre-Compaction Summary]", f"Last entropy: {state.last_score:.2f}"]
        if state.sustained_turns > 0:
            lines.append(f"Sustained high entropy: {state.sustained_turns} turns ({state.sustained_minutes}min)")
        if state.recent_history:
            lines.append("Recent pattern: " + " → ".join(f"{h.entropy:.2f}" for h in state.recent_history))
        summary = "\n".join(lines)

        if memory is not None:
            try:
                await memory.store(summary, {
                    "type": "stability_compaction_summary",
                    "timestamp": now.isoformat(),
                })
            except Exception as e:
                logger.warning("[%s] Failed to store compaction summary: %s", self.agent_id, e)
        return summary

    def reset_session(self) -> None:
        self.loop_detector.reset()
        self.feedback_loop.clear()


class StabilityPlugin:
    """Agent map, shared investigation service and state inspection."""

    def __init__(self, config: Optional[StabilityConfig] = None, data_dir: Optional[Path] = None):
        self.config = config or StabilityConfig()
        self.data_dir = ensure_dir(Path(data_dir) if data_dir is not None else resolve_data_dir(self.config))
        self.agents: Dict[str, AgentMonitor] = {}
        self.investigation = InvestigationService(self.config.governance, self.data_dir)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        self.investigation.start()
        self.agent(MAIN_AGENT)
        logger.info("Stability monitoring started")

    def stop(self) -> None:
        self.investigation.stop()
        self.investigation.governance.cancel()

    def agent(self, agent_id: Optional[str] = None, workspace: Optional[Path] = None) -> AgentMonitor:
        """Get or lazily create an agent's monitor. New agents run vector lifecycle once."""
        agent_id = agent_id or MAIN_AGENT
        monitor = self.agents.get(agent_id)
        if monitor is None:
            monitor = AgentMonitor(agent_id, self.config, self.data_dir, workspace, self.investigation)
            self.agents[agent_id] = monitor
            logger.info("Initialized stability state for agent %r (data: %s)", agent_id, monitor.data_dir)
            try:
                monitor.vector_store.run_lifecycle()
            except (OSError, ValueError) as e:
                logger.warning("[%s] Vector lifecycle failed: %s", agent_id, e)
        return monitor

    # =========================================================================
    # Hooks
    # =========================================================================

    async def on_turn_start(self, agent_id: Optional[str] = None, workspace: Optional[Path] = None, **kwargs) -> TurnStartResult:
        return await self.agent(agent_id, workspace).on_turn_start(**kwargs)

    async def on_turn_end(self, agent_id: Optional[str] = None, **kwargs) -> Optional[TurnEndResult]:
        return await self.agent(agent_id).on_turn_end(**kwargs)

    def on_tool_call(self, agent_id: Optional[str] = None, **kwargs) -> Optional[str]:
        return self.agent(agent_id).on_tool_call(**kwargs)

    async def on_pre_compaction(self, agent_id: Optional[str] = None, **kwargs) -> Optional[str]:
        return await self.agent(agent_id).on_pre_compaction(**kwargs)

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_entropy(self, agent_id: Optional[str] = None) -> float:
        return self.agent(agent_id).scorer.last_score

    def get_state(self, agent_id: Optional[str] = None) -> Dict[str, Any]:
        monitor = self.agent(agent_id)
        state = monitor.scorer.get_current_state()
        data = monitor.vector_store.load_file()
        return {
            "agent_id": monitor.agent_id,
            "entropy": state.last_score,
            "label": entropy_label(state.last_score),
            "sustained": state.sustained_turns,
            "sustained_minutes": state.sustained_minutes,
            "recent_history": [h.entropy for h in state.recent_history],
            "principles": monitor.identity.principle_names(),
            "growth_vectors": {
                "file": len(data["vectors"]),
                "candidates": len(data["candidates"]),
                "session_tensions": len(monitor.identity.active_tensions),
            },
            "investigation": self.investigation.state_for_prompt(),
        }

    def get_principles(self, agent_id: Optional[str] = None) -> Dict[str, Any]:
        monitor = self.agent(agent_id)
        return {
            "agent_id": monitor.agent_id,
            "principles": monitor.identity.principle_names(),
            "source": "config-fallback" if monitor.identity.using_fallback else "soul.md",
            "format": "## Core Principles\n- **Name**: description",
            "fallback": [p.get("name") for p in self.config.principles.fallback],
        }

    def get_growth_vectors(self, agent_id: Optional[str] = None) -> Dict[str, Any]:
        monitor = self.agent(agent_id)
        data = monitor.vector_store.load_file()
        return {
            "agent_id": monitor.agent_id,
            "total": len(data["vectors"]),
            "validated": sum(1 for v in data["vectors"] if v.get("validation_status") in INJECTABLE_STATUSES),
            "candidates": len(data["candidates"]),
            "vectors": data["vectors"][:20],
            "candidate_list": data["candidates"][:10],
            "session_tensions": [t.to_dict() for t in monitor.identity.tensions],
        }

    def validate_vector(self, vector_id: str, note: str = "", agent_id: Optional[str] = None) -> Dict[str, Any]:
        if not vector_id:
            return {"success": False, "error": "Missing required param: id"}
        return self.agent(agent_id).vector_store.validate_vector(vector_id, note)

    def get_vector_feedback(self, vector_id: Optional[str] = None, agent_id: Optional[str] = None) -> Dict[str, Any]:
        monitor = self.agent(agent_id)
        if vector_id:
            record = monitor.feedback_store.get_feedback(vector_id)
            if record is None:
                return {"success": False, "error": "No feedback data for this vector"}
            return {"success": True, "id": vector_id, **record.to_dict()}
        return {"success": True, "agent_id": monitor.agent_id, "vectors": monitor.feedback_store.summary()}

    def list_agents(self) -> List[Dict[str, Any]]:
        return [
            {
                "agent_id": agent_id,
                "data_dir": str(monitor.data_dir),
                "workspace": str(monitor.workspace),
                "vector_file": str(monitor.vector_store.path),
            }
            for agent_id, monitor in self.agents.items()
        ]
