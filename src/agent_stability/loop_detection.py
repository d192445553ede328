"""
Loop Detection - Repetitive tool-call patterns.

Keeps a bounded deque of recent tool calls (tool name, output hash,
timestamp) and a per-path read counter for the current session.

Three checks, first match wins:
1. consecutive_tool   - the last N calls all used the same tool
2. file_reread        - this call's path has been read >= threshold times
3. output_repetition  - the last 3 outputs hashed identically (non-empty)

Exempt tools are still recorded; they only skip the checks.
State is in-memory and session-scoped. Call reset() at session boundaries.
"""

import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, Optional

from agent_stability.config import LoopDetectionConfig

logger = logging.getLogger(__name__)

PATH_PARAM_KEYS = ("file_path", "path", "filePath")


class LoopType(Enum):
    CONSECUTIVE_TOOL = "consecutive_tool"
    FILE_REREAD = "file_reread"
    OUTPUT_REPETITION = "output_repetition"


@dataclass(frozen=True)
class ToolCallRecord:
    tool: str
    output_hash: int
    timestamp: float


@dataclass(frozen=True)
class LoopCheck:
    loop_detected: bool = False
    type: Optional[LoopType] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loop_detected": self.loop_detected,
            "type": self.type.value if self.type else None,
            "message": self.message,
        }


NO_LOOP = LoopCheck()


def djb2_hash(text: str) -> int:
    """DJB2 string hash, wrapped to a signed 32-bit integer."""
    h = 5381
    for ch in text:
        h = ((h << 5) + h + ord(ch)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def normalize_output(output: Any) -> str:
    """Tool results arrive as strings or structured data; hash a stable string."""
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    try:
        return json.dumps(output, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(output)


def resolve_path(params: Optional[Dict[str, Any]]) -> Optional[str]:
    if not params:
        return None
    for key in PATH_PARAM_KEYS:
        value = params.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class LoopDetector:
    """Per-session tool loop detector."""

    def __init__(self, config: Optional[LoopDetectionConfig] = None):
        self.config = config or LoopDetectionConfig()
        self.exempt_tools = set(self.config.exempt_tools)
        self.read_tools = set(self.config.read_tools)

        self.tool_history: Deque[ToolCallRecord] = deque(maxlen=self.config.history_size)
        self.file_read_counts: Dict[str, int] = {}

    def record_and_check(
        self,
        tool_name: str,
        output: Any = "",
        params: Optional[Dict[str, Any]] = None,
        now: Optional[float] = None,
    ) -> LoopCheck:
        """Record a call, then run the loop checks (unless the tool is exempt)."""
        tool_name = tool_name or ""
        text = normalize_output(output)
        # empty output records hash 0, which the repetition check ignores
        output_hash = djb2_hash(text) if text else 0
        self.tool_history.append(ToolCallRecord(
            tool=tool_name,
            output_hash=output_hash,
            timestamp=now if now is not None else time.time(),
        ))

        file_path = resolve_path(params)
        if file_path and tool_name in self.read_tools:
            self.file_read_counts[file_path] = self.file_read_counts.get(file_path, 0) + 1

        if tool_name in self.exempt_tools:
            return NO_LOOP

        result = (
            self._check_consecutive()
            or self._check_file_reread(file_path)
            or self._check_output_repetition()
        )
        if result is None:
            return NO_LOOP

        logger.debug("Loop detected (%s): %s", result.type.value, result.message)
        return result

    def reset(self) -> None:
        self.tool_history.clear()
        self.file_read_counts.clear()

    # =========================================================================
    # Checks
    # =========================================================================

    def _recent(self, n: int):
        if n <= 0 or len(self.tool_history) < n:
            return None
        return list(self.tool_history)[-n:]

    def _check_consecutive(self) -> Optional[LoopCheck]:
        n = self.config.consecutive_tool_threshold
        recent = self._recent(n)
        if recent is None:
            return None
        tool = recent[0].tool
        if all(r.tool == tool for r in recent):
            return LoopCheck(
                loop_detected=True,
                type=LoopType.CONSECUTIVE_TOOL,
                message=(
                    f"You've called {tool} {n} consecutive times. "
                    "Step back and reassess your approach."
                ),
            )
        return None

    def _check_file_reread(self, file_path: Optional[str]) -> Optional[LoopCheck]:
        if not file_path:
            return None
        count = self.file_read_counts.get(file_path, 0)
        if count >= self.config.file_reread_threshold:
            return LoopCheck(
                loop_detected=True,
                type=LoopType.FILE_REREAD,
                message=(
                    f"You've read {file_path} {count} times. "
                    "You likely already have the information you need."
                ),
            )
        return None

    def _check_output_repetition(self) -> Optional[LoopCheck]:
        n = self.config.output_repeat_window
        recent = self._recent(n)
        if recent is None:
            return None
        first = recent[0].output_hash
        if first != 0 and all(r.output_hash == first for r in recent):
            return LoopCheck(
                loop_detected=True,
                type=LoopType.OUTPUT_REPETITION,
                message=(
                    f"The last {n} tool calls produced identical output. "
                    "You may be stuck in a loop."
                ),
            )
        return None
