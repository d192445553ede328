"""
Context boundary - Separating injected context from real user text.

The host bakes prepended context into the user message, so by the time a
turn ends the "user message" starts with our [STABILITY CONTEXT] block (and
blocks from other plugins). Detectors must only see what the user typed.

Blocks produced here end with INJECTION_BOUNDARY; everything after the last
boundary is user text. Text produced without the marker falls back to the
older heuristic: the last "[Day YYYY-MM-DD ...]" timestamp line, then
known header/prefix lines at the top of the message.
"""

import re
from typing import Any, Dict, List, Optional

INJECTION_BOUNDARY = "[/STABILITY-INJECTED]"

CONTEXT_BLOCK_HEADERS = (
    "[CONTINUITY CONTEXT]",
    "[STABILITY CONTEXT]",
    "[ACTIVE PROJECTS]",
    "[ACTIVE CONSTRAINTS]",
    "[OPEN DIRECTIVES",
    "[GROWTH VECTORS]",
    "[GRAPH CONTEXT]",
    "[GRAPH NOTE]",
    "[CONTEMPLATION STATE]",
    "[TOPIC NOTE]",
    "[ARCHIVE RETRIEVAL]",
    "[LOOP DETECTED]",
)

CONTEXT_LINE_PREFIXES = (
    "Session:",
    "Topics:",
    "Anchors:",
    "Entropy:",
    "Principles:",
    "Recent decisions:",
    "Fingerprint:",
    "Loops:",
    "You remember these",
    "- They told you:",
    "  You said:",
    "Speak from this memory",
    "From your knowledge base:",
    "You know these connections:",
    "Active inquiries:",
    "Recent insights",
    "⚠ Fragmentation:",
    "HIGH:",
    "MED:",
    "LOW:",
)

_RECALL_MARKERS = ("You remember these", "From your knowledge base:")
_TIMESTAMP_LINE = re.compile(r"\n\[(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun)\s\d{4}-\d{2}-\d{2}\s[^\]]*\]\s*")


def extract_text(message: Any) -> str:
    """Flatten a message's content (string or list of parts) to text."""
    if message is None:
        return ""
    if isinstance(message, str):
        return message
    content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                parts.append(str(part.get("text") or part.get("content") or ""))
        return " ".join(parts)
    return str(content)


def wrap_injected(block: str) -> str:
    """Terminate an injected block with the boundary marker."""
    if not block:
        return ""
    return f"{block}\n{INJECTION_BOUNDARY}\n"


def _is_context_line(line: str) -> bool:
    if not line:
        return True
    if line.startswith(CONTEXT_BLOCK_HEADERS) or line.startswith(CONTEXT_LINE_PREFIXES):
        return True
    return line.startswith('- "') or line.startswith("  -")


def _strip_heuristic(text: str) -> str:
    has_block = any(h in text for h in CONTEXT_BLOCK_HEADERS)
    has_recall = any(m in text for m in _RECALL_MARKERS)
    if not has_block and not has_recall:
        return text

    # Last timestamp wins; earlier ones may sit inside recalled memories
    last = None
    for last in _TIMESTAMP_LINE.finditer(text):
        pass
    if last is not None:
        return text[last.end():]

    lines = text.split("\n")
    for index, line in enumerate(lines):
        if not _is_context_line(line):
            if index == 0:
                return text
            return "\n".join(lines[index:]).strip()
    return ""


def strip_injected_context(text: Optional[str]) -> str:
    if not text:
        return ""
    if INJECTION_BOUNDARY in text:
        return text.rsplit(INJECTION_BOUNDARY, 1)[1].strip()
    return _strip_heuristic(text)


def last_message(messages: Optional[List[Any]], role: str) -> Optional[Any]:
    for message in reversed(messages or []):
        message_role = message.get("role") if isinstance(message, dict) else getattr(message, "role", None)
        if message_role == role:
            return message
    return None


def extract_last_user_message(
    messages: Optional[List[Dict[str, Any]]] = None,
    message: Any = None,
) -> str:
    """User text of the latest user message (or a bare message), context stripped."""
    last_user = last_message(messages, "user")
    if last_user is not None:
        return strip_injected_context(extract_text(last_user))
    if message is not None:
        return strip_injected_context(extract_text(message))
    return ""
