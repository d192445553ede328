"""
Memory Store - The host's key-value/search capability.

Tensions, growth vectors, heartbeat decisions and compaction summaries are
written through this interface. The host runtime supplies the real store;
InMemoryStore is a reference implementation used by the CLI and tests.

Query syntax understood by InMemoryStore:
    "type:tension status:active"   -> every key:value token must equal metadata[key]
    other tokens                   -> case-insensitive substring of content

Usage:
    store = InMemoryStore()
    await store.store("[Tension] correction: ...", {"type": "tension", "status": "active"})
    records = await store.search("type:tension status:active", limit=50)
"""

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class MemoryRecord:
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    seq: int = 0


class MemoryStore(ABC):
    """Base class for memory backends."""

    @abstractmethod
    async def store(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> MemoryRecord:
        """Persist one record."""
        pass

    @abstractmethod
    async def search(self, query: str, limit: int = 10, sort: Optional[str] = None) -> List[MemoryRecord]:
        """Return matching records. sort='newest' puts the latest first."""
        pass


class InMemoryStore(MemoryStore):
    """Process-local store. Nothing survives a restart."""

    def __init__(self):
        self.records: List[MemoryRecord] = []
        self._seq = itertools.count(1)

    async def store(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> MemoryRecord:
        record = MemoryRecord(content=content, metadata=dict(metadata or {}), seq=next(self._seq))
        self.records.append(record)
        return record

    async def search(self, query: str, limit: int = 10, sort: Optional[str] = None) -> List[MemoryRecord]:
        filters: Dict[str, str] = {}
        terms: List[str] = []
        for token in (query or "").split():
            key, sep, value = token.partition(":")
            if sep and key and value:
                filters[key] = value
            else:
                terms.append(token.lower())

        matches = [
            r for r in self.records
            if all(str(r.metadata.get(k)) == v for k, v in filters.items())
            and all(t in r.content.lower() for t in terms)
        ]
        if sort == "newest":
            matches.sort(key=lambda r: r.seq, reverse=True)
        return matches[:limit]
