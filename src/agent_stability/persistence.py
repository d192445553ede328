"""
Persistence - JSON state files and append-only JSONL logs.

Every write here is best-effort: a failure is logged and reported through the
return value, never raised into the conversational pipeline. Reads of missing
or corrupt files return the caller's default.

Usage:
    from agent_stability.persistence import JsonlLog, load_json, save_json

    state = load_json(path, default={})
    save_json(path, state)

    log = JsonlLog(data_dir / "entropy-monitor.jsonl", capacity=500)
    log.append({"score": 0.4})
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def ensure_dir(path: Path) -> Path:
    """Create a directory tree. Errors propagate (initialization only)."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_json(path: Path, default: Any = None) -> Any:
    """Load a JSON file, returning a copy of default if absent or corrupt."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return copy.deepcopy(default)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not parse %s, using defaults: %s", path, e)
        return copy.deepcopy(default)


def save_json(path: Path, data: Any, indent: Optional[int] = 2) -> bool:
    """Write a JSON file. Returns False (and logs) on failure."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, default=str)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.warning("Failed to write %s: %s", path, e)
        return False


class JsonlLog:
    """
    Append-only newline-delimited JSON log with lossy tail pruning.

    Once the log holds more than `capacity` records it is rewritten to keep
    only the newest `capacity // 2`. Older records are not archived.
    """

    def __init__(self, path: Path, capacity: int = 500):
        self.path = Path(path)
        self.capacity = capacity

    def append(self, record: Dict[str, Any]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, default=str) + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to append to %s: %s", self.path, e)
            return False
        self.prune()
        return True

    def read(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Read records, skipping lines that don't parse. `limit` keeps the tail."""
        try:
            with open(self.path, encoding="utf-8") as f:
                lines = [line for line in f.read().splitlines() if line.strip()]
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning("Failed to read %s: %s", self.path, e)
            return []

        if limit is not None:
            lines = lines[-limit:]

        records = []
        for line in lines:
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping malformed line in %s", self.path)
        return records

    def count(self) -> int:
        try:
            with open(self.path, encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0

    def prune(self) -> int:
        """Trim to the newest half once over capacity. Returns lines dropped."""
        try:
            with open(self.path, encoding="utf-8") as f:
                lines = [line for line in f.read().splitlines() if line.strip()]
            if len(lines) <= self.capacity:
                return 0
            kept = lines[-(self.capacity // 2):]
            with open(self.path, "w", encoding="utf-8") as f:
                f.write("\n".join(kept) + "\n")
            return len(lines) - len(kept)
        except OSError as e:
            logger.warning("Failed to prune %s: %s", self.path, e)
            return 0
