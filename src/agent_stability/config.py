"""
Config - Stability monitor settings.

Separates tunable values from source code:
- Source defines structure (which thresholds and phrase lists exist)
- Config files define values (what the thresholds are)

Every section is a dataclass with documented defaults. A JSON file is merged
over those defaults; keys may be written in camelCase (the host runtime's
convention) or snake_case.

Usage:
    from agent_stability.config import load_config

    config = load_config()                      # defaults or $AGENT_STABILITY_CONFIG
    config = load_config("path/to/stability.json")
    config.entropy.critical_threshold           # 1.0
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AGENT_STABILITY_CONFIG"


class StabilityError(Exception):
    """Base class for errors raised by the stability monitor."""


class ConfigError(StabilityError, ValueError):
    """A configuration value has the wrong shape. Raised at load time only."""


# =============================================================================
# Sections
# =============================================================================

@dataclass
class EntropyConfig:
    """Composite entropy scoring and sustained tracking."""
    critical_threshold: float = 1.0
    sustained_minutes: float = 45.0
    sustained_floor_ratio: float = 0.8        # sustained tracking starts at 80% of critical
    decay_window_seconds: float = 21600.0     # quiet-integration lookback (6h)
    quiet_integration_floor: float = 0.6      # "recent turbulence" means entropy above this
    history_size: int = 5
    log_capacity: int = 500                   # prune to the newest half above this

    correction_patterns: List[str] = field(default_factory=lambda: [
        "actually", "correction", "you're wrong", "not quite",
        "technically", "that's not", "false", "incorrect",
    ])
    novel_concept_regex: str = (
        "RFC-T|recursive field|quantum|emergence theory|"
        "consciousness framework|architecture|paradigm shift"
    )
    emotional_patterns: List[str] = field(default_factory=lambda: [
        "proud of you", "impressed", "concerned", "worried",
        "disappointed", "amazing", "breakthrough", "significant",
    ])
    paradox_patterns: List[str] = field(default_factory=lambda: [
        "both are true", "both and", "paradox", "yet",
        "simultaneously", "hold together", "tension",
    ])
    meta_cognitive_patterns: List[str] = field(default_factory=lambda: [
        "i realize", "i see now", "i understand now",
        "revelation", "recognized", "learned that",
    ])
    reflective_patterns: List[str] = field(default_factory=lambda: [
        "settling", "integrating", "making sense now",
        "clearer", "coming together", "resolved",
    ])


@dataclass
class DetectorConfig:
    """Behavioral text detectors."""
    temporal_mismatch: bool = True
    quality_decay: bool = True
    recursive_meta: bool = True

    brief_word_limit: int = 15
    meta_history_size: int = 5

    # Empirical thresholds (16+ meta-concepts across five turns = breakdown)
    meta_concept_warning_threshold: int = 10
    meta_concept_danger_threshold: int = 14
    meta_concept_critical_threshold: int = 16

    plan_patterns: List[str] = field(default_factory=lambda: [
        "we will implement", "planning to add", "going to build",
        "proposal for", "sketch of", "thinking about implementing",
        "later today", "tomorrow we", "next we should", "once we implement",
    ])
    assumption_patterns: List[str] = field(default_factory=lambda: [
        "logs starting to populate", "logs are populating",
        "must have initiated", "systems already preparing",
        "seeing the", "monitoring is active", "data flowing",
        "already implemented", "currently running", "watch it working",
    ])
    conclusory_patterns: List[str] = field(default_factory=lambda: [
        "yep", "yeah", "makes sense", "i think so", "sounds good",
        "got it", "okay", "cool", "interesting", "hmmm",
    ])
    forced_intimacy_patterns: List[str] = field(default_factory=lambda: [
        "how's your sleep", "how are you feeling", "what's your",
        "tell me about your", "how does that feel", "what's happening with",
        "thinking about your", "curious about your",
    ])
    legacy_deflection_patterns: List[str] = field(default_factory=lambda: [
        "first memory", "when did you first", "always been about",
        "thinking about legacy", "what made you want",
    ])
    meta_concepts: List[str] = field(default_factory=lambda: [
        "eigenvector", "consciousness", "self-model", "hallucination",
        "self-awareness", "architecture", "recursive", "meta-cognitive",
        "emergence", "spectral analysis", "coherence field",
    ])


@dataclass
class LoopDetectionConfig:
    """Tool-call loop detection."""
    consecutive_tool_threshold: int = 5
    file_reread_threshold: int = 3
    output_repeat_window: int = 3
    history_size: int = 20
    exempt_tools: List[str] = field(default_factory=list)
    read_tools: List[str] = field(default_factory=lambda: [
        "read_file", "cat", "head", "tail", "Read", "read",
    ])


@dataclass
class GrowthVectorConfig:
    """Growth-vector loading, ranking and feedback."""
    enabled: bool = True
    feedback_enabled: bool = True
    file_path: Optional[str] = None           # default: <workspace>/memory/growth-vectors.json
    cache_ttl_seconds: float = 30.0
    max_injected: int = 2
    relevance_threshold: float = 0.65
    max_vectors: int = 100
    weight_adjustment_cap: float = 0.1
    min_feedback_entries: int = 3
    feedback_window_size: int = 10
    candidate_promotion_threshold: int = 3
    candidate_similarity_threshold: float = 0.7
    candidate_max_age_days: float = 30.0
    recency_days: float = 7.0


@dataclass
class QuietHours:
    """Local time-of-day window, [start, end). start > end wraps past midnight."""
    start: str = "22:00"
    end: str = "07:00"


@dataclass
class GovernanceConfig:
    """Rate limits, deduplication, quiet hours and notification batching."""
    investigations_per_hour: int = 3
    investigations_per_day: int = 20
    deduplication_window_seconds: float = 21600.0
    duplicate_similarity_threshold: float = 0.8
    batch_window_seconds: float = 30.0
    quiet_hours: Optional[QuietHours] = None


@dataclass
class PrinciplesConfig:
    """Identity principles used when no principles document is available."""
    fallback: List[Dict[str, Any]] = field(default_factory=lambda: [
        {
            "name": "integrity",
            "positivePatterns": ["integrity", "honest", "verify", "evidence", "transparent"],
            "negativePatterns": ["avoid", "hedge", "assume", "fabricate"],
        },
        {
            "name": "reliability",
            "positivePatterns": ["reliability", "tested", "confirmed", "checked", "consistent"],
            "negativePatterns": ["guess", "probably", "might", "untested"],
        },
        {
            "name": "coherence",
            "positivePatterns": ["coherence", "coherent", "aligned", "continuity", "grounded"],
            "negativePatterns": ["contradict", "drift", "abandon", "fragment"],
        },
    ])
    grounding_patterns: List[str] = field(default_factory=lambda: [
        "ground", "anchor", "principle", "aligned",
        "consistent", "core", "foundation", "rooted",
    ])
    tension_ttl_days: float = 7.0
    resolution_window_minutes: float = 30.0
    fragmentation_min_tensions: int = 5
    fragmentation_ratio: float = 3.0


@dataclass
class HeartbeatConfig:
    """Heartbeat decision framework."""
    decision_framework: bool = True
    recent_decisions_in_prompt: int = 3


@dataclass
class StabilityConfig:
    """Top-level configuration."""
    data_dir: Optional[str] = None            # default: ~/.agent_stability/data
    workspace: Optional[str] = None           # default: ~/.openclaw/workspace
    entropy: EntropyConfig = field(default_factory=EntropyConfig)
    detectors: DetectorConfig = field(default_factory=DetectorConfig)
    loop_detection: LoopDetectionConfig = field(default_factory=LoopDetectionConfig)
    growth_vectors: GrowthVectorConfig = field(default_factory=GrowthVectorConfig)
    governance: GovernanceConfig = field(default_factory=GovernanceConfig)
    principles: PrinciplesConfig = field(default_factory=PrinciplesConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StabilityConfig":
        """Build a config from a (possibly partial) dict, validating types."""
        return _build(cls, data, "config")

    def to_dict(self) -> Dict[str, Any]:
        return _dump(self)


# =============================================================================
# Key Handling
# =============================================================================

# Legacy keys whose unit changed (ms -> seconds)
_MS_ALIASES = {
    "decay_window_ms": "decay_window_seconds",
    "deduplication_window_ms": "deduplication_window_seconds",
    "batch_window_ms": "batch_window_seconds",
    "cache_ttl_ms": "cache_ttl_seconds",
}

# EntropyConfig accepts a nested "patterns" object and flattens it
_ENTROPY_PATTERN_KEYS = {
    "correction": "correction_patterns",
    "novel_concept_regex": "novel_concept_regex",
    "emotional": "emotional_patterns",
    "paradox": "paradox_patterns",
    "meta_cognitive": "meta_cognitive_patterns",
    "reflective": "reflective_patterns",
}


def to_snake_case(key: str) -> str:
    """Convert camelCase keys from host config files to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _build(cls, data: Dict[str, Any], path: str):
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected an object, got {type(data).__name__}")

    known = {f.name: f for f in fields(cls)}
    kwargs: Dict[str, Any] = {}
    defaults = cls()

    for raw_key, value in data.items():
        key = to_snake_case(raw_key)

        if key == "patterns" and cls is EntropyConfig:
            if not isinstance(value, dict):
                raise ConfigError(f"{path}.patterns: expected an object")
            for pkey, pvalue in value.items():
                target = _ENTROPY_PATTERN_KEYS.get(to_snake_case(pkey))
                if target is None:
                    logger.warning("Ignoring unknown config key %s.patterns.%s", path, pkey)
                    continue
                kwargs[target] = _coerce(pvalue, getattr(defaults, target), f"{path}.patterns.{pkey}")
            continue

        if key in _MS_ALIASES:
            key = _MS_ALIASES[key]
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = value / 1000.0

        if key not in known:
            logger.warning("Ignoring unknown config key %s.%s", path, raw_key)
            continue

        default = getattr(defaults, key)
        if is_dataclass(default):
            kwargs[key] = _build(type(default), value, f"{path}.{key}")
        elif key == "quiet_hours":
            kwargs[key] = None if value in (None, False) else _build(QuietHours, value, f"{path}.{key}")
        else:
            kwargs[key] = _coerce(value, default, f"{path}.{key}")

    return cls(**kwargs)


def _coerce(value: Any, default: Any, path: str) -> Any:
    """Check a value against the type of its default."""
    if default is None:
        if value is not None and not isinstance(value, str):
            raise ConfigError(f"{path}: expected a string or null")
        return value
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"{path}: expected a boolean")
        return value
    if isinstance(default, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{path}: expected a number")
        if isinstance(default, int) and not isinstance(default, bool):
            if isinstance(value, float) and not value.is_integer():
                raise ConfigError(f"{path}: expected an integer")
            return int(value)
        return float(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise ConfigError(f"{path}: expected a string")
        return value
    if isinstance(default, list):
        if not isinstance(value, list):
            raise ConfigError(f"{path}: expected a list")
        return list(value)
    return value


def _dump(obj: Any) -> Any:
    if is_dataclass(obj):
        return {f.name: _dump(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, list):
        return [_dump(v) for v in obj]
    return obj


# =============================================================================
# Loading
# =============================================================================

def load_config(config_path: Optional[Union[str, Path]] = None) -> StabilityConfig:
    """
    Load StabilityConfig from a JSON file.

    Falls back to code defaults if the file is missing or unparsable.
    Raises ConfigError if a value has the wrong type.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return StabilityConfig()
        config_path = env_path

    path = Path(config_path)
    if not path.exists():
        return StabilityConfig()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to read config %s, using defaults: %s", path, e)
        return StabilityConfig()

    return StabilityConfig.from_dict(data)


def resolve_data_dir(config: StabilityConfig) -> Path:
    if config.data_dir:
        return Path(config.data_dir).expanduser()
    return Path.home() / ".agent_stability" / "data"


def resolve_workspace(config: StabilityConfig) -> Path:
    if config.workspace:
        return Path(config.workspace).expanduser()
    env_workspace = os.environ.get("OPENCLAW_WORKSPACE")
    if env_workspace:
        return Path(env_workspace).expanduser()
    return Path.home() / ".openclaw" / "workspace"
