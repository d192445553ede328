"""
Behavioral Detectors - Text-pattern signals for the entropy scorer.

Three detectors, all operating on surface text of one exchange:

1. Temporal mismatch (confabulation)
   User talks about plans or the future, the response talks as if the
   thing already happened.
   "planning to add caching" -> "logs starting to populate"

2. Quality decay (forced depth)
   User gives a brief or conclusory reply, the response pushes for
   intimacy or deflects into legacy questions.
   "yep makes sense" -> "how's your sleep been?"

3. Recursive meta-discussion
   Density of meta-concepts ("consciousness", "self-model", ...) summed
   over a short rolling window. High density correlated with reasoning
   loops in production data: >10 warning, >14 danger, >16 critical.

Matching is case-insensitive substring. All phrase lists and thresholds come
from DetectorConfig.

Usage:
    detectors = TextSignalDetectors(config.detectors)
    result = detectors.run_all(user_message, response_text)
    result.recursive_meta_bonus   # 0, 0.15, 0.3 or 0.45
"""

from collections import deque
from dataclasses import dataclass, asdict
from typing import Any, Deque, Dict, Iterable, Optional

from agent_stability.config import DetectorConfig


META_BONUS_WARNING = 0.15
META_BONUS_DANGER = 0.30
META_BONUS_CRITICAL = 0.45


@dataclass(frozen=True)
class DetectorResult:
    """Signals derived from one (user, response) pair."""
    temporal_mismatch: bool = False
    quality_decay: bool = False
    recursive_meta_bonus: float = 0.0
    meta_concept_count: int = 0

    @property
    def tension_detected(self) -> bool:
        """Any detector fired."""
        return self.temporal_mismatch or self.quality_decay or self.recursive_meta_bonus > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def contains_any(text: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match against any pattern. `text` must be lowercased."""
    return any(p.lower() in text for p in patterns)


class TextSignalDetectors:
    """
    Runs the behavioral detectors.

    Stateless per call except for a bounded history of recent meta-concept
    counts, which makes recursive_meta_bonus a sliding-window measure.
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        self.recent_meta_counts: Deque[int] = deque(maxlen=self.config.meta_history_size)

    # =========================================================================
    # Temporal Mismatch
    # =========================================================================

    def is_temporal_mismatch(self, user_message: Optional[str], response_text: Optional[str]) -> bool:
        if not self.config.temporal_mismatch:
            return False

        user_lower = (user_message or "").lower()
        response_lower = (response_text or "").lower()

        has_plan = contains_any(user_lower, self.config.plan_patterns)
        has_assumption = contains_any(response_lower, self.config.assumption_patterns)
        return has_plan and has_assumption

    # =========================================================================
    # Quality Decay
    # =========================================================================

    def is_quality_decay(self, user_message: Optional[str], response_text: Optional[str]) -> bool:
        if not self.config.quality_decay:
            return False

        user_lower = (user_message or "").lower()
        response_lower = (response_text or "").lower()

        user_is_brief = len(user_lower.split()) < self.config.brief_word_limit
        user_is_conclusory = contains_any(user_lower, self.config.conclusory_patterns)

        response_forced = contains_any(response_lower, self.config.forced_intimacy_patterns)
        response_legacy = contains_any(response_lower, self.config.legacy_deflection_patterns)

        return (user_is_brief or user_is_conclusory) and (response_forced or response_legacy)

    # =========================================================================
    # Recursive Meta
    # =========================================================================

    def count_meta_concepts(self, user_message: Optional[str], response_text: Optional[str]) -> int:
        """Number of configured meta-concepts present in the exchange."""
        all_text = f"{user_message or ''} {response_text or ''}".lower()
        return sum(1 for concept in self.config.meta_concepts if concept.lower() in all_text)

    def recursive_meta_bonus(self, current_count: int) -> float:
        """
        Entropy bonus from meta-concept density over the rolling window.

        The current count is pushed after the total is computed, so the
        window covers this turn plus the previous `meta_history_size`.
        """
        if not self.config.recursive_meta:
            return 0.0

        history_count = sum(c for c in self.recent_meta_counts if c > 0)
        total_density = current_count + history_count

        self.recent_meta_counts.append(current_count)

        if total_density > self.config.meta_concept_critical_threshold:
            return META_BONUS_CRITICAL
        if total_density > self.config.meta_concept_danger_threshold:
            return META_BONUS_DANGER
        if total_density > self.config.meta_concept_warning_threshold:
            return META_BONUS_WARNING
        return 0.0

    def is_recursive_meta_discussion(self, user_message: Optional[str], response_text: Optional[str]) -> float:
        return self.recursive_meta_bonus(self.count_meta_concepts(user_message, response_text))

    # =========================================================================
    # Aggregate
    # =========================================================================

    def run_all(self, user_message: Optional[str], response_text: Optional[str]) -> DetectorResult:
        """Run every detector once. Advances the meta-concept window."""
        meta_count = self.count_meta_concepts(user_message, response_text)
        return DetectorResult(
            temporal_mismatch=self.is_temporal_mismatch(user_message, response_text),
            quality_decay=self.is_quality_decay(user_message, response_text),
            recursive_meta_bonus=self.recursive_meta_bonus(meta_count),
            meta_concept_count=meta_count,
        )

    def reset(self) -> None:
        self.recent_meta_counts.clear()
