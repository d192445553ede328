"""
Tests for Entropy Monitoring

Verifies:
1. Each clause of the composite score in isolation
2. The score is deterministic and unclamped
3. Quiet integration rewards calm reflection after recent turbulence
4. Sustained tracking: 45-minute window, hard reset on any dip
5. Observation log, ring buffer and history persistence
"""

from datetime import timedelta

import pytest

from agent_stability.config import EntropyConfig
from agent_stability.detectors import DetectorResult
from agent_stability.entropy import (
    EntropyScorer,
    Observation,
    SustainedStatus,
    entropy_label,
    shannon_entropy,
)


def log_score(scorer, score, when):
    scorer.log_observation(
        Observation.build(score, SustainedStatus(False, 0, 0), DetectorResult(), "u", "r", now=when),
        now=when,
    )


# =============================================================================
# Composite Score
# =============================================================================

def test_correction_alone_scores_point_four():
    """A bare correction contributes exactly 0.4."""
    scorer = EntropyScorer()
    assert scorer.calculate_entropy_score("actually that's wrong", "") == 0.4
    assert scorer.last_score == 0.4
    print("  PASS: correction_alone_scores_point_four")


def test_novel_concepts_capped():
    """Each novel-concept hit adds 0.15, capped at 0.3."""
    scorer = EntropyScorer()
    one = scorer.calculate_entropy_score("tell me about quantum stuff", "ok")
    many = scorer.calculate_entropy_score("quantum emergence theory architecture paradigm shift quantum", "ok")
    assert one == pytest.approx(0.15)
    assert many == pytest.approx(0.3)
    print("  PASS: novel_concepts_capped")


def test_response_clauses():
    """Paradox and realization language are read from the response."""
    scorer = EntropyScorer()
    assert scorer.calculate_entropy_score("hi", "both are true here") == pytest.approx(0.2)
    assert scorer.calculate_entropy_score("hi", "I realize what happened") == pytest.approx(0.2)
    assert scorer.calculate_entropy_score("I realize", "fine") == 0.0
    print("  PASS: response_clauses")


def test_detector_clauses():
    """Detector signals add 0.3, 0.2 and the meta bonus verbatim."""
    scorer = EntropyScorer()
    result = DetectorResult(temporal_mismatch=True, quality_decay=True, recursive_meta_bonus=0.45)
    assert scorer.calculate_entropy_score("", "", result) == pytest.approx(0.95)
    print("  PASS: detector_clauses")


def test_context_quality_modifier():
    """Caller-supplied quality shifts the score and may push it negative."""
    scorer = EntropyScorer()
    assert scorer.calculate_entropy_score("hi", "hello", context={"quality": "excellent"}) == pytest.approx(0.1)
    assert scorer.calculate_entropy_score("hi", "hello", context={"quality": "poor"}) == pytest.approx(-0.2)
    assert scorer.calculate_entropy_score("hi", "hello", context={"quality": "meh"}) == 0.0
    print("  PASS: context_quality_modifier")


def test_score_is_unclamped():
    """Compounding signals exceed 1.0."""
    scorer = EntropyScorer()
    result = DetectorResult(temporal_mismatch=True, quality_decay=True, recursive_meta_bonus=0.3)
    score = scorer.calculate_entropy_score(
        "actually I'm impressed by the quantum architecture",
        "both are true, I realize now",
        result,
    )
    assert score > 2.0
    print("  PASS: score_is_unclamped")


def test_score_is_deterministic():
    """Same inputs and same history give the same score."""
    a = EntropyScorer()
    b = EntropyScorer()
    args = ("actually the paradigm shift is wrong", "yet both are true")
    assert a.calculate_entropy_score(*args) == b.calculate_entropy_score(*args)
    assert a.calculate_entropy_score(*args) == a.calculate_entropy_score(*args)
    print("  PASS: score_is_deterministic")


# =============================================================================
# Quiet Integration
# =============================================================================

def test_quiet_integration_after_turbulence(t0):
    """Reflective language within six hours of a turbulent turn earns 0.15."""
    scorer = EntropyScorer()
    log_score(scorer, 0.9, t0)

    calm = scorer.calculate_entropy_score("thanks", "things are settling", now=t0 + timedelta(hours=1))
    assert calm == pytest.approx(0.15)

    later = scorer.calculate_entropy_score("thanks", "things are settling", now=t0 + timedelta(hours=7))
    assert later == 0.0

    flat = scorer.calculate_entropy_score("thanks", "sure thing", now=t0 + timedelta(hours=1))
    assert flat == 0.0
    print("  PASS: quiet_integration_after_turbulence")


def test_no_quiet_integration_without_turbulence(t0):
    """Calm history gives no bonus."""
    scorer = EntropyScorer()
    log_score(scorer, 0.5, t0)
    assert scorer.calculate_entropy_score("ok", "it's coming together", now=t0 + timedelta(minutes=5)) == 0.0
    print("  PASS: no_quiet_integration_without_turbulence")


# =============================================================================
# Sustained Tracking
# =============================================================================

def test_sustained_after_45_minutes(t0):
    """Elevated scores spanning 45 minutes report sustained."""
    scorer = EntropyScorer()
    assert scorer.track_sustained_entropy(0.9, t0) == SustainedStatus(False, 1, 0)
    assert not scorer.track_sustained_entropy(0.9, t0 + timedelta(minutes=20)).sustained

    short = scorer.track_sustained_entropy(0.9, t0 + timedelta(minutes=44))
    assert not short.sustained
    assert short.turns == 3

    status = scorer.track_sustained_entropy(0.95, t0 + timedelta(minutes=45))
    assert status == SustainedStatus(True, 4, 45)
    print("  PASS: sustained_after_45_minutes")


def test_single_dip_resets_everything(t0):
    """One turn at or below the floor resets turns and timer."""
    scorer = EntropyScorer()
    for minutes in (0, 30, 60):
        scorer.track_sustained_entropy(1.2, t0 + timedelta(minutes=minutes))
    assert scorer.sustained_turns == 3

    reset = scorer.track_sustained_entropy(0.8, t0 + timedelta(minutes=61))
    assert reset == SustainedStatus(False, 0, 0)
    assert scorer.sustained_start is None

    again = scorer.track_sustained_entropy(0.9, t0 + timedelta(minutes=62))
    assert again == SustainedStatus(False, 1, 0)
    print("  PASS: single_dip_resets_everything")


def test_sustained_floor_follows_critical_threshold(t0):
    """The floor is 80% of the configured critical threshold."""
    scorer = EntropyScorer(EntropyConfig(critical_threshold=2.0))
    assert scorer.sustained_floor == pytest.approx(1.6)
    assert scorer.track_sustained_entropy(1.5, t0).turns == 0
    assert scorer.track_sustained_entropy(1.7, t0).turns == 1
    print("  PASS: sustained_floor_follows_critical_threshold")


# =============================================================================
# Logging & State
# =============================================================================

def test_log_observation_persists(tmp_path, t0):
    """Observations append to the log and history survives a restart."""
    scorer = EntropyScorer(data_dir=tmp_path)
    for i in range(3):
        log_score(scorer, 0.1 * (i + 1), t0 + timedelta(minutes=i))

    records = scorer.read_observations()
    assert [r["score"] for r in records] == pytest.approx([0.1, 0.2, 0.3])
    assert (tmp_path / "entropy-history.json").exists()

    reloaded = EntropyScorer(data_dir=tmp_path)
    assert [h.entropy for h in reloaded.recent_history] == pytest.approx([0.1, 0.2, 0.3])
    assert reloaded.recent_history[0].timestamp == t0
    print("  PASS: log_observation_persists")


def test_ring_buffer_keeps_five(t0):
    """Only the five most recent entries are kept."""
    scorer = EntropyScorer()
    for i in range(7):
        log_score(scorer, float(i), t0 + timedelta(minutes=i))
    assert [h.entropy for h in scorer.recent_history] == [2.0, 3.0, 4.0, 5.0, 6.0]
    print("  PASS: ring_buffer_keeps_five")


def test_log_prunes_to_newest_half(tmp_path, t0):
    """Exceeding capacity keeps the newest half."""
    scorer = EntropyScorer(EntropyConfig(log_capacity=10), data_dir=tmp_path)
    for i in range(11):
        log_score(scorer, float(i), t0 + timedelta(minutes=i))
    records = scorer.read_observations()
    assert [r["score"] for r in records] == [6.0, 7.0, 8.0, 9.0, 10.0]
    print("  PASS: log_prunes_to_newest_half")


def test_corrupt_history_file_is_ignored(tmp_path):
    """A corrupt history file yields an empty ring buffer."""
    (tmp_path / "entropy-history.json").write_text("{not json")
    scorer = EntropyScorer(data_dir=tmp_path)
    assert len(scorer.recent_history) == 0
    print("  PASS: corrupt_history_file_is_ignored")


def test_current_state_snapshot(t0):
    """get_current_state reports score, sustained turns and minutes."""
    scorer = EntropyScorer()
    scorer.calculate_entropy_score("actually no", "")
    scorer.track_sustained_entropy(0.9, t0)
    state = scorer.get_current_state(now=t0 + timedelta(minutes=10))
    assert state.last_score == 0.4
    assert state.sustained_turns == 1
    assert state.sustained_minutes == 10
    assert state.to_dict()["sustained_start"] == t0.isoformat()
    print("  PASS: current_state_snapshot")


# =============================================================================
# Helpers
# =============================================================================

def test_shannon_entropy():
    """Bits per word of the word distribution."""
    assert shannon_entropy("") == 0.0
    assert shannon_entropy(None) == 0.0
    assert shannon_entropy("a a a") == 0.0
    assert shannon_entropy("a b A B") == pytest.approx(1.0)
    print("  PASS: shannon_entropy")


def test_entropy_label_boundaries():
    """Labels use strict upper bounds."""
    assert entropy_label(0.4) == "nominal"
    assert entropy_label(0.41) == "active"
    assert entropy_label(0.8) == "active"
    assert entropy_label(0.81) == "elevated"
    assert entropy_label(1.0) == "elevated"
    assert entropy_label(1.01) == "CRITICAL"
    print("  PASS: entropy_label_boundaries")
