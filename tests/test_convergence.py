"""
Tests for convergence detection and the proof-strength z-test
"""

import pytest

from confluence.intelligence.convergence import ConvergenceTracker, chance_probability, normal_cdf
from confluence.shared.types import Direction, DomainSignature

NOW = 1_700_000_000.0
DAY = 86400


def signatures(bullish=0, bearish=0, neutral=0, momentum=0.5):
    result = {}
    for i in range(bullish):
        result[f"bull_{i}"] = DomainSignature(domain=f"bull_{i}", momentum=momentum, extracted_at=NOW)
    for i in range(bearish):
        result[f"bear_{i}"] = DomainSignature(domain=f"bear_{i}", momentum=-momentum, extracted_at=NOW)
    for i in range(neutral):
        result[f"flat_{i}"] = DomainSignature(domain=f"flat_{i}", momentum=0.0, extracted_at=NOW)
    return result


class TestConvergenceMath:

    def test_chance_probability(self):
        assert chance_probability(1, 1.0) == pytest.approx(1.0)
        assert chance_probability(11, 0.5) == pytest.approx(0.5 ** 10 * 1.5)
        assert chance_probability(3, 0.0) == pytest.approx(0.5)

    def test_normal_cdf(self):
        assert normal_cdf(0.0) == pytest.approx(0.5, abs=1e-6)
        assert normal_cdf(1.96) == pytest.approx(0.975, abs=1e-3)
        assert normal_cdf(-1.96) == pytest.approx(0.025, abs=1e-3)


class TestConvergenceTracker:

    def setup_method(self):
        self.tracker = ConvergenceTracker({'minimum_alignment': 10})

    def test_no_event_below_minimum_domains(self):
        assert self.tracker.analyze_convergence(signatures(bullish=9), NOW) is None
        assert len(self.tracker.events) == 0

    def test_no_event_below_minimum_alignment(self):
        assert self.tracker.analyze_convergence(signatures(bullish=9, neutral=12), NOW) is None

    def test_tie_produces_no_event(self):
        assert self.tracker.analyze_convergence(signatures(bullish=10, bearish=10), NOW) is None

    def test_bullish_convergence_event(self):
        event = self.tracker.analyze_convergence(signatures(bullish=15, neutral=6), NOW)
        assert event is not None
        assert event.direction is Direction.UP
        assert event.alignment_count == 15
        assert event.statistical_improbability >= 0.9
        assert event.id.startswith('conv_')
        assert event.momentum_consensus == pytest.approx(15 * 0.5 / 21)

    def test_bearish_convergence_event(self):
        event = self.tracker.analyze_convergence(signatures(bearish=12, bullish=2), NOW)
        assert event.direction is Direction.DOWN
        assert len(event.aligned_domains) == 12

    def test_record_outcome(self):
        event = self.tracker.analyze_convergence(signatures(bullish=12), NOW)
        assert self.tracker.record_outcome(event.id, 'bullish', NOW + 5)
        assert event.outcome.was_correct
        assert not self.tracker.record_outcome(event.id, Direction.UP, NOW + 6)
        assert not self.tracker.record_outcome('conv_missing', Direction.UP)

    def test_persisting_alignment_reuses_open_event(self):
        first = self.tracker.analyze_convergence(signatures(bullish=12), NOW)
        repeat = self.tracker.analyze_convergence(signatures(bullish=12), NOW + 1)
        assert repeat is first
        assert repeat.observations == 2
        assert not repeat.is_new
        assert repeat.last_seen == NOW + 1
        assert len(self.tracker.events) == 1

        self.tracker.record_outcome(first.id, Direction.UP, NOW + 2)
        fresh = self.tracker.analyze_convergence(signatures(bullish=12), NOW + 3)
        assert fresh.id != first.id
        assert fresh.is_new

    def test_changed_alignment_opens_new_event(self):
        first = self.tracker.analyze_convergence(signatures(bullish=12), NOW)
        wider = self.tracker.analyze_convergence(signatures(bullish=14), NOW + 1)
        assert wider.id != first.id
        assert len(self.tracker.events) == 2

    def test_event_store_is_capped(self):
        tracker = ConvergenceTracker({'minimum_alignment': 10, 'convergence_history_size': 5})
        ids = []
        for i in range(8):
            event = tracker.analyze_convergence(signatures(bullish=12), NOW + i)
            tracker.record_outcome(event.id, Direction.UP, NOW + i + 0.5)
            ids.append(event.id)

        assert len(tracker.events) == 5
        assert tracker.get_event(ids[0]) is None
        assert tracker.get_event(ids[-1]) is not None
        assert tracker.resolved_count == 5

    def test_events_pruned_after_retention(self):
        self.tracker.analyze_convergence(signatures(bullish=12), NOW)
        self.tracker.analyze_convergence(signatures(bullish=12), NOW + 31 * DAY)
        assert len(self.tracker.events) == 1

    def test_insufficient_data_conclusion(self):
        proof = self.tracker.calculate_proof_strength()
        assert proof['sample_size'] == 0
        assert proof['conclusion'].startswith('Insufficient data')

    def test_strong_evidence_with_accurate_events(self):
        for i in range(40):
            event = self.tracker.analyze_convergence(signatures(bullish=12), NOW + i)
            actual = Direction.UP if i % 10 else Direction.DOWN
            self.tracker.record_outcome(event.id, actual, NOW + i + 1)

        proof = self.tracker.calculate_proof_strength()
        assert proof['sample_size'] == 40
        assert proof['p_value'] < 0.01
        assert proof['conclusion'].startswith('Strong evidence')
        assert proof['evidence_score'] == pytest.approx(1.0)

    def test_chance_level_accuracy_is_not_significant(self):
        for i in range(30):
            event = self.tracker.analyze_convergence(signatures(bullish=12), NOW + i)
            actual = (Direction.UP, Direction.DOWN, Direction.NEUTRAL)[i % 3]
            self.tracker.record_outcome(event.id, actual, NOW + i + 1)

        proof = self.tracker.calculate_proof_strength()
        assert proof['conclusion'].startswith('No significant evidence')
        assert proof['evidence_score'] == pytest.approx(0.0)

    def test_export_import_roundtrip_keeps_outcomes(self):
        event = self.tracker.analyze_convergence(signatures(bullish=12), NOW)
        self.tracker.record_outcome(event.id, Direction.DOWN, NOW + 1)

        restored = ConvergenceTracker({'minimum_alignment': 10})
        restored.import_events(self.tracker.export_events())
        assert restored.resolved_count == 1
        assert restored.get_event(event.id).outcome.actual_direction is Direction.DOWN
