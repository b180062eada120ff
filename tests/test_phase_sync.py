"""
Tests for phase-lock detection across registered cycles
"""

import pytest

from confluence.intelligence.phase_sync import (
    PhaseSynchronizationDetector, calculate_phase, classify_implication, kuramoto_order, phase_difference
)
from confluence.shared.types import Direction


def near_cycles():
    detector = PhaseSynchronizationDetector(epoch=0.0)
    detector.cycles = {}
    detector.register_cycle('fast', 100)
    detector.register_cycle('mid', 101)
    detector.register_cycle('slow', 102)
    return detector


class TestPhaseMath:

    def test_calculate_phase(self):
        assert calculate_phase(150.0, 100.0, epoch=0.0) == pytest.approx(0.5)
        assert calculate_phase(5.0, 0.0) == 0.0

    def test_phase_difference_wraps(self):
        assert phase_difference(0.95, 0.05) == pytest.approx(0.1)
        assert phase_difference(0.2, 0.7) == pytest.approx(0.5)

    def test_kuramoto_order(self):
        coherence, dominant = kuramoto_order([0.3, 0.3, 0.3])
        assert coherence == pytest.approx(1.0)
        assert dominant == pytest.approx(0.3)
        coherence, _ = kuramoto_order([0.0, 0.5])
        assert coherence == pytest.approx(0.0, abs=1e-9)
        assert kuramoto_order([]) == (0.0, 0.0)

    def test_implication_by_phase_quartile(self):
        assert classify_implication(0.1, 0.9) == 'reversal_imminent'
        assert classify_implication(0.9, 0.9) == 'reversal_imminent'
        assert classify_implication(0.5, 0.9) == 'strong_trend'
        assert classify_implication(0.3, 0.8) == 'volatility_expansion'
        assert classify_implication(0.3, 0.6) == 'consolidation'
        assert classify_implication(0.7, 0.6) == 'consolidation'


class TestPhaseSynchronizationDetector:

    def setup_method(self):
        self.detector = near_cycles()

    def test_register_cycle_rejects_non_positive_period(self):
        with pytest.raises(ValueError):
            self.detector.register_cycle('broken', 0)
        assert self.detector.unregister_cycle('fast')
        assert not self.detector.unregister_cycle('fast')

    def test_default_cycles_present(self):
        detector = PhaseSynchronizationDetector()
        assert {'lunar', 'circadian', 'tidal'} <= set(detector.cycles)

    def test_lock_detected_for_three_synced_cycles(self):
        state = self.detector.detect(now=50.0)
        assert state.is_significant
        assert state.new_lock
        event = state.lock_event
        assert event.synchronized_cycles == ['fast', 'mid', 'slow']
        assert event.predicted_duration == pytest.approx(20.0)
        assert event.market_implication == 'strong_trend'
        assert event.id.startswith('lock_')

    def test_active_lock_is_reused(self):
        first = self.detector.detect(now=50.0).lock_event
        second = self.detector.detect(now=55.0)
        assert second.lock_event is first
        assert not second.new_lock
        assert len(self.detector.events) == 1

    def test_new_lock_after_expiry(self):
        first = self.detector.detect(now=50.0).lock_event
        later = self.detector.detect(now=80.0)
        assert later.new_lock
        assert later.lock_event.id != first.id
        assert later.lock_event.market_implication == 'reversal_imminent'

    def test_two_cycles_never_lock(self):
        self.detector.unregister_cycle('slow')
        state = self.detector.detect(now=50.0)
        assert state.is_significant
        assert state.lock_event is None

    def test_desynchronized_prediction_is_neutral(self):
        detector = PhaseSynchronizationDetector(epoch=0.0)
        detector.cycles = {}
        detector.register_cycle('a', 100)
        # opposite phases cancel out
        detector.register_cycle('b', 200)
        prediction = detector.get_synchronization_prediction(now=100.0)
        assert prediction['direction'] is Direction.NEUTRAL
        assert prediction['confidence'] == pytest.approx(0.3)

    def test_synchronized_prediction(self):
        prediction = self.detector.get_synchronization_prediction(now=40.0)
        assert prediction['direction'] is Direction.UP
        assert prediction['confidence'] == pytest.approx(0.9, abs=1e-3)
        assert prediction['synchronized_cycles'] == ['fast', 'mid', 'slow']

    def test_resolve_phase_lock_once(self):
        event = self.detector.detect(now=50.0).lock_event
        assert self.detector.resolve_phase_lock(event.id, True, now=60.0)
        assert not self.detector.resolve_phase_lock(event.id, False, now=61.0)
        assert not self.detector.resolve_phase_lock('lock_missing', True)
        assert event.resolved.actual_duration == pytest.approx(10.0)
        stats = self.detector.get_accuracy_stats()
        assert stats['resolved_events'] == 1
        assert stats['accuracy'] == pytest.approx(1.0)

    def test_export_import(self):
        event = self.detector.detect(now=50.0).lock_event
        self.detector.resolve_phase_lock(event.id, False, now=60.0)

        restored = PhaseSynchronizationDetector(epoch=0.0)
        restored.import_events(self.detector.export_events())
        assert set(restored.cycles) == {'fast', 'mid', 'slow'}
        assert restored.resolved_count == 1
        assert restored.get_event(event.id).resolved.was_correct is False
