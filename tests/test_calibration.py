"""
Tests for confidence calibration tracking
"""

import pytest

from confluence.intelligence.calibration import CalibrationTracker
from confluence.shared.types import Direction

NOW = 1_700_000_000.0
DAY = 86400


class TestCalibrationTracker:

    def setup_method(self):
        self.tracker = CalibrationTracker({'calibration_min_samples': 30})

    def _record(self, confidence, correct, count, offset=0):
        for i in range(count):
            record_id = self.tracker.record_prediction(confidence, Direction.UP, 'ES', 5.0, NOW + offset + i)
            actual = Direction.UP if i < correct else Direction.DOWN
            self.tracker.resolve_prediction(record_id, actual, NOW + offset + i + 1)

    def test_record_clamps_confidence(self):
        record_id = self.tracker.record_prediction(1.7, 'up', now=NOW)
        assert record_id.startswith('cal_')
        assert self.tracker.records[record_id].predicted_confidence == 1.0
        other = self.tracker.record_prediction(float('nan'), 'up', now=NOW)
        assert self.tracker.records[other].predicted_confidence == 0.0

    def test_resolve_unknown_or_twice(self):
        record_id = self.tracker.record_prediction(0.6, Direction.UP, now=NOW)
        assert self.tracker.resolve_prediction(record_id, Direction.UP, NOW + 1)
        assert not self.tracker.resolve_prediction(record_id, Direction.UP, NOW + 2)
        assert not self.tracker.resolve_prediction('cal_unknown', Direction.UP)
        assert self.tracker.resolved_count == 1

    def test_full_confidence_lands_in_last_bucket(self):
        assert self.tracker._bucket_index(1.0) == 9
        assert self.tracker._bucket_index(0.0) == 0
        assert self.tracker._bucket_index(0.3) == 3

    def test_insufficient_data(self):
        self._record(0.9, correct=5, count=10)
        advice = self.tracker.get_calibration_advice()
        assert advice['status'] == 'insufficient_data'
        assert advice['adjustment_factor'] == 1.0
        assert advice['sample_size'] == 10

    def test_overconfidence_reduces_factor(self):
        # 70% accuracy at stated confidence 0.85
        self._record(0.85, correct=35, count=50)
        advice = self.tracker.get_calibration_advice()
        assert advice['status'] == 'overconfident'
        assert advice['bias'] == pytest.approx(0.85 - 0.7)
        assert advice['adjustment_factor'] < 1.0
        assert 0.85 * advice['adjustment_factor'] < 0.85

    def test_underconfidence_raises_factor(self):
        self._record(0.35, correct=45, count=50)
        advice = self.tracker.get_calibration_advice()
        assert advice['status'] == 'underconfident'
        assert advice['adjustment_factor'] > 1.0

    def test_well_calibrated(self):
        self._record(0.75, correct=38, count=50)
        advice = self.tracker.get_calibration_advice()
        assert advice['status'] == 'well_calibrated'
        assert advice['adjustment_factor'] == 1.0

    def test_metrics(self):
        self._record(0.85, correct=35, count=50)
        self._record(0.15, correct=5, count=50, offset=100)
        metrics = self.tracker.get_calibration_metrics()
        assert metrics.resolved_predictions == 100
        assert metrics.overall_accuracy == pytest.approx(0.4)
        assert 0.0 <= metrics.brier_score <= 1.0
        assert metrics.expected_calibration_error == pytest.approx(0.10)
        assert len([b for b in metrics.buckets if b.predictions]) == 2
        assert 0.0 <= self.tracker.get_reliability_score() <= 1.0

    def test_records_pruned_after_retention(self):
        self.tracker.record_prediction(0.5, Direction.UP, now=NOW)
        self.tracker.record_prediction(0.5, Direction.UP, now=NOW + 91 * DAY)
        assert len(self.tracker.records) == 1

    def test_record_store_is_capped(self):
        tracker = CalibrationTracker({'calibration_min_samples': 3, 'calibration_history_size': 4})
        ids = [tracker.record_prediction(0.5, Direction.UP, now=NOW + i) for i in range(6)]
        assert list(tracker.records) == ids[2:]
        assert not tracker.resolve_prediction(ids[0], Direction.UP, NOW + 10)
        assert tracker.resolve_prediction(ids[-1], Direction.UP, NOW + 10)
        assert tracker.get_calibration_metrics().total_predictions == 4

    def test_import_keeps_newest_records_within_cap(self):
        self._record(0.6, correct=3, count=6)
        restored = CalibrationTracker({'calibration_history_size': 4})
        restored.import_records(list(reversed(self.tracker.export_records())))
        timestamps = [r.timestamp for r in restored.records.values()]
        assert timestamps == [NOW + 2, NOW + 3, NOW + 4, NOW + 5]

    def test_export_import(self):
        self._record(0.6, correct=1, count=2)
        restored = CalibrationTracker()
        restored.import_records(self.tracker.export_records())
        assert restored.resolved_count == 2
