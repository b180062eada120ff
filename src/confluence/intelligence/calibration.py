"""
Calibration Tracker - Reliability-diagram calibration of stated confidence against outcomes
"""

import time
import logging
import itertools
from collections import OrderedDict
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

import numpy as np

from confluence.shared.types import Direction

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass
class CalibrationResolution:
    actual_direction: Direction
    was_correct: bool
    resolved_at: float


@dataclass
class CalibrationRecord:
    id: str
    timestamp: float
    predicted_confidence: float
    predicted_direction: Direction
    symbol: str
    horizon: float
    resolved: Optional[CalibrationResolution] = None


@dataclass
class CalibrationBucket:
    range_start: float
    range_end: float
    predictions: int
    correct: int
    expected_accuracy: float
    actual_accuracy: float

    @property
    def calibration_error(self) -> float:
        return abs(self.expected_accuracy - self.actual_accuracy)


@dataclass
class CalibrationMetrics:
    total_predictions: int = 0
    resolved_predictions: int = 0
    overall_accuracy: float = 0.0
    expected_calibration_error: float = 0.0
    brier_score: float = 0.0
    reliability: float = 0.0
    resolution: float = 0.0
    overconfidence_bias: float = 0.0
    buckets: List[CalibrationBucket] = field(default_factory=list)


class CalibrationTracker:
    """
    Records prediction -> outcome pairs and derives a confidence rescaling
    factor that pulls stated confidence toward realized accuracy.
    """

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        self.bucket_width = config.get('calibration_bucket_width', 0.1)
        self.min_samples = config.get('calibration_min_samples', 30)
        self.retention_seconds = config.get('calibration_retention_days', 90) * SECONDS_PER_DAY
        self.max_records = config.get('calibration_history_size', 1000)

        self.records: Dict[str, CalibrationRecord] = OrderedDict()
        self._sequence = itertools.count(1)

    @property
    def bucket_count(self) -> int:
        return max(1, int(round(1 / self.bucket_width)))

    def record_prediction(self, confidence: float, direction, symbol: str = "",
                          horizon: float = 0.0, now: Optional[float] = None) -> str:
        """Register a prediction and return its calibration id"""
        now = now if now is not None else time.time()
        if confidence is None or not np.isfinite(confidence):
            confidence = 0.0

        record_id = f"cal_{int(now * 1000)}_{next(self._sequence)}"
        self.records[record_id] = CalibrationRecord(
            id=record_id,
            timestamp=now,
            predicted_confidence=float(min(1.0, max(0.0, confidence))),
            predicted_direction=Direction.coerce(direction),
            symbol=symbol,
            horizon=horizon
        )
        self._prune(now)
        return record_id

    def resolve_prediction(self, record_id: str, actual_direction, now: Optional[float] = None) -> bool:
        """Mark a prediction correct or incorrect; False for unknown or resolved ids"""
        record = self.records.get(record_id)
        if record is None or record.resolved is not None:
            return False

        actual = Direction.coerce(actual_direction)
        record.resolved = CalibrationResolution(
            actual_direction=actual,
            was_correct=actual is record.predicted_direction,
            resolved_at=now if now is not None else time.time()
        )
        return True

    def _prune(self, now: float):
        """Drop expired records, then the oldest ones beyond the size cap"""
        cutoff = now - self.retention_seconds
        while self.records:
            oldest = next(iter(self.records.values()))
            if oldest.timestamp > cutoff and len(self.records) <= self.max_records:
                break
            self.records.popitem(last=False)

    @property
    def resolved_count(self) -> int:
        return sum(1 for r in self.records.values() if r.resolved is not None)

    def _bucket_index(self, confidence: float) -> int:
        index = int(np.floor(confidence / self.bucket_width + 1e-9))
        return min(max(index, 0), self.bucket_count - 1)

    def _build_buckets(self, resolved: List[CalibrationRecord]) -> List[CalibrationBucket]:
        counts = np.zeros(self.bucket_count, dtype=int)
        hits = np.zeros(self.bucket_count, dtype=int)
        for record in resolved:
            index = self._bucket_index(record.predicted_confidence)
            counts[index] += 1
            hits[index] += int(record.resolved.was_correct)

        buckets = []
        for i in range(self.bucket_count):
            start = i * self.bucket_width
            end = start + self.bucket_width
            buckets.append(CalibrationBucket(
                range_start=start,
                range_end=end,
                predictions=int(counts[i]),
                correct=int(hits[i]),
                expected_accuracy=(start + end) / 2,
                actual_accuracy=hits[i] / counts[i] if counts[i] > 0 else 0.0
            ))
        return buckets

    def get_calibration_metrics(self) -> CalibrationMetrics:
        resolved = [r for r in self.records.values() if r.resolved is not None]
        if not resolved:
            return CalibrationMetrics(total_predictions=len(self.records))

        buckets = self._build_buckets(resolved)
        n = len(resolved)
        overall_accuracy = sum(r.resolved.was_correct for r in resolved) / n

        confidences = np.array([r.predicted_confidence for r in resolved])
        outcomes = np.array([1.0 if r.resolved.was_correct else 0.0 for r in resolved])
        brier = float(np.mean((confidences - outcomes) ** 2))

        ece = reliability = resolution = 0.0
        bias_total = 0.0
        for bucket in buckets:
            if bucket.predictions == 0:
                continue
            weight = bucket.predictions / n
            ece += weight * bucket.calibration_error
            reliability += weight * (bucket.actual_accuracy - bucket.expected_accuracy) ** 2
            resolution += weight * (bucket.actual_accuracy - overall_accuracy) ** 2
            # Positive bias = overconfident
            bias_total += (bucket.expected_accuracy - bucket.actual_accuracy) * bucket.predictions

        return CalibrationMetrics(
            total_predictions=len(self.records),
            resolved_predictions=n,
            overall_accuracy=overall_accuracy,
            expected_calibration_error=ece,
            brier_score=brier,
            reliability=reliability,
            resolution=resolution,
            overconfidence_bias=bias_total / n,
            buckets=buckets
        )

    def get_calibration_advice(self) -> Dict[str, object]:
        """Status plus the multiplicative factor to apply to future confidence"""
        metrics = self.get_calibration_metrics()
        bias = metrics.overconfidence_bias
        advice = {
            'ece': metrics.expected_calibration_error,
            'bias': bias,
            'sample_size': metrics.resolved_predictions
        }

        if metrics.resolved_predictions < self.min_samples:
            advice.update(status='insufficient_data', adjustment_factor=1.0,
                          advice=f"Need at least {self.min_samples} resolved predictions")
        elif abs(bias) < 0.05:
            advice.update(status='well_calibrated', adjustment_factor=1.0,
                          advice="Confidence levels match actual accuracy")
        elif bias > 0.05:
            advice.update(status='overconfident', adjustment_factor=1 - bias * 0.5,
                          advice=f"Overconfident by {bias * 100:.1f}%, reducing confidence")
        else:
            advice.update(status='underconfident', adjustment_factor=1 + abs(bias) * 0.5,
                          advice=f"Underconfident by {abs(bias) * 100:.1f}%, raising confidence")
        return advice

    def get_reliability_score(self) -> float:
        """0-1, higher is better calibrated"""
        return max(0.0, 1 - self.get_calibration_metrics().reliability * 5)

    def export_records(self) -> List[Dict]:
        exported = []
        for record in self.records.values():
            data = asdict(record)
            data['predicted_direction'] = record.predicted_direction.value
            if record.resolved:
                data['resolved']['actual_direction'] = record.resolved.actual_direction.value
            exported.append(data)
        return exported

    def import_records(self, records: List[Dict]):
        self.records = OrderedDict()
        for data in records:
            try:
                resolved = data.get('resolved')
                record = CalibrationRecord(
                    id=data['id'],
                    timestamp=float(data['timestamp']),
                    predicted_confidence=float(data['predicted_confidence']),
                    predicted_direction=Direction.coerce(data['predicted_direction']),
                    symbol=data.get('symbol', ''),
                    horizon=float(data.get('horizon', 0.0)),
                    resolved=CalibrationResolution(
                        actual_direction=Direction.coerce(resolved['actual_direction']),
                        was_correct=bool(resolved['was_correct']),
                        resolved_at=float(resolved['resolved_at'])
                    ) if resolved else None
                )
                self.records[record.id] = record
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed calibration record: {e}")
        self.records = OrderedDict(sorted(self.records.items(), key=lambda item: item[1].timestamp))
        while len(self.records) > self.max_records:
            self.records.popitem(last=False)
        logger.info(f"Imported {len(self.records)} calibration records")
