"""
Fractal Time - Self-similar price patterns across compressed timescales
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from confluence.shared.types import Direction, DirectionHint, OutcomeFeedback, TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

TIMESCALES = (('minute', 1), ('hour', 5), ('day', 15), ('week', 60))
MAX_POINTS = 200
MIN_PATTERN_LENGTH = 5
MAX_PATTERN_LENGTH = 20
SIMILARITY_THRESHOLD = 0.7
GROUP_THRESHOLD = 0.8
MAX_MATCHES = 50
RESAMPLE_LENGTH = 20
MIN_OUTCOMES = 10


@dataclass
class FractalPattern:
    id: str
    signature: np.ndarray
    timescale: str
    start_index: int
    end_index: int
    similarity: float
    predicted_continuation: np.ndarray


@dataclass
class TimescalePattern:
    timescale: str
    patterns: List[FractalPattern] = field(default_factory=list)
    dominant_pattern: Optional[FractalPattern] = None
    coherence: float = 0.0


@dataclass
class FractalState:
    timescale_patterns: List[TimescalePattern]
    cross_timescale_coherence: float
    active_fractals: List[FractalPattern]
    prediction_confidence: float
    suggested_direction: Direction


def normalize_range(data) -> np.ndarray:
    """Rescale to [-1, 1]; a flat series maps to zeros"""
    data = np.asarray(data, dtype=float)
    if data.size == 0:
        return data
    low, high = data.min(), data.max()
    if high == low:
        return np.zeros_like(data)
    return (data - low) / (high - low) * 2 - 1


def pearson_similarity(a, b) -> float:
    """Pearson correlation mapped to [0, 1]; 0 for a degenerate pair"""
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    a = np.asarray(a[:n], dtype=float) - np.mean(a[:n])
    b = np.asarray(b[:n], dtype=float) - np.mean(b[:n])
    denominator = np.sqrt(np.sum(a * a) * np.sum(b * b))
    if denominator == 0:
        return 0.0
    return float((np.sum(a * b) / denominator + 1) / 2)


def resample(data, target_length: int) -> np.ndarray:
    data = np.asarray(data, dtype=float)
    if data.size == target_length:
        return data
    if data.size == 0:
        return np.zeros(target_length)
    return np.interp(np.linspace(0, data.size - 1, target_length), np.arange(data.size), data)


def half_trend(data) -> float:
    data = np.asarray(data, dtype=float)
    if data.size < 2:
        return 0.0
    split = int(np.ceil(data.size / 2))
    return float(np.mean(data[split:]) - np.mean(data[:split]))


class FractalTimeModifier(ConfidenceModifier):
    """
    Matches the most recent window of each timescale against its own history
    and looks for the same shape recurring at several timescales at once.
    """

    name = "fractal_time"
    regularization = 0.9
    override_eligible = True

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.outcome_history = deque(maxlen=500)
        self.state: Optional[FractalState] = None

    def analyze_timescale(self, data: Sequence[float], timescale: str) -> TimescalePattern:
        data = np.asarray(data, dtype=float)
        if data.size < MIN_PATTERN_LENGTH * 2:
            return TimescalePattern(timescale)

        normalized = normalize_range(data)
        n = normalized.size
        matches: List[FractalPattern] = []

        for window in range(MIN_PATTERN_LENGTH, min(MAX_PATTERN_LENGTH, n // 2) + 1):
            candidates = n - window * 2
            if candidates <= 0:
                continue
            recent = normalized[-window:] - normalized[-window:].mean()
            windows = sliding_window_view(normalized, window)[:candidates]
            centered = windows - windows.mean(axis=1, keepdims=True)
            numerator = centered @ recent
            denominator = np.sqrt(np.sum(centered ** 2, axis=1) * np.sum(recent ** 2))
            with np.errstate(divide='ignore', invalid='ignore'):
                similarity = np.where(denominator > 0, (numerator / denominator + 1) / 2, 0.0)

            for i in np.nonzero(similarity > SIMILARITY_THRESHOLD)[0]:
                matches.append(FractalPattern(
                    id=f"{timescale}_{i}_{window}",
                    signature=normalized[i:i + window],
                    timescale=timescale,
                    start_index=int(i),
                    end_index=int(i + window),
                    similarity=float(similarity[i]),
                    predicted_continuation=normalized[i + window:i + window * 2]
                ))

        matches = sorted(matches, key=lambda p: p.similarity, reverse=True)[:MAX_MATCHES]
        if not matches:
            return TimescalePattern(timescale)

        dominant, best_score = None, 0.0
        for group in self._group_similar(matches):
            score = np.mean([p.similarity for p in group]) * np.sqrt(len(group))
            if score > best_score:
                best_score, dominant = score, group[0]

        return TimescalePattern(
            timescale=timescale,
            patterns=matches,
            dominant_pattern=dominant,
            coherence=float(np.mean([p.similarity for p in matches]))
        )

    @staticmethod
    def _group_similar(patterns: List[FractalPattern]) -> List[List[FractalPattern]]:
        groups, used = [], set()
        for i, pattern in enumerate(patterns):
            if i in used:
                continue
            group = [pattern]
            used.add(i)
            for j in range(i + 1, len(patterns)):
                if j not in used and pearson_similarity(pattern.signature, patterns[j].signature) > GROUP_THRESHOLD:
                    group.append(patterns[j])
                    used.add(j)
            groups.append(group)
        return groups

    @staticmethod
    def find_cross_timescale_patterns(timescales: List[TimescalePattern]) -> List[FractalPattern]:
        dominants = [t.dominant_pattern for t in timescales if t.dominant_pattern is not None]
        fractals = []
        for i in range(len(dominants)):
            for j in range(i + 1, len(dominants)):
                similarity = pearson_similarity(
                    resample(dominants[i].signature, RESAMPLE_LENGTH),
                    resample(dominants[j].signature, RESAMPLE_LENGTH)
                )
                if similarity > SIMILARITY_THRESHOLD:
                    base = dominants[i]
                    fractals.append(FractalPattern(
                        id=f"fractal_{base.timescale}_{dominants[j].timescale}",
                        signature=base.signature,
                        timescale=base.timescale,
                        start_index=base.start_index,
                        end_index=base.end_index,
                        similarity=similarity,
                        predicted_continuation=base.predicted_continuation
                    ))
        return fractals

    @staticmethod
    def cross_timescale_coherence(timescales: List[TimescalePattern]) -> float:
        coherences = [t.coherence for t in timescales if t.coherence > 0]
        if not coherences:
            return 0.0
        bonus = len(coherences) / len(TIMESCALES)
        return min(1.0, float(np.mean(coherences)) * (1 + bonus * 0.2))

    @staticmethod
    def generate_prediction(fractals: List[FractalPattern], coherence: float):
        if not fractals or coherence < 0.3:
            return Direction.NEUTRAL, 0.3

        up_votes = down_votes = 0.0
        for fractal in fractals:
            if fractal.predicted_continuation.size == 0:
                continue
            trend = half_trend(fractal.predicted_continuation)
            if trend > 0.05:
                up_votes += fractal.similarity
            elif trend < -0.05:
                down_votes += fractal.similarity

        total = up_votes + down_votes
        if total < 0.1:
            return Direction.NEUTRAL, 0.3
        confidence = min(0.85, coherence * abs(up_votes - down_votes) / total)
        return (Direction.UP if up_votes > down_votes else Direction.DOWN), confidence

    def analyze_fractals(self, prices: Sequence[float]) -> FractalState:
        prices = np.asarray(prices, dtype=float)
        timescales = [
            self.analyze_timescale(prices[::-1][::stride][::-1][-MAX_POINTS:], name)
            for name, stride in TIMESCALES
        ]
        fractals = self.find_cross_timescale_patterns(timescales)
        coherence = self.cross_timescale_coherence(timescales)
        direction, confidence = self.generate_prediction(fractals, coherence)
        return FractalState(
            timescale_patterns=timescales,
            cross_timescale_coherence=coherence,
            active_fractals=fractals,
            prediction_confidence=confidence,
            suggested_direction=direction
        )

    def get_accuracy(self) -> float:
        if len(self.outcome_history) < MIN_OUTCOMES:
            return 0.5
        return sum(1 for o in self.outcome_history if o['was_correct']) / len(self.outcome_history)

    def update(self, ctx: TickContext):
        self.state = self.analyze_fractals(ctx.prices)

    def _has_patterns(self) -> bool:
        return self.state is not None and any(t.patterns for t in self.state.timescale_patterns)

    def raw_modifier(self) -> float:
        if not self._has_patterns():
            return 1.0
        coherence = self.state.cross_timescale_coherence
        return (0.9 + coherence * 0.2) * (0.8 + self.get_accuracy() * 0.4)

    def direction_hint(self) -> Optional[DirectionHint]:
        if not self._has_patterns():
            return None
        return DirectionHint(
            self.state.suggested_direction,
            self.state.prediction_confidence,
            f"{len(self.state.active_fractals)} cross-timescale fractals"
        )

    def snapshot(self) -> Dict[str, object]:
        if self.state is None or not self.state.active_fractals:
            return {}
        return {
            'pattern_ids': [f.id for f in self.state.active_fractals],
            'suggested_direction': self.state.suggested_direction.value
        }

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, object]):
        if not snapshot.get('pattern_ids'):
            return
        was_correct = snapshot.get('suggested_direction') == feedback.actual_direction.value
        for pattern_id in snapshot['pattern_ids']:
            self.outcome_history.append({'pattern_id': pattern_id, 'was_correct': was_correct})
