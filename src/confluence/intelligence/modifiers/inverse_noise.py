"""
Inverse Noise - Treats the noise itself as the signal (calm before the storm)
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from confluence.shared.types import Direction, DirectionHint, OutcomeFeedback, TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

PRICE_WINDOW = 100
ANOMALY_TTL = 3600
SPIKE_TTL = 1800


@dataclass
class NoiseProfile:
    level: float
    trend: str  # increasing, decreasing, stable
    frequency: float
    structure: str  # random, patterned, chaotic
    signal_to_noise: float


@dataclass
class NoiseAnomaly:
    type: str
    magnitude: float
    timestamp: float
    predictive_value: float


def linear_trend(data: np.ndarray) -> np.ndarray:
    x = np.arange(len(data))
    slope, intercept = np.polyfit(x, data, 1)
    return intercept + slope * x


def noise_level(data: np.ndarray) -> float:
    """Dispersion of price acceleration relative to its mean, capped at 1"""
    if len(data) < 3:
        return 0.5
    second = np.diff(data, n=2)
    normalized = np.std(second) / (abs(np.mean(second)) + 0.001)
    return float(min(1.0, normalized))


def dominant_frequency(data: np.ndarray) -> float:
    if len(data) < 20:
        return 0.0
    detrended = data - linear_trend(data)
    best_corr, best_lag = 0.0, 0
    for lag in range(2, int(np.ceil(min(50, len(data) / 2)))):
        corr = float(np.dot(detrended[:-lag], detrended[lag:]) / (len(data) - lag))
        if corr > best_corr:
            best_corr, best_lag = corr, lag
    return 1 / best_lag if best_lag > 0 else 0.0


def classify_structure(level: float, frequency: float, n: int) -> str:
    if n < 10:
        return 'random'
    if level > 0.7 and frequency < 0.1:
        return 'chaotic'
    if frequency > 0.2 and level < 0.5:
        return 'patterned'
    return 'random'


def signal_to_noise(data: np.ndarray) -> float:
    if len(data) < 5:
        return 1.0
    signal_power = (data[-1] - data[0]) ** 2
    noise_power = float(np.mean((data - linear_trend(data)) ** 2))
    if noise_power == 0:
        return 10.0
    return float(min(10.0, signal_power / noise_power))


class InverseNoiseModifier(ConfidenceModifier):
    """Profiles price noise and reads anomalies in it as directional evidence"""

    name = "inverse_noise"
    regularization = 0.85
    override_eligible = True

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.noise_history = deque(maxlen=500)
        self.anomalies: List[NoiseAnomaly] = []
        self.outcome_history = deque(maxlen=500)
        self.profile: Optional[NoiseProfile] = None
        self.cycle_state = 'stable_order'
        self.prediction = (Direction.NEUTRAL, 0.4, 'No clear signal from noise analysis')

    def _noise_trend(self) -> str:
        if len(self.noise_history) < 10:
            return 'stable'
        history = list(self.noise_history)
        recent, older = history[-10:], history[-20:-10]
        if not older:
            return 'stable'
        diff = np.mean([p.level for p in recent]) - np.mean([p.level for p in older])
        if diff > 0.1:
            return 'increasing'
        if diff < -0.1:
            return 'decreasing'
        return 'stable'

    def analyze_noise(self, prices, now: float) -> NoiseProfile:
        data = np.asarray(prices[-PRICE_WINDOW:], dtype=float)
        level = noise_level(data)
        frequency = dominant_frequency(data)
        profile = NoiseProfile(
            level=level,
            trend=self._noise_trend(),
            frequency=frequency,
            structure=classify_structure(level, frequency, len(data)),
            signal_to_noise=signal_to_noise(data)
        )
        self.noise_history.append(profile)
        self._detect_anomalies(profile, now)
        return profile

    def _detect_anomalies(self, current: NoiseProfile, now: float):
        if len(self.noise_history) >= 5:
            recent = list(self.noise_history)[-5:-1]
            avg_level = np.mean([p.level for p in recent])
            avg_freq = np.mean([p.frequency for p in recent])

            if current.level > avg_level * 1.5 and current.level > 0.6:
                self.anomalies.append(NoiseAnomaly('noise_spike', current.level - avg_level, now, 0.7))
            if current.level < avg_level * 0.5 and current.level < 0.3:
                self.anomalies.append(NoiseAnomaly('noise_collapse', avg_level - current.level, now, 0.8))
            if abs(current.frequency - avg_freq) > 0.2:
                self.anomalies.append(NoiseAnomaly('frequency_shift', abs(current.frequency - avg_freq), now, 0.6))

            most_common = Counter(p.structure for p in recent).most_common(1)[0][0]
            if current.structure != most_common:
                self.anomalies.append(NoiseAnomaly('structure_change', 0.5, now, 0.65))

        self.anomalies = [a for a in self.anomalies if a.timestamp > now - ANOMALY_TTL]

    @staticmethod
    def classify_cycle(profile: NoiseProfile) -> str:
        if profile.level > 0.6 and profile.trend == 'increasing':
            return 'order_to_chaos'
        if profile.level > 0.6 and profile.trend == 'stable':
            return 'stable_chaos'
        if profile.level < 0.4 and profile.trend == 'decreasing':
            return 'chaos_to_order'
        return 'stable_order'

    def predict_from_noise(self, profile: NoiseProfile, now: float):
        recent = self.anomalies[-10:]

        def _find(kind):
            return next((a for a in recent if a.type == kind), None)

        collapse = _find('noise_collapse')
        if collapse is not None and collapse.timestamp > now - ANOMALY_TTL:
            return Direction.NEUTRAL, 0.7, 'Noise collapse, calm before the storm'

        spike = _find('noise_spike')
        if spike is not None and spike.timestamp > now - SPIKE_TTL and profile.structure == 'chaotic':
            return Direction.NEUTRAL, 0.5, 'Noise spike in chaos, reversal likely but direction unclear'

        if _find('structure_change') is not None and profile.structure == 'patterned':
            return Direction.UP, 0.55, 'Noise structure becoming ordered'

        if profile.level < 0.3 and profile.signal_to_noise > 2:
            return Direction.UP, 0.5, 'Low noise environment, trend likely to continue'

        return Direction.NEUTRAL, 0.4, 'No clear signal from noise analysis'

    def update(self, ctx: TickContext):
        if not ctx.prices:
            self.profile = None
            return
        self.profile = self.analyze_noise(ctx.prices, ctx.timestamp)
        self.cycle_state = self.classify_cycle(self.profile)
        direction, confidence, reasoning = self.predict_from_noise(self.profile, ctx.timestamp)
        self.prediction = (direction, confidence * self.regularization, reasoning)

    def raw_modifier(self) -> float:
        if self.profile is None:
            return 1.0
        raw = 1.05 - self.profile.level * 0.15 + min(0.05, self.profile.signal_to_noise * 0.01)
        if self.cycle_state == 'stable_chaos':
            raw *= 0.95
        return raw

    def direction_hint(self) -> Optional[DirectionHint]:
        if self.profile is None:
            return None
        direction, confidence, reasoning = self.prediction
        return DirectionHint(direction, confidence, reasoning)

    def snapshot(self) -> Dict[str, object]:
        if self.profile is None:
            return {}
        return {'noise_level': self.profile.level, 'predicted_direction': self.prediction[0].value}

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, object]):
        if 'noise_level' not in snapshot:
            return
        self.outcome_history.append({
            'noise_level': snapshot['noise_level'],
            'was_correct': snapshot.get('predicted_direction') == feedback.actual_direction.value
        })

    def get_accuracy_stats(self) -> Dict[str, object]:
        if len(self.outcome_history) < 10:
            return {'overall': 0.5, 'by_noise_level': {'low': 0.5, 'medium': 0.5, 'high': 0.5}}

        buckets = {'low': [], 'medium': [], 'high': []}
        for outcome in self.outcome_history:
            level = outcome['noise_level']
            key = 'low' if level < 0.33 else 'medium' if level < 0.66 else 'high'
            buckets[key].append(outcome['was_correct'])

        overall = sum(o['was_correct'] for o in self.outcome_history) / len(self.outcome_history)
        return {
            'overall': overall,
            'by_noise_level': {k: (sum(v) / len(v) if v else 0.5) for k, v in buckets.items()}
        }
