"""
Quantum Clouds - Probability distributions over outcomes instead of point predictions
"""

import math
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
from scipy.stats import norm

from confluence.shared.types import OutcomeFeedback, TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

GRID_STEP = 0.02
UNCERTAINTY_FLOOR = 0.1
NEUTRAL_BAND = 0.02
MIN_COLLAPSES = 10

# Allowed distance between observed and nominal coverage
COVERAGE_TOLERANCE = {0.50: 0.15, 0.75: 0.10, 0.95: 0.05}


@dataclass
class ProbabilityCloud:
    values: np.ndarray
    probabilities: np.ndarray
    mean: float
    standard_deviation: float
    skewness: float
    kurtosis: float
    confidence_intervals: Dict[float, Tuple[float, float]]
    dominant_outcome: str
    outcome_distribution: Dict[str, float]
    entropy: float

    def contains(self, value: float, level: float) -> bool:
        low, high = self.confidence_intervals[level]
        return low <= value <= high


@dataclass
class CloudCollapse:
    cloud: ProbabilityCloud
    actual_outcome: float
    within: Dict[float, bool] = field(default_factory=dict)


def uniform_cloud() -> ProbabilityCloud:
    """Maximum-uncertainty cloud used when there is nothing to weigh"""
    values = np.linspace(-1, 1, 21)
    return ProbabilityCloud(
        values=values,
        probabilities=np.full(values.size, 1 / values.size),
        mean=0.0,
        standard_deviation=0.5,
        skewness=0.0,
        kurtosis=0.0,
        confidence_intervals={0.50: (-0.25, 0.25), 0.75: (-0.5, 0.5), 0.95: (-0.9, 0.9)},
        dominant_outcome='neutral',
        outcome_distribution={'up': 0.33, 'down': 0.33, 'neutral': 0.34},
        entropy=1.0
    )


def standardized_moment(values: np.ndarray, probabilities: np.ndarray, order: int) -> float:
    mean = float(np.sum(values * probabilities))
    sd = math.sqrt(float(np.sum((values - mean) ** 2 * probabilities)))
    if sd == 0:
        return 0.0
    return float(np.sum(((values - mean) / sd) ** order * probabilities))


def confidence_interval(values: np.ndarray, probabilities: np.ndarray, level: float) -> Tuple[float, float]:
    tail = (1 - level) / 2
    cumulative = np.cumsum(probabilities)
    lower = int(np.searchsorted(cumulative, tail - 1e-12))
    upper = int(np.searchsorted(cumulative, 1 - tail - 1e-12))
    last = values.size - 1
    return float(values[min(lower, last)]), float(values[min(upper, last)])


def outcome_distribution(values: np.ndarray, probabilities: np.ndarray) -> Dict[str, float]:
    return {
        'up': float(probabilities[values > NEUTRAL_BAND].sum()),
        'down': float(probabilities[values < -NEUTRAL_BAND].sum()),
        'neutral': float(probabilities[np.abs(values) <= NEUTRAL_BAND].sum()),
    }


def outcome_entropy(distribution: Dict[str, float]) -> float:
    """Shannon entropy of the three outcomes, normalized to [0, 1]"""
    entropy = -sum(p * math.log2(p) for p in distribution.values() if p > 0)
    return entropy / math.log2(3)


class ProbabilityCloudGenerator:
    """
    Builds a Gaussian mixture from confidence-weighted predictions and tracks how
    often realized outcomes land inside its confidence intervals.
    """

    def __init__(self, max_history: int = 500):
        self.collapse_history = deque(maxlen=max_history)

    def generate_cloud(self, predictions: Iterable[Tuple[float, float, str]],
                       base_volatility: float = 0.1) -> ProbabilityCloud:
        predictions = [(float(v), max(0.0, float(c)), s) for v, c, s in predictions]
        weights = np.array([c for _, c, _ in predictions], dtype=float)
        if not predictions or weights.sum() <= 0:
            return uniform_cloud()

        centers = np.array([v for v, _, _ in predictions], dtype=float)
        total_weight = weights.sum()
        mean = float(np.sum(centers * weights) / total_weight)
        variance = float(np.sum(weights * (centers - mean) ** 2) / total_weight)
        sd = math.sqrt(variance + base_volatility ** 2 + UNCERTAINTY_FLOOR ** 2)

        values = np.round(np.arange(-1, 1 + GRID_STEP / 2, GRID_STEP), 2)
        local_sd = sd / np.sqrt(weights + 0.1)
        densities = norm.pdf(values[:, None], loc=centers[None, :], scale=local_sd[None, :])
        mixture = densities @ weights / total_weight
        mass = mixture.sum()
        probabilities = mixture / mass if mass > 0 else np.full(values.size, 1 / values.size)

        outcomes = outcome_distribution(values, probabilities)
        if outcomes['up'] > outcomes['down']:
            dominant = 'up' if outcomes['up'] > outcomes['neutral'] else 'neutral'
        else:
            dominant = 'down' if outcomes['down'] > outcomes['neutral'] else 'neutral'

        return ProbabilityCloud(
            values=values,
            probabilities=probabilities,
            mean=mean,
            standard_deviation=sd,
            skewness=standardized_moment(values, probabilities, 3),
            kurtosis=standardized_moment(values, probabilities, 4) - 3,
            confidence_intervals={
                level: confidence_interval(values, probabilities, level) for level in COVERAGE_TOLERANCE
            },
            dominant_outcome=dominant,
            outcome_distribution=outcomes,
            entropy=outcome_entropy(outcomes)
        )

    def record_collapse(self, cloud: ProbabilityCloud, actual_outcome: float) -> CloudCollapse:
        collapse = CloudCollapse(
            cloud=cloud,
            actual_outcome=actual_outcome,
            within={level: cloud.contains(actual_outcome, level) for level in COVERAGE_TOLERANCE}
        )
        self.collapse_history.append(collapse)
        return collapse

    def get_calibration_stats(self) -> Dict[str, object]:
        if len(self.collapse_history) < MIN_COLLAPSES:
            return {'ci50_coverage': 0.5, 'ci75_coverage': 0.75, 'ci95_coverage': 0.95,
                    'is_well_calibrated': True}

        n = len(self.collapse_history)
        coverage = {
            level: sum(1 for c in self.collapse_history if c.within[level]) / n
            for level in COVERAGE_TOLERANCE
        }
        return {
            'ci50_coverage': coverage[0.50],
            'ci75_coverage': coverage[0.75],
            'ci95_coverage': coverage[0.95],
            'is_well_calibrated': all(
                round(abs(coverage[level] - level), 9) <= tolerance
                for level, tolerance in COVERAGE_TOLERANCE.items()
            )
        }

    def get_confidence_modifier(self, cloud: ProbabilityCloud) -> float:
        entropy_factor = 1 - cloud.entropy * 0.3
        kurtosis_factor = 1 - min(0.2, abs(cloud.kurtosis) * 0.05)
        calibration_factor = 1.05 if self.get_calibration_stats()['is_well_calibrated'] else 0.95
        return entropy_factor * kurtosis_factor * calibration_factor


class QuantumCloudModifier(ConfidenceModifier):
    name = "quantum_cloud"
    regularization = 0.85

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.generator = ProbabilityCloudGenerator(self.config.get('cloud_history_size', 500))
        self.base_volatility = self.config.get('cloud_base_volatility', 0.1)
        self.cloud: Optional[ProbabilityCloud] = None

    def update(self, ctx: TickContext):
        if not ctx.signatures:
            self.cloud = None
            return
        predictions = [
            (float(np.clip(sig.momentum, -1, 1)), sig.effective_phase_alignment, domain)
            for domain, sig in ctx.signatures.items()
        ]
        self.cloud = self.generator.generate_cloud(predictions, self.base_volatility)

    def raw_modifier(self) -> float:
        if self.cloud is None:
            return 1.0
        return self.generator.get_confidence_modifier(self.cloud)

    def snapshot(self) -> Dict[str, object]:
        return {'cloud': self.cloud} if self.cloud is not None else {}

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, object]):
        cloud = snapshot.get('cloud')
        if cloud is None:
            return
        self.generator.record_collapse(cloud, feedback.signed_outcome)
