"""
Dynamic Equivalence - Tracks when pattern signals and fundamentals agree on what drives outcomes
"""

import time
import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from confluence.shared.types import OutcomeFeedback, TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600
MIN_WINDOW_OUTCOMES = 5
LEARNING_RATE = 0.1

PHASE_FACTORS = {
    'strong_equivalence': 1.15,
    'weak_equivalence': 1.0,
    'decorrelated': 0.85,
    'inverse': 0.9,
}

TRANSITION_FACTORS = {
    'strong_equivalence': 0.8,
    'weak_equivalence': 1.0,
    'decorrelated': 1.2,
    'inverse': 1.3,
}


@dataclass
class EquivalenceState:
    correlation_strength: float
    causation_probability: float
    relationship_phase: str
    stability: float
    transition_probability: float


@dataclass
class EquivalenceWindow:
    start_time: float
    end_time: float
    phase: str
    pattern_accuracy: float
    fundamental_accuracy: float
    combined_accuracy: float


def directional_accuracy(outcomes) -> float:
    if not outcomes:
        return 0.5
    correct = sum(1 for _, predicted, actual in outcomes if np.sign(predicted) == np.sign(actual))
    return correct / len(outcomes)


def prediction_correlation(outcomes) -> float:
    if len(outcomes) < 3:
        return 0.0
    predicted = np.array([o[1] for o in outcomes], dtype=float)
    actual = np.array([o[2] for o in outcomes], dtype=float)
    predicted -= predicted.mean()
    actual -= actual.mean()
    denominator = np.sqrt(np.sum(predicted ** 2) * np.sum(actual ** 2))
    if denominator == 0:
        return 0.0
    return float(np.sum(predicted * actual) / denominator)


def estimate_causation(pattern_accuracy: float, fundamental_accuracy: float, correlation: float) -> float:
    if pattern_accuracy > 0.6 and correlation > 0.5 and fundamental_accuracy < 0.5:
        return min(0.8, pattern_accuracy * correlation)
    if pattern_accuracy > 0.6 and fundamental_accuracy > 0.6:
        return 0.5
    # Accurate-looking correlation that does not convert into hits is spurious
    if pattern_accuracy < 0.5 and correlation > 0.3:
        return 0.2
    return correlation * 0.5


def determine_phase(pattern_accuracy: float, correlation: float) -> str:
    if correlation > 0.6 and pattern_accuracy > 0.6:
        return 'strong_equivalence'
    if correlation > 0.3 and pattern_accuracy > 0.5:
        return 'weak_equivalence'
    if correlation < -0.3:
        return 'inverse'
    return 'decorrelated'


class DynamicEquivalenceModifier(ConfidenceModifier):
    """
    Learns, from resolved outcomes, how far the fused pattern signal can be trusted
    relative to the fundamental signal, and how stable that relationship is.
    """

    name = "dynamic_equivalence"
    regularization = 0.85

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.pattern_outcomes = deque(maxlen=1000)
        self.fundamental_outcomes = deque(maxlen=1000)
        self.state_history = deque(maxlen=1000)
        self.window_history = deque(maxlen=100)
        self.pattern_weight = 0.5
        self.fundamental_weight = 0.5

    @property
    def current_state(self) -> Optional[EquivalenceState]:
        return self.state_history[-1][1] if self.state_history else None

    def record_pattern_prediction(self, predicted: float, actual: float, now: Optional[float] = None):
        now = now if now is not None else time.time()
        self.pattern_outcomes.append((now, float(predicted), float(actual)))
        self.update_equivalence(now)

    def record_fundamental_prediction(self, predicted: float, actual: float, now: Optional[float] = None):
        now = now if now is not None else time.time()
        self.fundamental_outcomes.append((now, float(predicted), float(actual)))
        self.update_equivalence(now)

    def update_equivalence(self, now: float):
        window_start = now - WINDOW_SECONDS
        patterns = [o for o in self.pattern_outcomes if o[0] > window_start]
        fundamentals = [o for o in self.fundamental_outcomes if o[0] > window_start]
        if len(patterns) < MIN_WINDOW_OUTCOMES and len(fundamentals) < MIN_WINDOW_OUTCOMES:
            return

        pattern_accuracy = directional_accuracy(patterns)
        fundamental_accuracy = directional_accuracy(fundamentals)
        correlation = prediction_correlation(patterns)
        phase = determine_phase(pattern_accuracy, correlation)

        # Stability counts the phase about to be appended
        recent_phases = [s.relationship_phase for _, s in list(self.state_history)[-19:]] + [phase]
        if len(self.state_history) < 10:
            stability = 0.5
        else:
            stability = recent_phases.count(phase) / len(recent_phases)

        state = EquivalenceState(
            correlation_strength=correlation,
            causation_probability=estimate_causation(pattern_accuracy, fundamental_accuracy, correlation),
            relationship_phase=phase,
            stability=stability,
            transition_probability=min(0.9, (1 - stability) * TRANSITION_FACTORS[phase])
        )
        self.state_history.append((now, state))
        self._update_weights(pattern_accuracy, fundamental_accuracy, correlation)
        self.window_history.append(EquivalenceWindow(
            start_time=window_start,
            end_time=now,
            phase=phase,
            pattern_accuracy=pattern_accuracy,
            fundamental_accuracy=fundamental_accuracy,
            combined_accuracy=pattern_accuracy * self.pattern_weight + fundamental_accuracy * self.fundamental_weight
        ))

    def _update_weights(self, pattern_accuracy: float, fundamental_accuracy: float, correlation: float):
        total = pattern_accuracy + fundamental_accuracy
        if total == 0:
            return
        self.pattern_weight += LEARNING_RATE * (pattern_accuracy / total - self.pattern_weight)
        self.fundamental_weight += LEARNING_RATE * (fundamental_accuracy / total - self.fundamental_weight)
        weight_sum = self.pattern_weight + self.fundamental_weight
        self.pattern_weight /= weight_sum
        self.fundamental_weight /= weight_sum

        if abs(correlation) < 0.2:
            self.pattern_weight = self.fundamental_weight = 0.5

    def optimal_strategy(self) -> str:
        state = self.current_state
        if state is None:
            return 'blend'
        if state.relationship_phase == 'strong_equivalence':
            return 'trust_patterns'
        if state.relationship_phase == 'inverse':
            return 'contrarian'
        if state.causation_probability < 0.3:
            return 'trust_fundamentals'
        return 'blend'

    def blend_predictions(self, pattern_prediction: float, fundamental_prediction: float) -> float:
        pattern_term = pattern_prediction * self.pattern_weight
        if self.optimal_strategy() == 'contrarian':
            pattern_term = -pattern_term
        return pattern_term + fundamental_prediction * self.fundamental_weight

    def get_insights(self) -> List[str]:
        state = self.current_state
        if state is None:
            return []
        insights = []
        if state.relationship_phase == 'strong_equivalence':
            insights.append('Pattern-structure equivalence is strong, temporal patterns are reliable')
        elif state.relationship_phase == 'decorrelated':
            insights.append('Pattern-structure relationship is weak, fundamentals may dominate')
        elif state.relationship_phase == 'inverse':
            insights.append('Inverse relationship detected, consider contrarian signals')
        if state.transition_probability > 0.6:
            insights.append('High transition probability, relationship may shift soon')
        if state.causation_probability > 0.7:
            insights.append('Patterns appear to drive outcomes rather than merely correlate')
        if self.pattern_weight > 0.65:
            insights.append(f"Pattern signals weighted {self.pattern_weight * 100:.0f}%")
        elif self.fundamental_weight > 0.65:
            insights.append(f"Fundamental signals weighted {self.fundamental_weight * 100:.0f}%")
        return insights

    def get_state(self) -> Dict[str, object]:
        return {
            'current_state': self.current_state,
            'historical_windows': list(self.window_history)[-20:],
            'optimal_strategy': self.optimal_strategy(),
            'blend_weights': {'pattern': self.pattern_weight, 'fundamental': self.fundamental_weight},
            'confidence_modifier': self.get_confidence_modifier(),
            'insights': self.get_insights()
        }

    def update(self, ctx: TickContext):
        # Learns only from resolved outcomes
        pass

    def raw_modifier(self) -> float:
        state = self.current_state
        if state is None:
            return 1.0
        return (PHASE_FACTORS[state.relationship_phase]
                * (0.9 + state.stability * 0.2)
                * (0.9 + state.causation_probability * 0.2))

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, float]):
        envelope = feedback.envelope
        actual = feedback.signed_outcome
        self.pattern_outcomes.append((feedback.timestamp, envelope.prediction.normalized_signal, actual))
        if envelope.fundamental_signal is not None:
            self.fundamental_outcomes.append((feedback.timestamp, envelope.fundamental_signal, actual))
        self.update_equivalence(feedback.timestamp)
