"""
Emotional Contagion - Epidemiological model of fear/greed spreading through the market
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from confluence.shared.types import Direction, DirectionHint, OutcomeFeedback, TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

EMOTIONS = ('fear', 'greed', 'euphoria', 'panic', 'neutral', 'despair', 'hope')
BULLISH_EMOTIONS = ('greed', 'euphoria', 'hope')
BEARISH_EMOTIONS = ('fear', 'panic', 'despair')
MIN_OBSERVATIONS = 10
CHANGE_LOOKBACK = 10

# What typically follows what
TRANSITION_MATRIX = {
    'fear': {'panic': 0.3, 'despair': 0.25, 'neutral': 0.3, 'hope': 0.15},
    'greed': {'euphoria': 0.35, 'fear': 0.25, 'neutral': 0.3, 'despair': 0.1},
    'euphoria': {'greed': 0.2, 'fear': 0.35, 'panic': 0.25, 'neutral': 0.2},
    'panic': {'despair': 0.3, 'fear': 0.25, 'hope': 0.2, 'neutral': 0.25},
    'neutral': {'greed': 0.25, 'fear': 0.25, 'hope': 0.25, 'despair': 0.25},
    'despair': {'hope': 0.35, 'neutral': 0.3, 'panic': 0.2, 'fear': 0.15},
    'hope': {'greed': 0.35, 'neutral': 0.3, 'fear': 0.2, 'euphoria': 0.15},
}

HERD_IMMUNITY = {'post_peak': 0.7, 'at_peak': 0.3}


@dataclass
class ContagionEvent:
    emotion: str
    started_at: float
    peaked_at: Optional[float]
    current_intensity: float
    max_intensity: float
    spread_rate: float = 0.0
    is_active: bool = True


@dataclass
class ContagionState:
    dominant_emotion: str
    emotion_mix: Dict[str, float]
    contagion_r0: float
    is_viral: bool
    peak_phase: str  # pre_peak, at_peak, post_peak, dormant
    herd_immunity: float
    predicted_flip: Optional[str]
    flip_confidence: float


def classify_emotion(price_change: float, volatility: float, sentiment: float) -> str:
    if volatility > 0.3 and price_change < -0.05:
        return 'panic' if price_change < -0.1 else 'fear'
    if volatility > 0.3 and price_change > 0.05:
        return 'euphoria' if price_change > 0.1 else 'greed'
    if volatility < 0.1 and sentiment < -0.5:
        return 'despair'
    if volatility < 0.15 and sentiment > 0.3:
        return 'hope'
    if sentiment > 0.5:
        return 'greed'
    if sentiment < -0.5:
        return 'fear'
    return 'neutral'


def emotion_intensity(price_change: float, volatility: float, sentiment: float) -> float:
    price_component = min(1.0, abs(price_change) * 5)
    volatility_component = min(1.0, volatility * 3)
    sentiment_component = min(1.0, abs(sentiment))
    return min(1.0, price_component * 0.4 + volatility_component * 0.3 + sentiment_component * 0.3)


class EmotionalContagionModifier(ConfidenceModifier):
    """
    Classifies each tick's emotional state, tracks how contagious each emotion is,
    and turns the bullish/bearish emotion balance into a directional call.
    """

    name = "emotional_contagion"
    regularization = 0.85
    override_eligible = True

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.emotion_history = deque(maxlen=1000)
        self.outcome_history = deque(maxlen=1000)
        self.active_contagions: Dict[str, ContagionEvent] = {}
        self.state: Optional[ContagionState] = None
        self.prediction = (Direction.NEUTRAL, 0.3)

    def _history_states(self, start: int, end: Optional[int] = None) -> List[str]:
        entries = list(self.emotion_history)
        return [e[1] for e in entries[start:end]] if entries else []

    def calculate_r0(self, emotion: str) -> float:
        """Recent prevalence relative to the preceding window"""
        recent = self._history_states(-50)
        if len(recent) < MIN_OBSERVATIONS:
            return 1.0
        prevalence = recent.count(emotion) / len(recent)
        previous = self._history_states(-100, -50) if len(self.emotion_history) > 50 else []
        previous_prevalence = previous.count(emotion) / 50
        if previous_prevalence == 0:
            return 2.0 if prevalence > 0.1 else 1.0
        return min(4.0, max(0.1, prevalence / previous_prevalence))

    def infected_percent(self, emotion: str) -> float:
        recent = list(self.emotion_history)[-100:]
        if not recent:
            return 0.0
        intensities = [e[2] for e in recent if e[1] == emotion]
        if not intensities:
            return 0.0
        return len(intensities) / len(recent) * float(np.mean(intensities))

    def spread_rate(self, emotion: str) -> float:
        if len(self.emotion_history) <= 50:
            return 0.0
        first = self._history_states(-100, -50)
        second = self._history_states(-50)
        if not first or not second:
            return 0.0
        return second.count(emotion) / len(second) - first.count(emotion) / len(first)

    def _update_contagion(self, emotion: str, intensity: float, now: float):
        existing = self.active_contagions.get(emotion)
        if existing is not None and existing.is_active:
            existing.current_intensity = intensity
            if intensity > existing.max_intensity:
                existing.max_intensity = intensity
            elif intensity < existing.max_intensity * 0.7 and existing.peaked_at is None:
                existing.peaked_at = now
            existing.spread_rate = self.spread_rate(emotion)
        elif intensity > 0.3:
            self.active_contagions[emotion] = ContagionEvent(
                emotion=emotion,
                started_at=now,
                peaked_at=None,
                current_intensity=intensity,
                max_intensity=intensity
            )

        for other, contagion in self.active_contagions.items():
            if other != emotion and contagion.current_intensity < 0.1:
                contagion.is_active = False

    def observe(self, price_change: float, volatility: float, sentiment: float, now: float) -> str:
        emotion = classify_emotion(price_change, volatility, sentiment)
        intensity = emotion_intensity(price_change, volatility, sentiment)
        self.emotion_history.append((now, emotion, intensity))
        self._update_contagion(emotion, intensity, now)
        return emotion

    def get_contagion_state(self) -> ContagionState:
        mix = {emotion: 0.0 for emotion in EMOTIONS}
        for _, emotion, intensity in list(self.emotion_history)[-100:]:
            mix[emotion] += intensity
        total = sum(mix.values())
        if total > 0:
            mix = {k: v / total for k, v in mix.items()}

        dominant = max(EMOTIONS, key=lambda e: mix[e])
        contagion = self.active_contagions.get(dominant)
        r0 = self.calculate_r0(dominant)

        peak_phase = 'dormant'
        if contagion is not None and contagion.is_active:
            if contagion.peaked_at is None:
                peak_phase = 'pre_peak' if r0 > 1.5 else 'at_peak'
            else:
                peak_phase = 'post_peak'

        flip, flip_probability = max(TRANSITION_MATRIX[dominant].items(), key=lambda kv: kv[1])
        return ContagionState(
            dominant_emotion=dominant,
            emotion_mix=mix,
            contagion_r0=r0,
            is_viral=r0 > 1.5,
            peak_phase=peak_phase,
            herd_immunity=HERD_IMMUNITY.get(peak_phase, 0.1),
            predicted_flip=flip if peak_phase != 'pre_peak' else None,
            flip_confidence=flip_probability * self.regularization * (1.2 if peak_phase == 'post_peak' else 0.8)
        )

    def get_prediction(self, state: ContagionState):
        bullish = sum(state.emotion_mix[e] for e in BULLISH_EMOTIONS)
        bearish = sum(state.emotion_mix[e] for e in BEARISH_EMOTIONS)

        # Post-peak exhaustion favours the other side
        if state.peak_phase == 'post_peak':
            if state.dominant_emotion in BULLISH_EMOTIONS:
                bearish *= 1.3
            elif state.dominant_emotion in BEARISH_EMOTIONS:
                bullish *= 1.3

        diff = abs(bullish - bearish)
        if diff < 0.1:
            return Direction.NEUTRAL, 0.3
        direction = Direction.UP if bullish > bearish else Direction.DOWN
        return direction, min(0.85, diff * self.regularization)

    def update(self, ctx: TickContext):
        prices = np.asarray(ctx.prices[-CHANGE_LOOKBACK:], dtype=float)
        price_change = 0.0
        if len(prices) >= 2 and prices[0] != 0:
            price_change = float((prices[-1] - prices[0]) / prices[0])

        volatility = ctx.features.volatility if ctx.features is not None else 0.0
        self.observe(price_change, abs(volatility), ctx.sentiment, ctx.timestamp)

        if len(self.emotion_history) < MIN_OBSERVATIONS:
            self.state = None
            self.prediction = (Direction.NEUTRAL, 0.3)
            return
        self.state = self.get_contagion_state()
        self.prediction = self.get_prediction(self.state)

    def raw_modifier(self) -> float:
        if self.state is None:
            return 1.0
        direction, confidence = self.prediction
        if direction is Direction.NEUTRAL:
            return 1.0
        raw = 0.95 + confidence * 0.15
        if self.state.peak_phase == 'post_peak':
            raw *= 0.97
        return raw

    def direction_hint(self) -> Optional[DirectionHint]:
        if self.state is None:
            return None
        direction, confidence = self.prediction
        return DirectionHint(direction, confidence, f"{self.state.dominant_emotion} {self.state.peak_phase}")

    def snapshot(self) -> Dict[str, str]:
        if self.state is None:
            return {}
        return {'emotion': self.state.dominant_emotion, 'predicted_direction': self.prediction[0].value}

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, str]):
        emotion = snapshot.get('emotion')
        if emotion not in EMOTIONS:
            return
        self.outcome_history.append({
            'emotion': emotion,
            'predicted_direction': snapshot.get('predicted_direction'),
            'was_correct': snapshot.get('predicted_direction') == feedback.actual_direction.value
        })

    def get_accuracy_by_emotion(self) -> Dict[str, float]:
        result = {}
        for emotion in EMOTIONS:
            outcomes = [o for o in self.outcome_history if o['emotion'] == emotion]
            correct = sum(1 for o in outcomes if o['was_correct'])
            result[emotion] = correct / len(outcomes) if len(outcomes) > 5 else 0.5
        return result
