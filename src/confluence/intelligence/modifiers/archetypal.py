"""
Archetypal Resonance - Narrative arc templates matched against recent price action
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from confluence.shared.types import Direction, OutcomeFeedback, TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

MIN_PRICES = 20
PRICE_WINDOW = 100
MIN_OUTCOMES = 5

PHASE_NAMES = {
    'hero_journey': ['Call', 'Threshold', 'Tests', 'Abyss', 'Transformation', 'Return'],
    'fall_redemption': ['Peak', 'Decline', 'Bottom', 'Recognition', 'Recovery', 'Restoration'],
    'eternal_return': ['Spring', 'Summer', 'Autumn', 'Winter', 'Spring'],
    'death_rebirth': ['Life', 'Death', 'Void', 'Rebirth', 'New Life'],
    'shadow_integration': ['Denial', 'Confrontation', 'Struggle', 'Acceptance', 'Integration'],
    'threshold_guardian': ['Approach', 'Challenge', 'Battle', 'Victory', 'Crossing'],
    'sacred_marriage': ['Separation', 'Longing', 'Meeting', 'Union', 'Wholeness'],
    'apocalypse_renewal': ['Signs', 'Chaos', 'Destruction', 'Silence', 'New Dawn'],
}

ARCHETYPES = tuple(PHASE_NAMES)


@dataclass
class ArchetypeMatch:
    archetype: str
    phase: float
    strength: float
    expected_next_phase: str
    price_implication: str  # bullish, bearish, volatile, consolidating


def relative_change(data: np.ndarray) -> float:
    if len(data) < 2 or data[0] == 0:
        return 0.0
    return float((data[-1] - data[0]) / data[0])


def return_volatility(data: np.ndarray) -> float:
    if len(data) < 2:
        return 0.0
    previous = data[:-1]
    mask = previous != 0
    if not np.any(mask):
        return 0.0
    returns = np.diff(data)[mask] / previous[mask]
    return float(np.std(returns))


def detect_trend(data: np.ndarray) -> str:
    if len(data) < 10:
        return 'flat'
    half = len(data) // 2
    first, second = data[:half], data[half:]
    first_avg, second_avg = np.mean(first), np.mean(second)
    if second_avg > first_avg * 1.05:
        return 'recovering' if np.min(first) < first_avg * 0.9 else 'rising'
    if second_avg < first_avg * 0.95:
        return 'declining'
    return 'flat'


def detect_fall_redemption(data: np.ndarray) -> bool:
    if len(data) < 15:
        return False
    third = len(data) // 3
    peak = np.max(data[:third])
    trough = np.min(data[third:third * 2])
    return bool(peak > trough * 1.2 and data[-1] > trough * 1.1)


def cyclic_strength(data: np.ndarray) -> float:
    """Peak absolute autocorrelation over lags >= 5 of the detrended series"""
    if len(data) < 20:
        return 0.0
    x = np.arange(len(data))
    detrended = data - np.polyval(np.polyfit(x, data, 1), x)
    variance = float(np.mean(detrended ** 2))
    if variance <= 1e-12:
        return 0.0
    best = 0.0
    for lag in range(5, (len(data) + 1) // 2):
        value = float(np.mean(detrended[:-lag] * detrended[lag:])) / variance
        best = max(best, abs(value))
    return min(1.0, best)


def detect_resistance(data: np.ndarray) -> bool:
    if len(data) < 10:
        return False
    recent = data[-10:]
    peak = np.max(recent)
    touches = int(np.sum(recent > peak * 0.98))
    return touches >= 3 and recent[-1] < peak * 0.99


def hero_phase(change: float) -> float:
    if change < 0:
        return 0.2
    if change < 0.1:
        return 0.4
    if change < 0.2:
        return 0.6
    if change < 0.3:
        return 0.8
    return 0.9


def redemption_phase(data: np.ndarray) -> float:
    third = len(data) // 3
    trough = np.min(data[third:third * 2])
    peak = np.max(data[:third])
    if peak == trough:
        return 0.3
    recovery = (data[-1] - trough) / (peak - trough)
    return float(max(0.3, min(0.9, 0.3 + recovery * 0.6)))


def cycle_phase(data: np.ndarray) -> float:
    low, high = np.min(data), np.max(data)
    if high == low:
        return 0.5
    return float((data[-1] - low) / (high - low))


def next_phase(archetype: str, phase: float) -> str:
    names = PHASE_NAMES[archetype]
    index = int(np.floor(phase * (len(names) - 1)))
    return names[min(index + 1, len(names) - 1)]


def price_implication(archetype: str, phase: float) -> str:
    if archetype == 'hero_journey':
        return 'bullish' if phase > 0.5 else 'consolidating'
    if archetype == 'fall_redemption':
        return 'bullish' if phase > 0.5 else 'bearish'
    if archetype == 'eternal_return':
        if 0.25 < phase < 0.75:
            return 'bullish' if phase < 0.5 else 'bearish'
        return 'consolidating'
    if archetype == 'death_rebirth':
        return 'volatile' if phase > 0.5 else 'bearish'
    if archetype == 'threshold_guardian':
        return 'bullish' if phase > 0.6 else 'consolidating'
    if archetype == 'apocalypse_renewal':
        return 'bullish' if phase > 0.7 else 'volatile'
    return 'consolidating'


def implication_correct(implication: str, actual: Direction) -> bool:
    if implication == 'bullish':
        return actual is Direction.UP
    if implication == 'bearish':
        return actual is Direction.DOWN
    if implication == 'volatile':
        return actual is not Direction.NEUTRAL
    return actual is Direction.NEUTRAL


class ArchetypalResonanceModifier(ConfidenceModifier):
    """Boosts confidence when price action clearly follows a historically reliable arc"""

    name = "archetypal_resonance"
    regularization = 0.85

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.accuracy: Dict[str, Dict[str, int]] = defaultdict(lambda: {'correct': 0, 'total': 0})
        self.current_match: Optional[ArchetypeMatch] = None

    def get_archetype_accuracy(self, archetype: str) -> float:
        stats = self.accuracy.get(archetype)
        if not stats or stats['total'] < MIN_OUTCOMES:
            return 0.5
        return stats['correct'] / stats['total']

    def detect_archetype(self, prices, volumes=(), sentiment: float = 0.0) -> Optional[ArchetypeMatch]:
        """Best archetype by score weighted with its track record"""
        data = np.asarray(prices[-PRICE_WINDOW:], dtype=float)
        if len(data) < MIN_PRICES:
            return None

        volume_data = np.asarray(volumes[-PRICE_WINDOW:], dtype=float)
        change = relative_change(data)
        volume_change = relative_change(volume_data)
        volatility = return_volatility(data)
        trend = detect_trend(data)

        candidates: List[tuple] = []

        if trend == 'recovering' and sentiment > 0.3:
            candidates.append(('hero_journey', 0.3 + sentiment * 0.4 + min(change, 0.3), hero_phase(change)))

        if detect_fall_redemption(data):
            candidates.append(('fall_redemption', 0.6 + abs(change) * 0.2, redemption_phase(data)))

        cyclic = cyclic_strength(data)
        if cyclic > 0.5:
            candidates.append(('eternal_return', cyclic, cycle_phase(data)))

        if volatility > 0.3 and abs(change) > 0.15:
            candidates.append(('death_rebirth', volatility * 0.5 + abs(change) * 0.5, 0.7 if change > 0 else 0.3))

        if sentiment < -0.2 and volatility < 0.1 and abs(change) < 0.05:
            candidates.append(('shadow_integration', 0.5 + abs(sentiment) * 0.3, 0.6))

        if detect_resistance(data):
            candidates.append(('threshold_guardian', 0.55, 0.5))

        if volatility < 0.05 and abs(change) < 0.02 and volume_change < 0.1:
            candidates.append(('sacred_marriage', 0.5 + (1 - volatility) * 0.3, 0.5))

        if abs(change) > 0.25:
            candidates.append(('apocalypse_renewal', min(0.9, abs(change)), 0.8 if change > 0 else 0.2))

        if not candidates:
            return None

        archetype, score, phase = max(
            candidates, key=lambda c: c[1] * self.get_archetype_accuracy(c[0])
        )
        return ArchetypeMatch(
            archetype=archetype,
            phase=phase,
            strength=float(min(1.0, max(0.0, score))),
            expected_next_phase=next_phase(archetype, phase),
            price_implication=price_implication(archetype, phase)
        )

    def update(self, ctx: TickContext):
        self.current_match = self.detect_archetype(ctx.prices, ctx.volumes, ctx.sentiment)

    def raw_modifier(self) -> float:
        if self.current_match is None:
            return 1.0
        accuracy = self.get_archetype_accuracy(self.current_match.archetype)
        return 0.9 + self.current_match.strength * accuracy * 0.2

    def snapshot(self) -> Dict[str, object]:
        if self.current_match is None:
            return {}
        return {
            'archetype': self.current_match.archetype,
            'price_implication': self.current_match.price_implication
        }

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, object]):
        archetype = snapshot.get('archetype')
        if archetype not in PHASE_NAMES:
            return
        stats = self.accuracy[archetype]
        stats['total'] += 1
        if implication_correct(snapshot.get('price_implication', ''), feedback.actual_direction):
            stats['correct'] += 1
