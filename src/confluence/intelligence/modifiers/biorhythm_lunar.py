"""
Biorhythm Lunar - Lunar phase and market biorhythm alignment
"""

import math
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from confluence.shared.types import Direction, OutcomeFeedback, TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

LUNAR_CYCLE_DAYS = 29.53
PHYSICAL_CYCLE = 23
EMOTIONAL_CYCLE = 28
INTELLECTUAL_CYCLE = 33
SECONDS_PER_DAY = 86400

REFERENCE_NEW_MOON = datetime(2000, 1, 6, 18, 14, tzinfo=timezone.utc).timestamp()
MARKET_BIRTH = datetime(2009, 1, 3, tzinfo=timezone.utc).timestamp()

LUNAR_PHASES = (
    'new_moon', 'waxing_crescent', 'first_quarter', 'waxing_gibbous',
    'full_moon', 'waning_gibbous', 'third_quarter', 'waning_crescent'
)

# Published lunar-phase return studies, used until enough outcomes accumulate
PUBLISHED_BIASES = {
    'new_moon': ('bullish', 0.3),
    'waxing_crescent': ('bullish', 0.2),
    'first_quarter': ('neutral', 0.1),
    'waxing_gibbous': ('neutral', 0.1),
    'full_moon': ('bearish', 0.25),
    'waning_gibbous': ('bearish', 0.15),
    'third_quarter': ('neutral', 0.1),
    'waning_crescent': ('neutral', 0.15),
}

MIN_PHASE_SAMPLES = 5


@dataclass
class LunarState:
    phase: str
    age: float
    illumination: float
    days_until_full: float
    days_until_new: float
    is_eclipse: bool


@dataclass
class BiorhythmCycle:
    physical: float
    emotional: float
    intellectual: float
    combined: float


@dataclass
class LunarMarketCorrelation:
    phase: str
    historical_bias: str
    strength: float
    sample_size: int


def lunar_state(timestamp: float) -> LunarState:
    days = (timestamp - REFERENCE_NEW_MOON) / SECONDS_PER_DAY
    age = days % LUNAR_CYCLE_DAYS
    illumination = (1 - math.cos(age / LUNAR_CYCLE_DAYS * 2 * math.pi)) / 2
    phase = LUNAR_PHASES[int(age / (LUNAR_CYCLE_DAYS / 8)) % 8]

    half = LUNAR_CYCLE_DAYS / 2
    days_until_full = half - age if age < half else LUNAR_CYCLE_DAYS - age + half
    days_until_new = 1 - age if age < 1 else LUNAR_CYCLE_DAYS - age

    month_index = datetime.fromtimestamp(timestamp, tz=timezone.utc).month - 1
    near_syzygy = age < 1.5 or abs(age - half) < 1.5
    is_eclipse = near_syzygy and month_index % 6 in (0, 5)

    return LunarState(phase, age, illumination, days_until_full, days_until_new, is_eclipse)


def biorhythm_cycle(timestamp: float, birth: float = MARKET_BIRTH) -> BiorhythmCycle:
    days = (timestamp - birth) / SECONDS_PER_DAY
    physical = math.sin(2 * math.pi * days / PHYSICAL_CYCLE)
    emotional = math.sin(2 * math.pi * days / EMOTIONAL_CYCLE)
    intellectual = math.sin(2 * math.pi * days / INTELLECTUAL_CYCLE)
    return BiorhythmCycle(
        physical=physical,
        emotional=emotional,
        intellectual=intellectual,
        combined=physical * 0.25 + emotional * 0.45 + intellectual * 0.30
    )


class BiorhythmLunarModifier(ConfidenceModifier):
    name = "biorhythm_lunar"
    regularization = 0.8

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.phase_stats = {phase: {'up': 0, 'down': 0, 'total': 0} for phase in LUNAR_PHASES}
        self.outcome_history = deque(maxlen=1000)
        self.lunar: Optional[LunarState] = None
        self.biorhythm: Optional[BiorhythmCycle] = None
        self.sync_score = 0.5

    def get_phase_correlations(self) -> List[LunarMarketCorrelation]:
        correlations = []
        for phase, stats in self.phase_stats.items():
            if stats['total'] < MIN_PHASE_SAMPLES:
                bias, strength = PUBLISHED_BIASES[phase]
                correlations.append(LunarMarketCorrelation(phase, bias, strength * self.regularization, 0))
                continue
            up_ratio = stats['up'] / stats['total']
            bias = 'bullish' if up_ratio > 0.55 else 'bearish' if up_ratio < 0.45 else 'neutral'
            correlations.append(LunarMarketCorrelation(phase, bias, abs(up_ratio - 0.5) * 2, stats['total']))
        return correlations

    def get_prediction(self) -> Dict[str, object]:
        """Directional lean, capped at 0.6 confidence"""
        if self.lunar is None:
            return {'direction': Direction.NEUTRAL, 'confidence': 0.3, 'reasoning': 'No lunar state yet'}

        correlation = next(c for c in self.get_phase_correlations() if c.phase == self.lunar.phase)
        lunar_score = {'bullish': correlation.strength, 'bearish': -correlation.strength}.get(
            correlation.historical_bias, 0.0)
        bio_score = self.biorhythm.combined * 0.3
        total = (lunar_score + bio_score) * (0.5 if self.lunar.is_eclipse else 1.0)

        reasoning = f"{self.lunar.phase.replace('_', ' ')} phase"
        if self.biorhythm.combined > 0.3:
            reasoning += ", positive biorhythm"
        elif self.biorhythm.combined < -0.3:
            reasoning += ", negative biorhythm"
        if self.lunar.is_eclipse:
            reasoning += " (eclipse caution)"

        if abs(total) < 0.1:
            return {'direction': Direction.NEUTRAL, 'confidence': 0.3 * self.regularization, 'reasoning': reasoning}
        return {
            'direction': Direction.UP if total > 0 else Direction.DOWN,
            'confidence': min(0.6, abs(total) * 0.8) * self.regularization,
            'reasoning': reasoning
        }

    def get_accuracy_by_phase(self) -> Dict[str, float]:
        result = {}
        for phase, stats in self.phase_stats.items():
            if stats['total'] < MIN_PHASE_SAMPLES:
                result[phase] = 0.5
                continue
            up_ratio = stats['up'] / stats['total']
            bias = PUBLISHED_BIASES[phase][0]
            if bias == 'bullish':
                result[phase] = up_ratio
            elif bias == 'bearish':
                result[phase] = 1 - up_ratio
            else:
                result[phase] = 1 - abs(up_ratio - 0.5) * 2
        return result

    def update(self, ctx: TickContext):
        self.lunar = lunar_state(ctx.timestamp)
        self.biorhythm = biorhythm_cycle(ctx.timestamp)
        lunar_normalized = self.lunar.illumination * 2 - 1
        self.sync_score = 1 - abs(lunar_normalized - self.biorhythm.combined) / 2

    def raw_modifier(self) -> float:
        if self.lunar is None:
            return 1.0
        return (0.9 + self.sync_score * 0.2) * (0.7 if self.lunar.is_eclipse else 1.0)

    def snapshot(self) -> Dict[str, str]:
        return {'phase': self.lunar.phase} if self.lunar is not None else {}

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, str]):
        phase = snapshot.get('phase')
        if phase not in self.phase_stats or feedback.actual_direction is Direction.NEUTRAL:
            return
        stats = self.phase_stats[phase]
        stats['total'] += 1
        if feedback.actual_direction is Direction.UP:
            stats['up'] += 1
        else:
            stats['down'] += 1
        self.outcome_history.append((phase, feedback.actual_direction.value))
