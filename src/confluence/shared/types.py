"""
Shared Types - Signals, signatures and predictions exchanged across the fusion engine
"""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


def _finite(value, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return value


def _unit(value, default: float) -> float:
    return min(1.0, max(0.0, _finite(value, default)))


class Direction(Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"

    @classmethod
    def coerce(cls, value) -> "Direction":
        """Accept a Direction, its string value or a bullish/bearish label"""
        if isinstance(value, cls):
            return value
        label = str(value).lower()
        if label in ('up', 'bullish'):
            return cls.UP
        if label in ('down', 'bearish'):
            return cls.DOWN
        return cls.NEUTRAL

    @property
    def sign(self) -> int:
        if self is Direction.UP:
            return 1
        if self is Direction.DOWN:
            return -1
        return 0

    def opposite(self) -> "Direction":
        if self is Direction.UP:
            return Direction.DOWN
        if self is Direction.DOWN:
            return Direction.UP
        return Direction.NEUTRAL


@dataclass
class DomainSignal:
    domain: str
    timestamp: float
    intensity: float
    frequency: float
    phase: float
    harmonics: List[float] = field(default_factory=list)
    raw_data: List[float] = field(default_factory=list)


@dataclass
class QuadrantProfile:
    aggressive: float = 0.25
    defensive: float = 0.25
    tactical: float = 0.25
    strategic: float = 0.25

    def __post_init__(self):
        values = [max(0.0, _finite(v, 0.0)) for v in
                  (self.aggressive, self.defensive, self.tactical, self.strategic)]
        total = sum(values)
        if total <= 0:
            values = [0.25, 0.25, 0.25, 0.25]
            total = 1.0
        self.aggressive, self.defensive, self.tactical, self.strategic = [v / total for v in values]

    def as_vector(self) -> Tuple[float, float, float, float]:
        return (self.aggressive, self.defensive, self.tactical, self.strategic)


@dataclass
class TemporalFlow:
    early: float = 0.33
    mid: float = 0.34
    late: float = 0.33

    def __post_init__(self):
        values = [max(0.0, _finite(v, 0.0)) for v in (self.early, self.mid, self.late)]
        total = sum(values)
        if total <= 0:
            values = [0.33, 0.34, 0.33]
            total = 1.0
        self.early, self.mid, self.late = [v / total for v in values]

    def as_vector(self) -> Tuple[float, float, float]:
        return (self.early, self.mid, self.late)

    @property
    def skew(self) -> float:
        return self.late - self.early


@dataclass
class DomainSignature:
    """
    Normalized statistical summary of one domain's recent signals.

    Construction never raises on malformed numbers: non-finite scalars fall back
    to neutral defaults and bounded fields are clamped to [0, 1]. A phase alignment
    of None means the domain carries no phase data.
    """
    domain: str
    quadrant_profile: QuadrantProfile = field(default_factory=QuadrantProfile)
    temporal_flow: TemporalFlow = field(default_factory=TemporalFlow)
    intensity: float = 0.5
    momentum: float = 0.0
    volatility: float = 0.0
    dominant_frequency: float = 0.0
    harmonic_resonance: float = 0.5
    phase_alignment: Optional[float] = None
    extracted_at: float = 0.0

    def __post_init__(self):
        if isinstance(self.quadrant_profile, Mapping):
            self.quadrant_profile = QuadrantProfile(**self.quadrant_profile)
        elif not isinstance(self.quadrant_profile, QuadrantProfile):
            self.quadrant_profile = QuadrantProfile()
        if isinstance(self.temporal_flow, Mapping):
            self.temporal_flow = TemporalFlow(**self.temporal_flow)
        elif not isinstance(self.temporal_flow, TemporalFlow):
            self.temporal_flow = TemporalFlow()

        self.intensity = _finite(self.intensity, 0.5)
        self.momentum = _finite(self.momentum, 0.0)
        self.volatility = abs(_finite(self.volatility, 0.0))
        self.dominant_frequency = _finite(self.dominant_frequency, 0.0)
        self.harmonic_resonance = _unit(self.harmonic_resonance, 0.5)
        if self.phase_alignment is not None:
            phase = _finite(self.phase_alignment, math.nan)
            self.phase_alignment = None if math.isnan(phase) else min(1.0, max(0.0, phase))
        self.extracted_at = _finite(self.extracted_at, 0.0) or time.time()

    @classmethod
    def default(cls, domain: str, timestamp: Optional[float] = None) -> "DomainSignature":
        return cls(domain=domain, extracted_at=timestamp or time.time())

    @property
    def effective_phase_alignment(self) -> float:
        """Measured phase alignment, or harmonic resonance when phase is unknown"""
        return self.harmonic_resonance if self.phase_alignment is None else self.phase_alignment

    @property
    def vote_value(self) -> float:
        """Directional lean combining momentum and quadrant aggression"""
        return (self.momentum + (self.quadrant_profile.aggressive - self.quadrant_profile.defensive)) / 2

    def fingerprint(self) -> List[float]:
        """Flat feature vector used for pattern matching across domains"""
        return list(self.quadrant_profile.as_vector()) + list(self.temporal_flow.as_vector()) + [
            min(1.0, max(0.0, self.intensity)), self.harmonic_resonance
        ]


@dataclass
class MarketFeatures:
    symbol: str
    timestamp: float
    momentum: float = 0.0
    volatility: float = 0.0
    sentiment: float = 0.0
    price: Optional[float] = None
    volume: Optional[float] = None
    extras: Dict[str, float] = field(default_factory=dict)

    def get(self, name: str, default: float = 0.0) -> float:
        """Look up a feature by name, falling back to extras"""
        value = getattr(self, name, None) if name != 'extras' else None
        if value is None:
            value = self.extras.get(name, default)
        return _finite(value, default)


@dataclass(frozen=True)
class TickContext:
    """Immutable per-tick input shared by every confidence modifier"""
    timestamp: float
    signatures: Mapping[str, DomainSignature]
    features: Optional[MarketFeatures] = None
    prices: Tuple[float, ...] = ()
    volumes: Tuple[float, ...] = ()
    sentiment: float = 0.0

    @classmethod
    def build(cls, timestamp: float, signatures: Mapping[str, DomainSignature],
              features: Optional[MarketFeatures] = None, prices=(), volumes=()) -> "TickContext":
        sentiment = features.sentiment if features is not None else 0.0
        return cls(
            timestamp=timestamp,
            signatures=MappingProxyType(dict(signatures)),
            features=features,
            prices=tuple(prices),
            volumes=tuple(volumes),
            sentiment=_finite(sentiment, 0.0),
        )


@dataclass(frozen=True)
class DirectionHint:
    direction: Direction
    confidence: float
    reason: str = ""


@dataclass(frozen=True)
class UnifiedPrediction:
    direction: Direction
    confidence: float
    magnitude: float
    time_horizon: float
    contributing_domains: Tuple[str, ...]
    consensus_strength: float
    harmonic_alignment: float
    prediction_id: str = ""
    symbol: str = ""
    timestamp: float = 0.0
    normalized_signal: float = 0.0
    truth_score: float = 0.0
    noise_level: float = 0.0
    override_source: Optional[str] = None


@dataclass(frozen=True)
class PredictionEnvelope:
    """A prediction together with everything needed to learn from its outcome"""
    prediction: UnifiedPrediction
    calibration_id: Optional[str] = None
    probability_cloud: Optional[Any] = None
    modifier_snapshots: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    modifier_factors: Mapping[str, float] = field(default_factory=dict)
    convergence_event_id: Optional[str] = None
    phase_lock_id: Optional[str] = None
    fundamental_signal: Optional[float] = None
    domain_votes: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class OutcomeFeedback:
    """Resolved ground truth handed to modifiers alongside their own snapshot"""
    envelope: PredictionEnvelope
    actual_direction: Direction
    actual_magnitude: float
    timestamp: float

    @property
    def signed_outcome(self) -> float:
        return abs(self.actual_magnitude) * self.actual_direction.sign

    @property
    def was_correct(self) -> bool:
        return self.envelope.prediction.direction is self.actual_direction
