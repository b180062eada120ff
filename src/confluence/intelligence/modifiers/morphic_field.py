"""
Morphic Field - Tracks feature patterns that recur across separate domains
"""

import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from confluence.shared.types import OutcomeFeedback, TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.75
DECAY_RATE = 0.99  # per 24h of elapsed time
INACTIVE_STRENGTH = 0.1
DROP_STRENGTH = 0.01
DROP_AGE_HOURS = 168
MIN_LOCATIONS = 3
MAX_OBSERVATION_KEYS = 1000
MAX_PATTERNS = 200


@dataclass
class MorphicPattern:
    id: str
    signature: np.ndarray
    first_observed: float
    locations: List[str] = field(default_factory=list)
    propagation_speed: float = 0.0  # locations per hour
    strength: float = 0.5
    is_active: bool = True


@dataclass
class FieldResonance:
    pattern_id: str
    current_strength: float
    propagating_to: List[str]
    expected_arrival: float  # seconds
    confidence: float


def cosine_similarity(a, b) -> float:
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    a, b = a[:n], b[:n]
    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator <= 0:
        return 0.0
    return float(np.dot(a, b) / denominator)


def quantize(signature) -> str:
    return ",".join(f"{round(float(v), 1):.1f}" for v in signature)


class MorphicFieldModifier(ConfidenceModifier):
    """
    Domain fingerprints that keep reappearing in new domains form patterns;
    a coherent set of active patterns raises confidence.
    """

    name = "morphic_field"
    regularization = 0.8

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.patterns: Dict[str, MorphicPattern] = OrderedDict()
        self.observations: Dict[str, deque] = OrderedDict()
        self.last_decay: Optional[float] = None
        self.matched_this_tick: List[str] = []
        self.coherence = 0.0
        self.resonances: List[FieldResonance] = []
        self._sequence = 0

    def record_observation(self, location: str, signature, now: float) -> Optional[MorphicPattern]:
        """Match against known patterns or accumulate toward a new one"""
        signature = np.asarray(signature, dtype=float)

        for pattern in self.patterns.values():
            if cosine_similarity(pattern.signature, signature) > SIMILARITY_THRESHOLD:
                if location not in pattern.locations:
                    pattern.locations.append(location)
                    pattern.propagation_speed = self._propagation_speed(pattern, now)
                pattern.strength = min(1.0, pattern.strength + 0.1)
                pattern.is_active = True
                return pattern

        key = quantize(signature)
        bucket = self.observations.get(key)
        if bucket is None:
            bucket = deque(maxlen=50)
            self.observations[key] = bucket
            while len(self.observations) > MAX_OBSERVATION_KEYS:
                self.observations.popitem(last=False)
        bucket.append((location, now, signature))

        locations = list(dict.fromkeys(o[0] for o in bucket))
        if len(locations) >= MIN_LOCATIONS:
            pattern = self._create_pattern(bucket, locations)
            del self.observations[key]
            return pattern
        return None

    def _create_pattern(self, bucket, locations: List[str]) -> MorphicPattern:
        self._sequence += 1
        pattern = MorphicPattern(
            id=f"morphic_{int(bucket[0][1] * 1000)}_{self._sequence}",
            signature=np.mean([o[2] for o in bucket], axis=0),
            first_observed=min(o[1] for o in bucket),
            locations=locations
        )
        self.patterns[pattern.id] = pattern
        while len(self.patterns) > MAX_PATTERNS:
            self.patterns.popitem(last=False)
        logger.debug(f"Morphic pattern {pattern.id} formed across {locations}")
        return pattern

    @staticmethod
    def _propagation_speed(pattern: MorphicPattern, now: float) -> float:
        elapsed = now - pattern.first_observed
        if elapsed <= 0:
            return 0.0
        return len(pattern.locations) * 3600 / elapsed

    def decay_patterns(self, now: float):
        """Decay strength by elapsed time since the previous decay"""
        elapsed = 0.0 if self.last_decay is None else max(0.0, now - self.last_decay)
        self.last_decay = now
        factor = DECAY_RATE ** (elapsed / 3600 / 24)

        for pattern_id in list(self.patterns):
            pattern = self.patterns[pattern_id]
            pattern.strength *= factor
            if pattern.strength < INACTIVE_STRENGTH:
                pattern.is_active = False
            age_hours = (now - pattern.first_observed) / 3600
            if pattern.strength < DROP_STRENGTH and age_hours > DROP_AGE_HOURS:
                del self.patterns[pattern_id]

    def active_patterns(self) -> List[MorphicPattern]:
        return [p for p in self.patterns.values() if p.is_active]

    def _field_coherence(self, active: List[MorphicPattern]) -> float:
        if len(active) < 2:
            return 0.0
        similarities = [
            cosine_similarity(active[i].signature, active[j].signature)
            for i in range(len(active)) for j in range(i + 1, len(active))
        ]
        return float(np.mean(similarities))

    def detect_resonances(self, target: str) -> List[FieldResonance]:
        """Patterns likely to show up next in the target domain"""
        resonances = []
        for pattern in self.active_patterns():
            if target in pattern.locations:
                continue
            if pattern.strength > 0.4 and len(pattern.locations) >= 2:
                arrival = 3600 / pattern.propagation_speed if pattern.propagation_speed > 0 else 86400
                resonances.append(FieldResonance(
                    pattern_id=pattern.id,
                    current_strength=pattern.strength * self.regularization,
                    propagating_to=[target],
                    expected_arrival=arrival,
                    confidence=min(0.8, pattern.strength * len(pattern.locations) / 10)
                ))
        return sorted(resonances, key=lambda r: r.confidence, reverse=True)[:5]

    def update(self, ctx: TickContext):
        self.decay_patterns(ctx.timestamp)
        matched = []
        for domain, signature in sorted(ctx.signatures.items()):
            pattern = self.record_observation(domain, signature.fingerprint(), ctx.timestamp)
            if pattern is not None and pattern.id not in matched:
                matched.append(pattern.id)
        self.matched_this_tick = matched

        active = self.active_patterns()
        self.coherence = self._field_coherence(active)
        self.resonances = [
            FieldResonance(
                pattern_id=p.id,
                current_strength=p.strength,
                propagating_to=[],
                expected_arrival=3600 / p.propagation_speed,
                confidence=p.strength * 0.8
            )
            for p in active if p.propagation_speed > 0.5
        ]

    def raw_modifier(self) -> float:
        coherence_boost = 1 + self.coherence * 0.15
        resonance_boost = 1 + min(0.1, len(self.resonances) * 0.02) if self.resonances else 1.0
        return coherence_boost * resonance_boost

    def snapshot(self) -> Dict[str, List[str]]:
        return {'pattern_ids': list(self.matched_this_tick)}

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, List[str]]):
        for pattern_id in snapshot.get('pattern_ids', []):
            pattern = self.patterns.get(pattern_id)
            if pattern is None:
                continue
            if feedback.was_correct:
                pattern.strength = min(1.0, pattern.strength * 1.05)
            else:
                pattern.strength *= 0.9
