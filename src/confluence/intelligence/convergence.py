"""
Convergence Tracker - Detects and scores improbable multi-domain directional alignment
"""

import math
import time
import logging
import itertools
from collections import deque
from dataclasses import dataclass, asdict
from typing import Dict, List, Mapping, Optional

from confluence.shared.types import Direction, DomainSignature

logger = logging.getLogger(__name__)

BULLISH_THRESHOLD = 0.2
BEARISH_THRESHOLD = -0.2
CHANCE_BASELINE = 1 / 3  # up, down, neutral
MIN_EVENTS_FOR_CONCLUSION = 30
SECONDS_PER_DAY = 86400


@dataclass
class ConvergenceOutcome:
    actual_direction: Direction
    resolved_at: float
    was_correct: bool


@dataclass
class ConvergenceEvent:
    id: str
    timestamp: float
    aligned_domains: List[str]
    alignment_count: int
    direction: Direction
    statistical_improbability: float
    average_confidence: float
    momentum_consensus: float
    outcome: Optional[ConvergenceOutcome] = None
    observations: int = 1
    last_seen: float = 0.0

    @property
    def resolved(self) -> bool:
        return self.outcome is not None

    @property
    def is_new(self) -> bool:
        return self.observations == 1


def chance_probability(aligned_count: int, momentum_consensus: float) -> float:
    """Probability of the alignment arising by chance, adjusted for agreement strength"""
    base = 0.5 ** max(aligned_count - 1, 0)
    return min(1.0, max(0.0, base * (2 - momentum_consensus)))


def normal_cdf(x: float) -> float:
    """Abramowitz-Stegun approximation of the standard normal CDF"""
    a1, a2, a3, a4, a5 = 0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429
    p = 0.3275911

    sign = -1 if x < 0 else 1
    x = abs(x) / math.sqrt(2)
    t = 1.0 / (1.0 + p * x)
    y = 1.0 - (((((a5 * t + a4) * t) + a3) * t + a2) * t + a1) * t * math.exp(-x * x)
    return 0.5 * (1.0 + sign * y)


class ConvergenceTracker:
    """
    Flags moments where an unusually large subset of domains agree on direction
    and tests, once outcomes arrive, whether those moments beat chance.
    """

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        self.minimum_alignment = config.get('minimum_alignment', 10)
        self.threshold = config.get('convergence_threshold', 0.90)
        self.retention_seconds = config.get('event_retention_days', 30) * SECONDS_PER_DAY

        self.max_events = config.get('convergence_history_size', 1000)

        self.events = deque(maxlen=self.max_events)
        self._sequence = itertools.count(1)

    def analyze_convergence(self, signatures: Mapping[str, DomainSignature],
                            now: Optional[float] = None) -> Optional[ConvergenceEvent]:
        """Analyze domain signatures for convergence"""
        now = now if now is not None else time.time()
        self._prune(now)

        if len(signatures) < self.minimum_alignment:
            return None

        bullish, bearish = [], []
        total_momentum = 0.0
        total_confidence = 0.0

        for domain, signature in signatures.items():
            total_momentum += signature.momentum
            total_confidence += signature.intensity * signature.harmonic_resonance
            if signature.momentum > BULLISH_THRESHOLD:
                bullish.append(domain)
            elif signature.momentum < BEARISH_THRESHOLD:
                bearish.append(domain)

        if len(bullish) == len(bearish):
            return None

        if len(bullish) > len(bearish):
            direction, aligned = Direction.UP, bullish
        else:
            direction, aligned = Direction.DOWN, bearish

        if len(aligned) < self.minimum_alignment:
            return None

        count = len(signatures)
        momentum_consensus = abs(total_momentum) / count
        improbability = 1 - chance_probability(len(aligned), momentum_consensus)

        if improbability < self.threshold:
            logger.debug(f"Alignment of {len(aligned)} domains below significance ({improbability:.3f})")
            return None

        aligned_domains = sorted(aligned)
        open_event = self._open_event(direction, aligned_domains)
        if open_event is not None:
            open_event.observations += 1
            open_event.last_seen = now
            return open_event

        event = ConvergenceEvent(
            id=f"conv_{int(now * 1000)}_{next(self._sequence)}",
            timestamp=now,
            aligned_domains=aligned_domains,
            alignment_count=len(aligned),
            direction=direction,
            statistical_improbability=improbability,
            average_confidence=total_confidence / count,
            momentum_consensus=momentum_consensus,
            last_seen=now
        )
        self.events.append(event)
        return event

    def _open_event(self, direction: Direction, aligned_domains: List[str]) -> Optional[ConvergenceEvent]:
        """Unresolved event for the same direction and aligned set, if any"""
        for event in reversed(self.events):
            if (not event.resolved and event.direction is direction
                    and event.aligned_domains == aligned_domains):
                return event
        return None

    def record_outcome(self, event_id: str, actual_direction, now: Optional[float] = None) -> bool:
        """Attach the realized direction to an open event"""
        event = self.get_event(event_id)
        if event is None or event.resolved:
            return False

        actual = Direction.coerce(actual_direction)
        event.outcome = ConvergenceOutcome(
            actual_direction=actual,
            resolved_at=now if now is not None else time.time(),
            was_correct=actual is event.direction
        )
        return True

    def get_event(self, event_id: str) -> Optional[ConvergenceEvent]:
        for event in self.events:
            if event.id == event_id:
                return event
        return None

    def _prune(self, now: float):
        cutoff = now - self.retention_seconds
        pruned = 0
        while self.events and self.events[0].timestamp <= cutoff:
            self.events.popleft()
            pruned += 1
        if pruned:
            logger.debug(f"Pruned {pruned} convergence events")

    @property
    def resolved_count(self) -> int:
        return sum(1 for e in self.events if e.resolved)

    def get_accuracy_stats(self) -> Dict[str, float]:
        resolved = [e for e in self.events if e.resolved]
        correct = [e for e in resolved if e.outcome.was_correct]
        incorrect = [e for e in resolved if not e.outcome.was_correct]

        def _avg(events):
            return sum(e.statistical_improbability for e in events) / len(events) if events else 0.0

        return {
            'total_events': len(self.events),
            'resolved_events': len(resolved),
            'correct_predictions': len(correct),
            'accuracy': len(correct) / len(resolved) if resolved else 0.0,
            'avg_improbability_correct': _avg(correct),
            'avg_improbability_incorrect': _avg(incorrect)
        }

    def get_recent_events(self, limit: int = 20) -> List[ConvergenceEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]

    def get_most_significant_events(self, limit: int = 10) -> List[ConvergenceEvent]:
        return sorted(self.events, key=lambda e: e.statistical_improbability, reverse=True)[:limit]

    def calculate_proof_strength(self) -> Dict[str, object]:
        """
        One-tailed z-test of convergence accuracy against the 1/3 chance baseline.

        Returns:
            evidence_score, sample_size, z_score, p_value and a conclusion string
        """
        stats = self.get_accuracy_stats()
        expected = CHANCE_BASELINE
        observed = stats['accuracy']
        n = stats['resolved_events']

        se = math.sqrt(expected * (1 - expected) / max(1, n))
        z = (observed - expected) / max(0.01, se)
        p_value = 1 - normal_cdf(z)
        evidence = min(1.0, max(0.0, (observed - expected) * 3))

        if n < MIN_EVENTS_FOR_CONCLUSION:
            conclusion = 'Insufficient data for statistical conclusion'
        elif p_value < 0.01:
            conclusion = 'Strong evidence: convergence significantly predicts outcomes'
        elif p_value < 0.05:
            conclusion = 'Moderate evidence: convergence appears predictive'
        elif p_value < 0.10:
            conclusion = 'Weak evidence: possible predictive value, more data needed'
        else:
            conclusion = 'No significant evidence: convergence may be coincidental'

        return {
            'evidence_score': evidence,
            'sample_size': n,
            'z_score': z,
            'p_value': p_value,
            'conclusion': conclusion
        }

    def export_events(self) -> List[Dict]:
        """Plain-dict events for an external persistence layer"""
        exported = []
        for event in self.events:
            data = asdict(event)
            data['direction'] = event.direction.value
            if event.outcome:
                data['outcome']['actual_direction'] = event.outcome.actual_direction.value
            exported.append(data)
        return exported

    def import_events(self, events: List[Dict]):
        imported = []
        for data in events:
            try:
                outcome = data.get('outcome')
                imported.append(ConvergenceEvent(
                    id=data['id'],
                    timestamp=float(data['timestamp']),
                    aligned_domains=list(data['aligned_domains']),
                    alignment_count=int(data['alignment_count']),
                    direction=Direction.coerce(data['direction']),
                    statistical_improbability=float(data['statistical_improbability']),
                    average_confidence=float(data.get('average_confidence', 0.0)),
                    momentum_consensus=float(data.get('momentum_consensus', 0.0)),
                    observations=int(data.get('observations', 1)),
                    last_seen=float(data.get('last_seen', data['timestamp'])),
                    outcome=ConvergenceOutcome(
                        actual_direction=Direction.coerce(outcome['actual_direction']),
                        resolved_at=float(outcome['resolved_at']),
                        was_correct=bool(outcome['was_correct'])
                    ) if outcome else None
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed convergence event: {e}")
        imported.sort(key=lambda e: e.timestamp)
        self.events = deque(imported, maxlen=self.max_events)
        logger.info(f"Imported {len(imported)} convergence events")
