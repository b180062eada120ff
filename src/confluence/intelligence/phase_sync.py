"""
Phase Synchronization - Phase-lock detection across natural and market cycles
"""

import time
import logging
import itertools
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import numpy as np

from confluence.shared.types import Direction

logger = logging.getLogger(__name__)

EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc).timestamp()
SIGNIFICANCE_THRESHOLD = 0.5
MIN_LOCKED_CYCLES = 3
SECONDS_PER_DAY = 86400
HOUR = 3600


@dataclass
class CycleDefinition:
    name: str
    period: float  # seconds
    amplitude: float
    description: str = ""


KNOWN_CYCLES = {
    'lunar': CycleDefinition('lunar', 29.5 * SECONDS_PER_DAY, 0.7, "Lunar cycle"),
    'solar_rotation': CycleDefinition('solar_rotation', 27 * SECONDS_PER_DAY, 0.5, "Solar rotation"),
    'mercury_synodic': CycleDefinition('mercury_synodic', 116 * SECONDS_PER_DAY, 0.4, "Mercury synodic period"),
    'circadian': CycleDefinition('circadian', 24 * HOUR, 0.9, "Circadian rhythm"),
    'ultradian': CycleDefinition('ultradian', 90 * 60, 0.6, "Ultradian 90 minute rhythm"),
    'weekly': CycleDefinition('weekly', 7 * SECONDS_PER_DAY, 0.5, "Weekly rhythm"),
    'options_expiry': CycleDefinition('options_expiry', 30 * SECONDS_PER_DAY, 0.8, "Monthly options expiry"),
    'quarterly': CycleDefinition('quarterly', 91 * SECONDS_PER_DAY, 0.7, "Quarterly reporting cycle"),
    'tidal': CycleDefinition('tidal', 12.42 * HOUR, 0.4, "Semi-diurnal tide"),
}


@dataclass
class PhaseLockResolution:
    was_correct: bool
    actual_duration: float
    resolved_at: float


@dataclass
class PhaseLockEvent:
    id: str
    timestamp: float
    synchronized_cycles: List[str]
    lock_strength: float
    common_phase: float
    predicted_duration: float
    market_implication: str
    resolved: Optional[PhaseLockResolution] = None

    def is_active(self, now: float) -> bool:
        return now < self.timestamp + self.predicted_duration


@dataclass
class PhaseSynchronizationState:
    timestamp: float
    coherence: float
    dominant_phase: float
    cycle_count: int
    phases: Dict[str, float] = field(default_factory=dict)
    synchronized_pairs: List[Tuple[str, str, float]] = field(default_factory=list)
    lock_event: Optional[PhaseLockEvent] = None
    new_lock: bool = False

    @property
    def is_significant(self) -> bool:
        return self.coherence > SIGNIFICANCE_THRESHOLD


def calculate_phase(timestamp: float, period: float, epoch: float = EPOCH) -> float:
    """Position within a cycle, 0-1"""
    if period <= 0:
        return 0.0
    return ((timestamp - epoch) % period) / period


def phase_difference(phase_a: float, phase_b: float) -> float:
    """Circular distance between two phases, 0-0.5"""
    diff = abs(phase_a - phase_b) % 1.0
    return min(diff, 1 - diff)


def kuramoto_order(phases) -> Tuple[float, float]:
    """Order parameter magnitude and mean phase of a set of phases"""
    phases = np.asarray(list(phases), dtype=float)
    if phases.size == 0:
        return 0.0, 0.0
    mean_vector = np.mean(np.exp(2j * np.pi * phases))
    coherence = float(np.abs(mean_vector))
    dominant = float((np.angle(mean_vector) / (2 * np.pi)) % 1.0)
    return coherence, dominant


def classify_implication(dominant_phase: float, coherence: float) -> str:
    if dominant_phase < 0.25 or dominant_phase > 0.75:
        return 'reversal_imminent'
    if 0.4 < dominant_phase < 0.6:
        return 'strong_trend'
    if coherence > 0.7:
        return 'volatility_expansion'
    return 'consolidation'


class PhaseSynchronizationDetector:
    """
    Detects when independent periodic processes drift into a common phase.

    Coherence is the Kuramoto order parameter over every registered cycle;
    a lock additionally needs a group of at least three mutually synchronized cycles.
    """

    def __init__(self, config: Optional[Dict] = None, epoch: float = EPOCH):
        config = config or {}
        self.tolerance = config.get('phase_sync_tolerance', 0.1)
        self.retention_seconds = config.get('event_retention_days', 30) * SECONDS_PER_DAY
        self.epoch = epoch

        self.cycles: Dict[str, CycleDefinition] = {
            key: CycleDefinition(**asdict(cycle)) for key, cycle in KNOWN_CYCLES.items()
        }
        self.events: deque = deque(maxlen=config.get('phase_event_history', 500))
        self._sequence = itertools.count(1)

    def register_cycle(self, key: str, period: float, amplitude: float = 0.5, description: str = ""):
        if period <= 0:
            raise ValueError(f"Cycle period must be positive, got {period}")
        self.cycles[key] = CycleDefinition(key, float(period), float(amplitude), description)

    def unregister_cycle(self, key: str) -> bool:
        return self.cycles.pop(key, None) is not None

    def current_phases(self, now: Optional[float] = None) -> Dict[str, float]:
        now = now if now is not None else time.time()
        return {key: calculate_phase(now, c.period, self.epoch) for key, c in self.cycles.items()}

    def are_synchronized(self, phase_a: float, phase_b: float) -> bool:
        return phase_difference(phase_a, phase_b) <= self.tolerance + 1e-12

    def _synchronized_pairs(self, phases: Dict[str, float]) -> List[Tuple[str, str, float]]:
        pairs = []
        for a, b in itertools.combinations(sorted(phases), 2):
            if self.are_synchronized(phases[a], phases[b]):
                pairs.append((a, b, 1 - phase_difference(phases[a], phases[b]) * 2))
        return pairs

    def _largest_synchronized_group(self, phases: Dict[str, float]) -> List[str]:
        """Greedy clique grown from each seed; every member is synced with every other"""
        names = sorted(phases)
        best: List[str] = []
        for seed in names:
            group = [seed]
            for other in names:
                if other == seed:
                    continue
                if all(self.are_synchronized(phases[other], phases[member]) for member in group):
                    group.append(other)
            if len(group) > len(best):
                best = group
        return sorted(best)

    def analyze(self, now: Optional[float] = None) -> PhaseSynchronizationState:
        """Coherence snapshot without recording anything"""
        now = now if now is not None else time.time()
        phases = self.current_phases(now)
        coherence, dominant = kuramoto_order(phases.values())
        return PhaseSynchronizationState(
            timestamp=now,
            coherence=coherence,
            dominant_phase=dominant,
            cycle_count=len(phases),
            phases=phases,
            synchronized_pairs=self._synchronized_pairs(phases)
        )

    def detect(self, now: Optional[float] = None) -> PhaseSynchronizationState:
        """Analyze coherence and record a phase-lock event when one forms"""
        now = now if now is not None else time.time()
        self._prune(now)
        state = self.analyze(now)

        if not state.is_significant:
            return state

        group = self._largest_synchronized_group(state.phases)
        if len(group) < MIN_LOCKED_CYCLES:
            return state

        active = self._active_lock(group, now)
        if active is not None:
            state.lock_event = active
            return state

        shortest = min(self.cycles[name].period for name in group)
        event = PhaseLockEvent(
            id=f"lock_{int(now * 1000)}_{next(self._sequence)}",
            timestamp=now,
            synchronized_cycles=group,
            lock_strength=state.coherence,
            common_phase=state.dominant_phase,
            predicted_duration=shortest * 0.2,
            market_implication=classify_implication(state.dominant_phase, state.coherence)
        )
        self.events.append(event)
        state.lock_event = event
        state.new_lock = True
        logger.debug(f"Phase lock {event.id} across {group} ({event.market_implication})")
        return state

    def _active_lock(self, group: List[str], now: float) -> Optional[PhaseLockEvent]:
        for event in reversed(self.events):
            if event.synchronized_cycles == group and event.is_active(now):
                return event
        return None

    def _prune(self, now: float):
        cutoff = now - self.retention_seconds
        while self.events and self.events[0].timestamp <= cutoff:
            self.events.popleft()

    def get_synchronization_prediction(self, now: Optional[float] = None) -> Dict[str, object]:
        state = self.analyze(now)
        if not state.is_significant:
            return {
                'direction': Direction.NEUTRAL,
                'confidence': 0.3,
                'reasoning': 'Cycles are desynchronized, no directional bias',
                'synchronized_cycles': []
            }

        phase = state.dominant_phase
        if phase < 0.25:
            direction, reasoning = Direction.UP, 'Synchronized cycles in early expansion phase'
        elif phase < 0.5:
            direction, reasoning = Direction.UP, 'Synchronized cycles in mid-cycle growth phase'
        elif phase < 0.75:
            direction, reasoning = Direction.DOWN, 'Synchronized cycles in late distribution phase'
        else:
            direction, reasoning = Direction.NEUTRAL, 'Synchronized cycles near an inflection point'

        return {
            'direction': direction,
            'confidence': min(0.9, 0.4 + state.coherence * 0.5),
            'reasoning': reasoning,
            'synchronized_cycles': sorted({name for a, b, _ in state.synchronized_pairs for name in (a, b)})
        }

    def get_synchronization_score(self, now: Optional[float] = None) -> float:
        return self.analyze(now).coherence

    def get_event(self, event_id: str) -> Optional[PhaseLockEvent]:
        for event in self.events:
            if event.id == event_id:
                return event
        return None

    def resolve_phase_lock(self, event_id: str, was_correct: bool,
                           actual_duration: Optional[float] = None, now: Optional[float] = None) -> bool:
        event = self.get_event(event_id)
        if event is None or event.resolved is not None:
            return False
        now = now if now is not None else time.time()
        event.resolved = PhaseLockResolution(
            was_correct=bool(was_correct),
            actual_duration=actual_duration if actual_duration is not None else now - event.timestamp,
            resolved_at=now
        )
        return True

    @property
    def resolved_count(self) -> int:
        return sum(1 for e in self.events if e.resolved is not None)

    def get_recent_events(self, limit: int = 10) -> List[PhaseLockEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]

    def get_accuracy_stats(self) -> Dict[str, float]:
        resolved = [e for e in self.events if e.resolved is not None]
        correct = sum(1 for e in resolved if e.resolved.was_correct)
        return {
            'total_events': len(self.events),
            'resolved_events': len(resolved),
            'correct_predictions': correct,
            'accuracy': correct / len(resolved) if resolved else 0.0
        }

    def export_events(self) -> Dict[str, List[Dict]]:
        return {
            'cycles': [asdict(c) for c in self.cycles.values()],
            'events': [asdict(e) for e in self.events]
        }

    def import_events(self, state: Dict[str, List[Dict]]):
        cycles = state.get('cycles')
        if cycles:
            self.cycles = {}
            for data in cycles:
                try:
                    self.register_cycle(data['name'], data['period'],
                                        data.get('amplitude', 0.5), data.get('description', ''))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed cycle definition: {e}")

        self.events.clear()
        for data in state.get('events', []):
            try:
                resolved = data.get('resolved')
                self.events.append(PhaseLockEvent(
                    id=data['id'],
                    timestamp=float(data['timestamp']),
                    synchronized_cycles=list(data['synchronized_cycles']),
                    lock_strength=float(data['lock_strength']),
                    common_phase=float(data['common_phase']),
                    predicted_duration=float(data['predicted_duration']),
                    market_implication=data['market_implication'],
                    resolved=PhaseLockResolution(**resolved) if resolved else None
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed phase lock event: {e}")
        logger.info(f"Imported {len(self.events)} phase lock events")
