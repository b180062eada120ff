"""
Domain Signal Adapter - Contract and shared extraction helpers for per-domain signal producers
"""

import time
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from confluence.shared.types import DomainSignal, DomainSignature, QuadrantProfile, TemporalFlow

logger = logging.getLogger(__name__)

SIGNATURE_WINDOW = 100
MOMENTUM_WINDOW = 10


def phase_coherence(signals: Sequence[DomainSignal]) -> float:
    """Mean cosine of successive phase differences, mapped to 0-1"""
    if len(signals) < 2:
        return 0.0
    phases = np.array([s.phase for s in signals], dtype=float)
    return float((np.mean(np.cos(np.abs(np.diff(phases)))) + 1) / 2)


def harmonic_resonance(signals: Sequence[DomainSignal]) -> float:
    """How consistently the harmonic vector repeats from one signal to the next"""
    if len(signals) < 2:
        return 0.0
    total = 0.0
    for previous, current in zip(signals, signals[1:]):
        n = min(len(previous.harmonics), len(current.harmonics))
        a = np.asarray(current.harmonics[:n], dtype=float)
        b = np.asarray(previous.harmonics[:n], dtype=float)
        norm = np.linalg.norm(a) * np.linalg.norm(b)
        cosine = float(np.dot(a, b) / norm) if norm > 0 else 0.0
        total += (cosine + 1) / 2
    return total / (len(signals) - 1)


def signal_momentum(signals: Sequence[DomainSignal]) -> float:
    """Relative change of the last 10 intensities against the 10 before"""
    if len(signals) < MOMENTUM_WINDOW:
        return 0.0
    recent = np.mean([s.intensity for s in signals[-MOMENTUM_WINDOW:]])
    older_signals = signals[-2 * MOMENTUM_WINDOW:-MOMENTUM_WINDOW]
    older = np.mean([s.intensity for s in older_signals]) if older_signals else recent
    return float((recent - older) / (older or 1))


def temporal_flow(signals: Sequence[DomainSignal]) -> TemporalFlow:
    third = len(signals) // 3
    if third == 0:
        return TemporalFlow()
    intensities = [s.intensity for s in signals]
    early = sum(intensities[:third]) / third
    mid = sum(intensities[third:2 * third]) / third
    late = sum(intensities[2 * third:]) / third
    return TemporalFlow(early=early, mid=mid, late=late)


def quadrant_profile(signals: Sequence[DomainSignal], frequency_ceiling: float = 1.0) -> QuadrantProfile:
    """
    High frequency reads as aggressive, low as defensive, intensity as tactical
    and phase coherence as strategic.
    """
    if not signals:
        return QuadrantProfile()
    frequency = min(max(np.mean([s.frequency for s in signals]) / frequency_ceiling, 0.0), 1.0)
    intensity = float(np.mean([s.intensity for s in signals]))
    return QuadrantProfile(
        aggressive=frequency,
        defensive=1 - frequency,
        tactical=intensity,
        strategic=phase_coherence(signals)
    )


def dominant_frequency(signals: Sequence[DomainSignal], bucket_size: float = 0.1) -> float:
    """Intensity-weighted mode of the bucketed signal frequencies"""
    buckets: Dict[float, float] = {}
    for signal in signals:
        bucket = round(signal.frequency / bucket_size) * bucket_size
        buckets[bucket] = buckets.get(bucket, 0.0) + signal.intensity
    if not buckets:
        return 0.0
    return float(max(buckets.items(), key=lambda kv: kv[1])[0])


def extract_harmonics(intensity: float, phase: float, count: int = 8) -> List[float]:
    return [intensity / (k ** 1.5) * float(np.cos((phase * k) % (2 * np.pi))) for k in range(1, count + 1)]


class DomainSignalAdapter(ABC):
    """
    Turns one domain's raw input into DomainSignals and summarizes recent
    signals into a DomainSignature.

    Subclasses implement process_raw_data(); the base class keeps the bounded
    signal buffer and supplies a default extract_signature() built from the
    shared helpers above.
    """

    domain: str = "generic"
    frequency_ceiling: float = 1.0

    def __init__(self, config: Optional[Dict] = None):
        self.config = config or {}
        self.signal_buffer = deque(maxlen=self.config.get('signal_buffer_size', 1000))
        self.is_active = False
        self.last_update = 0.0

    async def initialize(self):
        self.is_active = True
        self.last_update = time.time()
        logger.info(f"{self.domain} adapter initialized")

    @abstractmethod
    def process_raw_data(self, raw: Any) -> DomainSignal:
        """Convert one raw observation into a signal"""

    def record_signal(self, signal: DomainSignal) -> DomainSignal:
        self.signal_buffer.append(signal)
        self.last_update = signal.timestamp
        return signal

    def extract_signature(self, signals: Optional[Sequence[DomainSignal]] = None) -> DomainSignature:
        signals = list(self.signal_buffer if signals is None else signals)[-SIGNATURE_WINDOW:]
        if not signals:
            return self.default_signature()

        intensities = np.array([s.intensity for s in signals], dtype=float)
        return DomainSignature(
            domain=self.domain,
            quadrant_profile=quadrant_profile(signals, self.frequency_ceiling),
            temporal_flow=temporal_flow(signals),
            intensity=float(intensities.mean()),
            momentum=signal_momentum(signals),
            volatility=float(intensities.std()),
            dominant_frequency=dominant_frequency(signals),
            harmonic_resonance=harmonic_resonance(signals),
            phase_alignment=phase_coherence(signals),
            extracted_at=signals[-1].timestamp
        )

    def default_signature(self) -> DomainSignature:
        return DomainSignature.default(self.domain)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(domain={self.domain!r}, signals={len(self.signal_buffer)})"
