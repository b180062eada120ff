"""
Correlation Matrix - Rolling pairwise alignment and lead-lag between domains
"""

import numpy as np
import logging
import time
from collections import deque
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, List, Optional, Tuple

from confluence.shared.types import DomainSignature
from confluence.intelligence.registry import SignatureRegistry

logger = logging.getLogger(__name__)

# Blend weights for the alignment score
QUADRANT_WEIGHT = 0.30
TEMPORAL_WEIGHT = 0.20
MOMENTUM_WEIGHT = 0.20
VOLATILITY_WEIGHT = 0.15
HARMONIC_WEIGHT = 0.15


@dataclass
class CorrelationEntry:
    domain_a: str
    domain_b: str
    correlation: float
    lead_lag: float
    confidence: float
    sample_size: int
    last_updated: float


def _cosine(a, b) -> float:
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator == 0 or not np.isfinite(denominator):
        return 0.0
    return float(np.dot(a, b) / denominator)


def compute_alignment(a: DomainSignature, b: DomainSignature) -> float:
    """Weighted similarity of two signatures, symmetric in its arguments"""
    score = (
        _cosine(a.quadrant_profile.as_vector(), b.quadrant_profile.as_vector()) * QUADRANT_WEIGHT +
        _cosine(a.temporal_flow.as_vector(), b.temporal_flow.as_vector()) * TEMPORAL_WEIGHT +
        (1 - abs(a.momentum - b.momentum)) * MOMENTUM_WEIGHT +
        (1 - abs(a.volatility - b.volatility)) * VOLATILITY_WEIGHT +
        (1 - abs(a.harmonic_resonance - b.harmonic_resonance)) * HARMONIC_WEIGHT
    )
    if not np.isfinite(score):
        return 0.0
    return float(np.clip(score, -1.0, 1.0))


def compute_lead_lag(a: DomainSignature, b: DomainSignature) -> float:
    """Positive when domain a's dynamics lead domain b's"""
    momentum_diff = a.momentum - b.momentum
    skew_diff = a.temporal_flow.skew - b.temporal_flow.skew
    value = (momentum_diff + skew_diff) / 2
    return float(value) if np.isfinite(value) else 0.0


def history_confidence(history, window: int = 100) -> float:
    """stability x size factor; 0 for an empty history"""
    if not history:
        return 0.0
    values = np.asarray(history, dtype=float)
    variance = float(np.var(values))
    if not np.isfinite(variance):
        return 0.0
    stability = 1 - min(np.sqrt(variance), 1.0)
    size_factor = min(len(values) / window, 1.0) if window > 0 else 0.0
    return float(stability * size_factor)


class CorrelationMatrixBuilder:
    """
    Pairwise alignment over a rolling window of samples per domain pair
    """

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        self.window = int(config.get('correlation_window', 100))
        self._histories: Dict[Tuple[str, str], deque] = {}
        self._entries: Dict[Tuple[str, str], CorrelationEntry] = {}

    @staticmethod
    def _key(domain_a: str, domain_b: str) -> Tuple[str, str]:
        return (domain_a, domain_b) if domain_a <= domain_b else (domain_b, domain_a)

    def update_correlations(self, registry: SignatureRegistry, now: Optional[float] = None) -> int:
        """Recompute every unordered pair from the registry's latest signatures"""
        now = now if now is not None else time.time()
        signatures = registry.signatures()
        updated = 0

        for domain_a, domain_b in combinations(sorted(signatures), 2):
            try:
                self._update_pair(signatures[domain_a], signatures[domain_b], domain_a, domain_b, now)
                updated += 1
            except Exception as e:
                logger.error(f"Error updating correlation {domain_a}/{domain_b}: {e}")

        return updated

    def _update_pair(self, sig_a: DomainSignature, sig_b: DomainSignature,
                     domain_a: str, domain_b: str, now: float):
        key = self._key(domain_a, domain_b)
        if key != (domain_a, domain_b):
            sig_a, sig_b = sig_b, sig_a

        history = self._histories.get(key)
        if history is None:
            history = deque(maxlen=self.window)
            self._histories[key] = history
        history.append(compute_alignment(sig_a, sig_b))

        self._entries[key] = CorrelationEntry(
            domain_a=key[0],
            domain_b=key[1],
            correlation=float(np.mean(history)),
            lead_lag=compute_lead_lag(sig_a, sig_b),
            confidence=history_confidence(history, self.window),
            sample_size=len(history),
            last_updated=now
        )

    def get_entry(self, domain_a: str, domain_b: str) -> Optional[CorrelationEntry]:
        return self._entries.get(self._key(domain_a, domain_b))

    def get_correlation(self, domain_a: str, domain_b: str) -> float:
        entry = self.get_entry(domain_a, domain_b)
        return entry.correlation if entry else 0.0

    def entries(self) -> List[CorrelationEntry]:
        return list(self._entries.values())

    def get_top_correlations(self, limit: int = 5) -> List[CorrelationEntry]:
        """Strongest pairs by absolute correlation"""
        return sorted(self._entries.values(), key=lambda e: abs(e.correlation), reverse=True)[:limit]

    def get_matrix(self) -> Tuple[List[str], np.ndarray]:
        """Symmetric correlation matrix with ones on the diagonal"""
        domains = sorted({d for key in self._entries for d in key})
        index = {d: i for i, d in enumerate(domains)}
        matrix = np.eye(len(domains))
        for (a, b), entry in self._entries.items():
            matrix[index[a], index[b]] = entry.correlation
            matrix[index[b], index[a]] = entry.correlation
        return domains, matrix

    def average_correlation(self) -> float:
        if not self._entries:
            return 0.0
        return float(np.mean([e.correlation for e in self._entries.values()]))

    def __len__(self) -> int:
        return len(self._entries)
