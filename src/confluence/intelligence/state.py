"""
Engine State - Single-owner learning state and its immutable published snapshot
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from confluence.shared.types import UnifiedPrediction
from .correlation import CorrelationMatrixBuilder
from .registry import SignatureRegistry

logger = logging.getLogger(__name__)


class CalibrationStatus(Enum):
    UNCALIBRATED = "uncalibrated"
    CALIBRATED = "calibrated"


@dataclass(frozen=True)
class EngineSnapshot:
    """Read-only view of the engine published after every mutation"""
    timestamp: float
    status: CalibrationStatus
    is_calibrated: bool
    evolution_generation: int
    total_predictions: int
    overall_accuracy: float
    learning_velocity: float
    domains: Tuple[str, ...]
    accuracy_by_domain: Mapping[str, float]
    prediction_count: int
    last_prediction: Optional[UnifiedPrediction]
    correlation_pairs: int
    average_correlation: float
    resolved_events: int = 0

    @property
    def domain_count(self) -> int:
        return len(self.domains)


@dataclass
class EngineState:
    """
    Everything the engine learns, owned by exactly one PredictionFusionEngine.
    """
    registry: SignatureRegistry = field(default_factory=SignatureRegistry)
    correlations: CorrelationMatrixBuilder = field(default_factory=CorrelationMatrixBuilder)
    accuracy_by_domain: Dict[str, float] = field(default_factory=dict)
    prediction_history: deque = field(default_factory=lambda: deque(maxlen=1000))
    outcome_history: deque = field(default_factory=lambda: deque(maxlen=100))
    overall_accuracy: float = 0.5
    learning_velocity: float = 0.0
    is_calibrated: bool = False
    evolution_generation: int = 0
    total_predictions: int = 0

    @classmethod
    def from_config(cls, config) -> "EngineState":
        return cls(
            correlations=CorrelationMatrixBuilder(config),
            prediction_history=deque(maxlen=config.get('prediction_history_size', 1000)),
            outcome_history=deque(maxlen=config.get('outcome_history_size', 100))
        )

    def domain_accuracy(self, domain: str) -> float:
        return self.accuracy_by_domain.get(domain, 0.5)

    def record_outcome(self, was_correct: bool):
        """Append to the outcome window and refresh the learning velocity"""
        self.outcome_history.append(bool(was_correct))
        outcomes = list(self.outcome_history)
        if len(outcomes) >= 20:
            recent = sum(outcomes[-10:]) / 10
            previous = sum(outcomes[-20:-10]) / 10
            self.learning_velocity = (recent - previous) * 10

    def mark_calibrated(self) -> bool:
        """Flip the one-way calibrated flag; True only on the transition"""
        if self.is_calibrated:
            return False
        self.is_calibrated = True
        return True

    def snapshot(self, now: Optional[float] = None, resolved_events: int = 0) -> EngineSnapshot:
        history = self.prediction_history
        return EngineSnapshot(
            timestamp=now if now is not None else time.time(),
            status=CalibrationStatus.CALIBRATED if self.is_calibrated else CalibrationStatus.UNCALIBRATED,
            is_calibrated=self.is_calibrated,
            evolution_generation=self.evolution_generation,
            total_predictions=self.total_predictions,
            overall_accuracy=self.overall_accuracy,
            learning_velocity=self.learning_velocity,
            domains=tuple(self.registry.domains()),
            accuracy_by_domain=MappingProxyType(dict(self.accuracy_by_domain)),
            prediction_count=len(history),
            last_prediction=history[-1] if history else None,
            correlation_pairs=len(self.correlations),
            average_correlation=self.correlations.average_correlation(),
            resolved_events=resolved_events
        )
