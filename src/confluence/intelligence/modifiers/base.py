"""
Confidence Modifier contract - Bounded multiplicative adjustments over a shared tick context
"""

import math
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from confluence.shared.types import DirectionHint, OutcomeFeedback, TickContext

logger = logging.getLogger(__name__)

MIN_FACTOR = 0.8
MAX_FACTOR = 1.2
MIN_REGULARIZATION = 0.8
MAX_REGULARIZATION = 0.9


def regularize(raw: float, regularization: float) -> float:
    """Clamp a raw factor to [0.8, 1.2] and shrink its deviation from 1"""
    try:
        raw = float(raw)
    except (TypeError, ValueError):
        return 1.0
    if math.isnan(raw) or math.isinf(raw):
        return 1.0
    clamped = min(MAX_FACTOR, max(MIN_FACTOR, raw))
    return 1 + (clamped - 1) * regularization


class ConfidenceModifier(ABC):
    """
    One stage of the ordered confidence pipeline.

    Subclasses observe every tick through update(), expose a raw factor that is
    1.0 until they have enough data, and may learn from resolved outcomes. The
    base class owns the clamp-and-regularize step so every module is bounded the
    same way.
    """

    name: str = "modifier"
    regularization: float = 0.85
    override_eligible: bool = False

    def __init__(self, config: Optional[Dict] = None):
        self.config = config or {}
        if not MIN_REGULARIZATION <= self.regularization <= MAX_REGULARIZATION:
            raise ValueError(
                f"{self.name} regularization {self.regularization} outside "
                f"[{MIN_REGULARIZATION}, {MAX_REGULARIZATION}]"
            )

    @abstractmethod
    def update(self, ctx: TickContext):
        """Absorb one tick of input"""

    @abstractmethod
    def raw_modifier(self) -> float:
        """Unbounded factor, 1.0 while data is insufficient"""

    def get_confidence_modifier(self) -> float:
        return regularize(self.raw_modifier(), self.regularization)

    def direction_hint(self) -> Optional[DirectionHint]:
        return None

    def snapshot(self) -> Dict[str, Any]:
        """State needed later to learn from this tick's outcome"""
        return {}

    def record_outcome(self, feedback: OutcomeFeedback, snapshot: Dict[str, Any]):
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
