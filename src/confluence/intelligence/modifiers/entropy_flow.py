"""
Entropy Flow - Shannon entropy of the return direction mix and its rate of change
"""

import logging
from collections import deque
from typing import Dict, Optional

import numpy as np
from scipy.stats import entropy

from confluence.shared.types import TickContext
from .base import ConfidenceModifier

logger = logging.getLogger(__name__)

FLAT_BAND = 0.0005
RETURN_WINDOW = 50
MIN_RETURNS = 10
FLOW_LOOKBACK = 10


def direction_entropy(returns) -> float:
    """Normalized (base 3) entropy of the up/down/flat return mix"""
    returns = np.asarray(returns, dtype=float)
    if returns.size == 0:
        return 1.0
    counts = np.array([
        np.sum(returns > FLAT_BAND),
        np.sum(returns < -FLAT_BAND),
        np.sum(np.abs(returns) <= FLAT_BAND)
    ], dtype=float)
    value = float(entropy(counts, base=3))
    return value if np.isfinite(value) else 1.0


class EntropyFlowModifier(ConfidenceModifier):
    """Rewards falling disorder in the return stream, penalizes rising disorder"""

    name = "entropy_flow"
    regularization = 0.85

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.entropy_history = deque(maxlen=100)
        self.current_entropy = 1.0
        self.flow = 0.0
        self.return_count = 0

    def update(self, ctx: TickContext):
        prices = np.asarray(ctx.prices[-(RETURN_WINDOW + 1):], dtype=float)
        if prices.size < 2:
            self.return_count = 0
            return

        previous = prices[:-1]
        with np.errstate(divide='ignore', invalid='ignore'):
            returns = np.where(previous != 0, np.diff(prices) / previous, 0.0)
        returns = returns[np.isfinite(returns)]
        self.return_count = int(returns.size)
        if self.return_count < MIN_RETURNS:
            return

        self.current_entropy = direction_entropy(returns)
        recent = list(self.entropy_history)[-FLOW_LOOKBACK:]
        self.flow = self.current_entropy - float(np.mean(recent)) if recent else 0.0
        self.entropy_history.append(self.current_entropy)

    def raw_modifier(self) -> float:
        if self.return_count < MIN_RETURNS:
            return 1.0
        flow = float(np.clip(self.flow, -0.4, 0.4))
        return (1 - flow * 0.5) * (0.95 + (1 - self.current_entropy) * 0.1)

    def get_flow_state(self) -> Dict[str, object]:
        if self.flow > 0.05:
            trend = 'disordering'
        elif self.flow < -0.05:
            trend = 'ordering'
        else:
            trend = 'steady'
        return {
            'entropy': self.current_entropy,
            'flow': self.flow,
            'trend': trend,
            'samples': len(self.entropy_history)
        }

    def snapshot(self) -> Dict[str, float]:
        return {'entropy': self.current_entropy, 'flow': self.flow}
