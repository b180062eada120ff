"""
Market Proxy Adapters - Reference adapters reading a single market feature as a domain
"""

import math
import time
import logging
from typing import Dict, List, Optional

import numpy as np

from confluence.shared.types import DomainSignal, MarketFeatures
from .base import DomainSignalAdapter, extract_harmonics

logger = logging.getLogger(__name__)


class MarketProxyAdapter(DomainSignalAdapter):
    """
    Reads one field of the inbound feature vector, scales it into [-1, 1] and
    encodes it as a signal: intensity and frequency rise with the value and the
    phase rotates with it.

    In 'change' mode the value is the relative change since the previous
    observation, which suits level series such as price and volume.
    """

    def __init__(self, domain: str, field: str, scale: float = 1.0, mode: str = 'level',
                 config: Optional[Dict] = None):
        super().__init__(config)
        if mode not in ('level', 'change'):
            raise ValueError(f"Unknown proxy mode: {mode}")
        self.domain = domain
        self.field = field
        self.scale = scale
        self.mode = mode
        self._previous: Optional[float] = None

    def _read(self, raw) -> Optional[float]:
        if raw is None:
            return None
        value = raw.get(self.field, None)
        if value is None:
            return None
        try:
            value = float(value)
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) else None

    def normalized_value(self, raw) -> float:
        value = self._read(raw)
        if value is None:
            return 0.0
        if self.mode == 'change':
            previous, self._previous = self._previous, value
            if previous is None or previous == 0:
                return 0.0
            value = (value - previous) / abs(previous)
        return float(np.clip(value * self.scale, -1.0, 1.0))

    def process_raw_data(self, raw) -> DomainSignal:
        value = self.normalized_value(raw)
        timestamp = getattr(raw, 'timestamp', None) or time.time()
        intensity = 0.5 + value * 0.5
        phase = ((value + 1) * math.pi) % (2 * math.pi)
        return self.record_signal(DomainSignal(
            domain=self.domain,
            timestamp=timestamp,
            intensity=intensity,
            frequency=intensity,
            phase=phase,
            harmonics=extract_harmonics(intensity, phase),
            raw_data=[value]
        ))


def create_default_adapters(config: Optional[Dict] = None) -> List[MarketProxyAdapter]:
    """Factory to create the reference price/volume/volatility/sentiment/momentum adapters"""
    return [
        MarketProxyAdapter('price', 'price', scale=50.0, mode='change', config=config),
        MarketProxyAdapter('volume', 'volume', scale=1.0, mode='change', config=config),
        MarketProxyAdapter('volatility', 'volatility', scale=1.0, config=config),
        MarketProxyAdapter('sentiment', 'sentiment', scale=1.0, config=config),
        MarketProxyAdapter('momentum', 'momentum', scale=1.0, config=config),
    ]
