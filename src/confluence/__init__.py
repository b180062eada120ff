"""
Confluence - Cross-domain signal fusion and self-calibrating prediction engine

Public Interface:
- create_fusion_engine: Factory wiring config, event bus, adapters and engine
- PredictionFusionEngine: The engine itself
- setup_logging: Console logging at the configured level
"""

from .core import Config, EventBus, EventType, LoggingEventSink
from .adapters import DomainSignalAdapter, MarketProxyAdapter, create_default_adapters
from .intelligence import PredictionFusionEngine, EngineSnapshot
from .shared import Direction, DomainSignature, MarketFeatures, PredictionEnvelope, UnifiedPrediction
from .utils.logging_config import setup_logging

__version__ = "0.1.0"


def create_fusion_engine(config=None, adapters=None, log_events: bool = True,
                         configure_logging: bool = False):
    """
    Factory to create a fully wired fusion engine

    Args:
        config: Config instance or any mapping with .get; defaults to Config()
        adapters: Domain adapters; defaults to the reference market-proxy set
        log_events: Attach a LoggingEventSink to the engine's event bus
        configure_logging: Run setup_logging at the configured log_level first

    Returns:
        PredictionFusionEngine: Engine owning its own state and trackers
    """
    config = config if config is not None else Config()
    if configure_logging:
        setup_logging(str(config.get('log_level', 'INFO')).upper())
    bus = EventBus(config)
    if log_events:
        LoggingEventSink(bus)
    if adapters is None:
        adapters = create_default_adapters(config)
    return PredictionFusionEngine(config, adapters=adapters, event_bus=bus)


__all__ = [
    'Config', 'EventBus', 'EventType', 'LoggingEventSink',
    'DomainSignalAdapter', 'MarketProxyAdapter', 'create_default_adapters',
    'PredictionFusionEngine', 'EngineSnapshot',
    'Direction', 'DomainSignature', 'MarketFeatures', 'PredictionEnvelope', 'UnifiedPrediction',
    'create_fusion_engine', 'setup_logging'
]
