from .types import (
    Direction, DomainSignal, DomainSignature, QuadrantProfile, TemporalFlow, MarketFeatures,
    TickContext, DirectionHint, UnifiedPrediction, PredictionEnvelope, OutcomeFeedback
)

__all__ = [
    'Direction', 'DomainSignal', 'DomainSignature', 'QuadrantProfile', 'TemporalFlow',
    'MarketFeatures', 'TickContext', 'DirectionHint', 'UnifiedPrediction', 'PredictionEnvelope',
    'OutcomeFeedback'
]
