"""
Intelligence Domain - Correlation, convergence, phase detection, calibration and fusion

Public Interface:
- PredictionFusionEngine: Orchestrates every tracker and fuses predictions
- create_prediction_engine: Factory to create a configured engine
"""

from .registry import SignatureRegistry
from .correlation import CorrelationMatrixBuilder, CorrelationEntry
from .convergence import ConvergenceTracker, ConvergenceEvent
from .phase_sync import PhaseSynchronizationDetector, PhaseLockEvent, PhaseSynchronizationState
from .calibration import CalibrationTracker
from .state import EngineState, EngineSnapshot, CalibrationStatus
from .engine import PredictionFusionEngine


def create_prediction_engine(config, adapters=None):
    """Factory to create configured prediction fusion engine"""
    return PredictionFusionEngine(config, adapters=adapters)


__all__ = [
    'SignatureRegistry', 'CorrelationMatrixBuilder', 'CorrelationEntry',
    'ConvergenceTracker', 'ConvergenceEvent',
    'PhaseSynchronizationDetector', 'PhaseLockEvent', 'PhaseSynchronizationState',
    'CalibrationTracker', 'EngineState', 'EngineSnapshot', 'CalibrationStatus',
    'PredictionFusionEngine', 'create_prediction_engine'
]
