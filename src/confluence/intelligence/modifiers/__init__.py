"""
Confidence Modifiers - Ordered, bounded adjustments applied to every fused prediction

Public Interface:
- create_default_modifiers: Factory building the full pipeline in application order
- ConfidenceModifier: Base contract every stage implements
"""

from typing import Dict, List, Optional

from .base import ConfidenceModifier, regularize, MIN_FACTOR, MAX_FACTOR
from .entropy_flow import EntropyFlowModifier
from .archetypal import ArchetypalResonanceModifier
from .morphic_field import MorphicFieldModifier
from .emotional_contagion import EmotionalContagionModifier
from .fractal_time import FractalTimeModifier
from .inverse_noise import InverseNoiseModifier
from .biorhythm_lunar import BiorhythmLunarModifier
from .dynamic_equivalence import DynamicEquivalenceModifier
from .quantum_clouds import QuantumCloudModifier, ProbabilityCloudGenerator, ProbabilityCloud

DEFAULT_MODIFIER_CLASSES = (
    EntropyFlowModifier,
    ArchetypalResonanceModifier,
    MorphicFieldModifier,
    EmotionalContagionModifier,
    FractalTimeModifier,
    InverseNoiseModifier,
    BiorhythmLunarModifier,
    DynamicEquivalenceModifier,
    QuantumCloudModifier,
)

DEFAULT_MODIFIER_ORDER = tuple(cls.name for cls in DEFAULT_MODIFIER_CLASSES)


def validate_modifiers(modifiers: List[ConfidenceModifier]) -> List[ConfidenceModifier]:
    """Reject pipelines where two stages share a name"""
    seen = set()
    for modifier in modifiers:
        if modifier.name in seen:
            raise ValueError(f"Duplicate confidence modifier name: {modifier.name}")
        seen.add(modifier.name)
    return list(modifiers)


def create_default_modifiers(config: Optional[Dict] = None) -> List[ConfidenceModifier]:
    """Factory to create the full modifier pipeline in application order"""
    return validate_modifiers([cls(config) for cls in DEFAULT_MODIFIER_CLASSES])


__all__ = [
    'ConfidenceModifier', 'regularize', 'MIN_FACTOR', 'MAX_FACTOR',
    'EntropyFlowModifier', 'ArchetypalResonanceModifier', 'MorphicFieldModifier',
    'EmotionalContagionModifier', 'FractalTimeModifier', 'InverseNoiseModifier',
    'BiorhythmLunarModifier', 'DynamicEquivalenceModifier', 'QuantumCloudModifier',
    'ProbabilityCloudGenerator', 'ProbabilityCloud',
    'DEFAULT_MODIFIER_ORDER', 'create_default_modifiers', 'validate_modifiers'
]
