"""
Prediction Fusion Engine - Fuses domain signatures into one self-calibrating prediction
"""

import itertools
import logging
import math
import time
from collections import deque
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from confluence.core.config import Config
from confluence.core.event_bus import EventBus, EventType
from confluence.shared.types import (
    Direction, DomainSignature, MarketFeatures, OutcomeFeedback, PredictionEnvelope,
    TickContext, UnifiedPrediction
)
from .calibration import CalibrationTracker
from .convergence import ConvergenceEvent, ConvergenceTracker
from .modifiers import ConfidenceModifier, create_default_modifiers, validate_modifiers
from .phase_sync import PhaseSynchronizationDetector, PhaseSynchronizationState
from .state import EngineSnapshot, EngineState

logger = logging.getLogger(__name__)

STARTING_PRICE = 100.0
OVERRIDE_MIN_CONFIDENCE = 0.5
NOISE_REJECTION_LEVEL = 0.7


def phase_lock_correct(implication: str, predicted: Direction, actual: Direction) -> bool:
    """Whether a phase-lock's market implication held for the realized direction"""
    if implication in ('strong_trend', 'volatility_expansion'):
        return actual is not Direction.NEUTRAL
    if implication == 'consolidation':
        return actual is Direction.NEUTRAL
    if implication == 'reversal_imminent':
        return predicted is not Direction.NEUTRAL and actual is predicted.opposite()
    return False


def signal_agreement(normalized_signal: float, fundamental: Optional[float]) -> float:
    if fundamental is None or fundamental == 0 or normalized_signal == 0:
        return 0.5
    return 1.0 if np.sign(normalized_signal) == np.sign(fundamental) else 0.0


class PredictionFusionEngine:
    """
    Owns the engine state and every sub-tracker.

    Each tick flows adapters -> registry -> correlations -> convergence and
    phase detection -> modifiers. Predictions are fused on demand and learn
    from outcomes through the envelope they were issued in.
    """

    def __init__(self, config=None, adapters: Optional[Iterable] = None,
                 modifiers: Optional[List[ConfidenceModifier]] = None,
                 event_bus: Optional[EventBus] = None):
        self.config = config if config is not None else Config()
        self.event_bus = event_bus or EventBus(self.config)

        self.state = EngineState.from_config(self.config)
        self.convergence = ConvergenceTracker(self.config)
        self.phase_sync = PhaseSynchronizationDetector(self.config)
        self.calibration = CalibrationTracker(self.config)
        if modifiers is not None:
            self.modifiers = validate_modifiers(modifiers)
        else:
            self.modifiers = create_default_modifiers(self.config)

        self.adapters: Dict[str, object] = {}
        for adapter in adapters or []:
            self.register_adapter(adapter)

        # Fusion parameters
        self.confidence_cap = self.config.get('confidence_cap', 0.95)
        self.vote_threshold = self.config.get('vote_threshold', 0.1)
        self.direction_threshold = self.config.get('direction_threshold', 0.15)
        self.time_horizon = self.config.get('time_horizon_seconds', 5.0)
        self.base_learning_rate = self.config.get('base_learning_rate', 0.1)
        self.calibration_gate = self.config.get('calibration_gate', 50)

        history_size = self.config.get('price_history_size', 500)
        self.price_history = deque(maxlen=history_size)
        self.volume_history = deque(maxlen=history_size)

        self.last_context: Optional[TickContext] = None
        self.last_convergence: Optional[ConvergenceEvent] = None
        self.last_phase_state: Optional[PhaseSynchronizationState] = None
        self._resolved_predictions = deque(maxlen=self.config.get('prediction_history_size', 1000))
        self._sequence = itertools.count(1)
        self._snapshot = self.state.snapshot()

        logger.info(f"Fusion engine created with {len(self.adapters)} adapters and "
                    f"{len(self.modifiers)} confidence modifiers")

    # Adapters

    def register_adapter(self, adapter):
        if adapter.domain in self.adapters:
            raise ValueError(f"Adapter already registered for domain: {adapter.domain}")
        self.adapters[adapter.domain] = adapter

    async def initialize(self) -> int:
        """Initialize every adapter; a failing adapter is reported and skipped"""
        ready = 0
        for domain, adapter in self.adapters.items():
            try:
                await adapter.initialize()
                ready += 1
            except Exception as e:
                logger.error(f"Error initializing adapter {domain}: {e}")
                self.event_bus.emit(EventType.ADAPTER_FAILED, 'engine',
                                    {'domain': domain, 'stage': 'initialize', 'error': str(e)})
        logger.info(f"Initialized {ready}/{len(self.adapters)} adapters")
        return ready

    # Ingestion

    def process_market_signal(self, features: MarketFeatures) -> TickContext:
        """Fan one feature vector out to the adapters and ingest their signatures"""
        now = features.timestamp or time.time()
        signatures: Dict[str, DomainSignature] = {}

        for domain, adapter in self.adapters.items():
            try:
                adapter.process_raw_data(features)
                signatures[domain] = adapter.extract_signature()
            except Exception as e:
                logger.error(f"Error processing {domain} adapter: {e}")
                self.event_bus.emit(EventType.ADAPTER_FAILED, 'engine',
                                    {'domain': domain, 'stage': 'process', 'error': str(e)}, timestamp=now)

        self._record_market_history(features)
        return self.ingest_signatures(signatures, now=now, features=features)

    def _record_market_history(self, features: MarketFeatures):
        price = features.price
        if price is None or not math.isfinite(price):
            last = self.price_history[-1] if self.price_history else STARTING_PRICE
            price = last * (1 + features.get('momentum') * 0.01)
        self.price_history.append(float(price))

        if features.volume is not None and math.isfinite(features.volume):
            self.volume_history.append(float(features.volume))

    def ingest_signatures(self, signatures: Mapping[str, DomainSignature], now: Optional[float] = None,
                          features: Optional[MarketFeatures] = None) -> TickContext:
        now = now if now is not None else time.time()

        for domain, signature in signatures.items():
            self.state.registry.ingest_signature(domain, signature)
        if signatures:
            self.event_bus.emit(EventType.SIGNATURE_INGESTED, 'engine',
                                {'domains': len(signatures)}, timestamp=now)

        pairs = self.state.correlations.update_correlations(self.state.registry, now)
        if pairs:
            self.event_bus.emit(EventType.CORRELATIONS_UPDATED, 'engine', {'pairs': pairs}, timestamp=now)

        registered = self.state.registry.signatures()
        self.last_convergence = self.convergence.analyze_convergence(registered, now)
        if self.last_convergence is not None and self.last_convergence.is_new:
            event = self.last_convergence
            self.event_bus.emit(EventType.CONVERGENCE_DETECTED, 'convergence', {
                'event_id': event.id,
                'direction': event.direction.value,
                'aligned': event.alignment_count,
                'improbability': round(event.statistical_improbability, 4)
            }, priority=5, correlation_id=event.id, timestamp=now)

        self.last_phase_state = self.phase_sync.detect(now)
        if self.last_phase_state.new_lock:
            lock = self.last_phase_state.lock_event
            self.event_bus.emit(EventType.PHASE_LOCK_DETECTED, 'phase_sync', {
                'lock_id': lock.id,
                'cycles': lock.synchronized_cycles,
                'implication': lock.market_implication,
                'strength': round(lock.lock_strength, 4)
            }, priority=5, correlation_id=lock.id, timestamp=now)

        ctx = TickContext.build(now, registered, features, self.price_history, self.volume_history)
        for modifier in self.modifiers:
            try:
                modifier.update(ctx)
            except Exception as e:
                logger.error(f"Error updating {modifier.name} modifier: {e}")
                self.event_bus.emit(EventType.MODIFIER_FAILED, 'engine',
                                    {'modifier': modifier.name, 'stage': 'update', 'error': str(e)}, timestamp=now)

        self.last_context = ctx
        self._publish_snapshot(now)
        return ctx

    # Fusion

    def _domain_votes(self, signatures: Mapping[str, DomainSignature]) -> Dict[str, int]:
        votes = {}
        for domain, signature in signatures.items():
            value = signature.vote_value
            votes[domain] = 1 if value > self.vote_threshold else -1 if value < -self.vote_threshold else 0
        return votes

    def _fundamental_signal(self) -> Optional[float]:
        if self.last_context is None or self.last_context.features is None:
            return None
        return self.last_context.features.get('momentum')

    def _modifier_factor(self, modifier: ConfidenceModifier) -> float:
        try:
            return modifier.get_confidence_modifier()
        except Exception as e:
            logger.error(f"Error computing {modifier.name} factor: {e}")
            self.event_bus.emit(EventType.MODIFIER_FAILED, 'engine',
                                {'modifier': modifier.name, 'stage': 'factor', 'error': str(e)})
            return 1.0

    def generate_unified_prediction(self, symbol: str = "", now: Optional[float] = None) -> PredictionEnvelope:
        """Fuse the registered signatures into one confidence-bounded prediction"""
        now = now if now is not None else time.time()
        prediction_id = f"pred_{int(now * 1000)}_{next(self._sequence)}"
        signatures = self.state.registry.signatures()

        if not signatures:
            prediction = UnifiedPrediction(
                direction=Direction.NEUTRAL,
                confidence=0.0,
                magnitude=0.0,
                time_horizon=self.time_horizon,
                contributing_domains=(),
                consensus_strength=0.0,
                harmonic_alignment=0.0,
                prediction_id=prediction_id,
                symbol=symbol,
                timestamp=now
            )
            return self._issue(PredictionEnvelope(prediction=prediction), now)

        votes = self._domain_votes(signatures)
        weighted_signal = total_weight = 0.0
        for domain, signature in signatures.items():
            weight = self.state.domain_accuracy(domain) * signature.harmonic_resonance
            weighted_signal += votes[domain] * weight
            total_weight += weight
        normalized_signal = weighted_signal / total_weight if total_weight > 0 else 0.0

        if normalized_signal > self.direction_threshold:
            direction = Direction.UP
        elif normalized_signal < -self.direction_threshold:
            direction = Direction.DOWN
        else:
            direction = Direction.NEUTRAL

        count = len(signatures)
        confirming = sum(1 for v in votes.values() if v == direction.sign)
        consensus = confirming / count

        phase_alignment = float(np.mean([s.effective_phase_alignment for s in signatures.values()]))
        harmonic_alignment = float(np.mean([s.harmonic_resonance for s in signatures.values()]))
        mean_volatility = float(np.mean([s.volatility for s in signatures.values()]))
        mean_momentum = float(np.mean([abs(s.momentum) for s in signatures.values()]))

        # Truth filter: boost on independent confirmation, damp on noise
        fundamental = self._fundamental_signal()
        convergence = self.last_convergence
        coherence = self.last_phase_state.coherence if self.last_phase_state is not None else 0.0
        truth_score = (0.4 * (convergence.statistical_improbability if convergence else 0.0)
                       + 0.3 * coherence
                       + 0.3 * signal_agreement(normalized_signal, fundamental))
        noise_level = min(1.0, mean_volatility) * (1 - min(confirming / 10, 1.0))

        confidence = phase_alignment * consensus * (1 + truth_score * 0.5) * (1 - noise_level * 0.3)
        if noise_level > NOISE_REJECTION_LEVEL:
            confidence *= 0.5

        override_source = None
        factors: Dict[str, float] = {}
        snapshots: Dict[str, Dict] = {}
        for modifier in self.modifiers:
            factor = self._modifier_factor(modifier)
            factors[modifier.name] = factor
            confidence *= factor
            try:
                snapshots[modifier.name] = dict(modifier.snapshot())
            except Exception as e:
                logger.error(f"Error capturing {modifier.name} snapshot: {e}")
                snapshots[modifier.name] = {}

            if direction is Direction.NEUTRAL and modifier.override_eligible:
                hint = modifier.direction_hint()
                if (hint is not None and hint.direction is not Direction.NEUTRAL
                        and hint.confidence >= OVERRIDE_MIN_CONFIDENCE):
                    direction, override_source = hint.direction, modifier.name
                    self.event_bus.emit(EventType.DIRECTION_OVERRIDDEN, modifier.name, {
                        'direction': direction.value, 'confidence': round(hint.confidence, 4),
                        'reason': hint.reason
                    }, correlation_id=prediction_id, timestamp=now)

        confidence *= self.calibration.get_calibration_advice()['adjustment_factor']
        confidence = float(min(self.confidence_cap, max(0.0, confidence)))

        prediction = UnifiedPrediction(
            direction=direction,
            confidence=confidence,
            magnitude=abs(normalized_signal) * mean_momentum,
            time_horizon=self.time_horizon,
            contributing_domains=tuple(sorted(signatures)),
            consensus_strength=consensus,
            harmonic_alignment=harmonic_alignment,
            prediction_id=prediction_id,
            symbol=symbol,
            timestamp=now,
            normalized_signal=normalized_signal,
            truth_score=truth_score,
            noise_level=noise_level,
            override_source=override_source
        )
        lock = self.last_phase_state.lock_event if self.last_phase_state is not None else None
        envelope = PredictionEnvelope(
            prediction=prediction,
            probability_cloud=snapshots.get('quantum_cloud', {}).get('cloud'),
            modifier_snapshots=snapshots,
            modifier_factors=factors,
            convergence_event_id=convergence.id if convergence else None,
            phase_lock_id=lock.id if lock is not None else None,
            fundamental_signal=fundamental,
            domain_votes=votes
        )
        return self._issue(envelope, now)

    def _issue(self, envelope: PredictionEnvelope, now: float) -> PredictionEnvelope:
        prediction = envelope.prediction
        calibration_id = self.calibration.record_prediction(
            prediction.confidence, prediction.direction, prediction.symbol, prediction.time_horizon, now)
        envelope = replace(envelope, calibration_id=calibration_id)

        self.state.prediction_history.append(prediction)
        self.state.total_predictions += 1
        self.event_bus.emit(EventType.PREDICTION_GENERATED, 'engine', {
            'prediction_id': prediction.prediction_id,
            'direction': prediction.direction.value,
            'confidence': round(prediction.confidence, 4),
            'domains': len(prediction.contributing_domains)
        }, correlation_id=prediction.prediction_id, timestamp=now)
        self._publish_snapshot(now)
        return envelope

    # Learning

    def record_prediction_outcome(self, envelope: PredictionEnvelope, actual_direction,
                                  actual_magnitude: float, now: Optional[float] = None) -> Dict[str, object]:
        """Resolve every tracker linked to the envelope and learn from the outcome"""
        now = now if now is not None else time.time()
        prediction = envelope.prediction
        if prediction.prediction_id and prediction.prediction_id in self._resolved_predictions:
            logger.warning(f"Outcome for {prediction.prediction_id} already recorded")
            return {'recorded': False, 'reason': 'already_resolved'}

        actual = Direction.coerce(actual_direction)
        try:
            actual_magnitude = float(actual_magnitude)
        except (TypeError, ValueError):
            actual_magnitude = 0.0
        if not math.isfinite(actual_magnitude):
            actual_magnitude = 0.0

        was_correct = prediction.direction is actual
        resolved = {
            'convergence': bool(envelope.convergence_event_id)
            and self.convergence.record_outcome(envelope.convergence_event_id, actual, now),
            'calibration': bool(envelope.calibration_id)
            and self.calibration.resolve_prediction(envelope.calibration_id, actual, now),
            'phase_lock': self._resolve_phase_lock(envelope, actual, now)
        }

        self._update_accuracy(envelope, actual, actual_magnitude, was_correct)
        self.state.record_outcome(was_correct)

        feedback = OutcomeFeedback(envelope, actual, actual_magnitude, now)
        for modifier in self.modifiers:
            try:
                modifier.record_outcome(feedback, dict(envelope.modifier_snapshots.get(modifier.name, {})))
            except Exception as e:
                logger.error(f"Error recording outcome for {modifier.name}: {e}")
                self.event_bus.emit(EventType.MODIFIER_FAILED, 'engine',
                                    {'modifier': modifier.name, 'stage': 'outcome', 'error': str(e)}, timestamp=now)

        self.state.evolution_generation += 1
        if prediction.prediction_id:
            self._resolved_predictions.append(prediction.prediction_id)

        resolved_events = self._resolved_event_count()
        newly_calibrated = resolved_events >= self.calibration_gate and self.state.mark_calibrated()
        if newly_calibrated:
            self.event_bus.emit(EventType.ENGINE_CALIBRATED, 'engine', {
                'resolved_events': resolved_events,
                'generation': self.state.evolution_generation
            }, priority=10, timestamp=now)

        self.event_bus.emit(EventType.OUTCOME_RECORDED, 'engine', {
            'prediction_id': prediction.prediction_id,
            'was_correct': was_correct,
            'overall_accuracy': round(self.state.overall_accuracy, 4)
        }, correlation_id=prediction.prediction_id, timestamp=now)
        self._publish_snapshot(now)

        return {
            'recorded': True,
            'was_correct': was_correct,
            'resolved': resolved,
            'overall_accuracy': self.state.overall_accuracy,
            'learning_velocity': self.state.learning_velocity,
            'evolution_generation': self.state.evolution_generation,
            'is_calibrated': self.state.is_calibrated
        }

    def _resolve_phase_lock(self, envelope: PredictionEnvelope, actual: Direction, now: float) -> bool:
        if not envelope.phase_lock_id:
            return False
        lock = self.phase_sync.get_event(envelope.phase_lock_id)
        if lock is None:
            return False
        correct = phase_lock_correct(lock.market_implication, envelope.prediction.direction, actual)
        return self.phase_sync.resolve_phase_lock(lock.id, correct, now=now)

    def _update_accuracy(self, envelope: PredictionEnvelope, actual: Direction,
                         actual_magnitude: float, was_correct: bool):
        # Mistakes move the estimates faster than hits
        alpha = self.base_learning_rate * (0.8 if was_correct else 1.5)
        target = 1 - abs(envelope.prediction.magnitude - actual_magnitude) if was_correct else 0.0
        overall = self.state.overall_accuracy * (1 - alpha) + target * alpha
        self.state.overall_accuracy = min(1.0, max(0.0, overall))

        for domain, vote in envelope.domain_votes.items():
            matched = vote == actual.sign
            domain_alpha = alpha * (0.7 if matched else 1.3)
            current = self.state.domain_accuracy(domain)
            updated = current * (1 - domain_alpha) + (1.0 if matched else 0.0) * domain_alpha
            self.state.accuracy_by_domain[domain] = min(1.0, max(0.0, updated))
            if not matched and current < 0.4:
                logger.debug(f"Domain {domain} trust reduced to {updated:.3f}")

    def _resolved_event_count(self) -> int:
        return (self.convergence.resolved_count + self.calibration.resolved_count
                + self.phase_sync.resolved_count)

    # Queries

    def _publish_snapshot(self, now: float):
        self._snapshot = self.state.snapshot(now, self._resolved_event_count())

    def get_state(self) -> EngineSnapshot:
        return self._snapshot

    def get_top_correlations(self, limit: int = 5):
        return self.state.correlations.get_top_correlations(limit)

    def get_domain_rankings(self) -> List[Dict[str, object]]:
        """Domains ordered by learned accuracy"""
        rankings = [
            {'domain': domain, 'accuracy': self.state.domain_accuracy(domain)}
            for domain in self.state.registry.domains()
        ]
        return sorted(rankings, key=lambda r: r['accuracy'], reverse=True)

    def get_calibration_advice(self) -> Dict[str, object]:
        return self.calibration.get_calibration_advice()

    def get_convergence_proof(self) -> Dict[str, object]:
        return self.convergence.calculate_proof_strength()
